"""
USD valuation of arbitrary token balances by chaining swap quotes.

A token is priced by quoting a small sample amount into the chain's reference
stablecoin. The native asset is priced by quoting one whole unit into the
stablecoin, cached briefly because it moves. When the direct sample quote has no
route, the token is quoted into the native asset instead and converted with
the native price.

Raw balances stay integers and are scaled with Decimal; floats only appear in
the returned USD figure.
"""

import logging
from decimal import Context, Decimal
from typing import Optional

from .cache import TTL_SHORT, TieredCache, native_price_key
from .chains import Chain
from .gateway import ApiError, MissingCredentialError, PermanentRejectionError
from .models import NATIVE_TOKEN_ADDRESS, Stablecoin
from .oneinch_client import PriceSource


logger = logging.getLogger(__name__)

# Sample is 1/SAMPLE_DIVISOR of a whole token (0.01)
SAMPLE_DIVISOR = 100

# Per-token USD prices above this are treated as a bad pair or decimal mismatch
DEFAULT_MAX_PLAUSIBLE_PRICE = Decimal("10000000")


def to_decimal(raw_amount: int, decimals: int) -> Decimal:
    """
    Scale a raw integer amount down by the token's decimals, exactly.

    The context precision covers every digit of the raw amount, so balances
    longer than the default 28 digits are not rounded.
    """
    digits = len(str(abs(raw_amount)))
    return Decimal(raw_amount).scaleb(-decimals, context=Context(prec=digits + 1))


def sample_amount(decimals: int) -> int:
    """Raw units for a 0.01-token sample, never less than one unit."""
    return max(1, 10**decimals // SAMPLE_DIVISOR)


class TokenValuationEngine:
    """
    Derives USD values for token balances on one or more chains.

    Pricing is best-effort: any per-token failure values the token at 0,
    except a missing credential, which no later call could recover from.
    """

    def __init__(
        self,
        source: PriceSource,
        cache: Optional[TieredCache] = None,
        max_plausible_price: Decimal = DEFAULT_MAX_PLAUSIBLE_PRICE,
        native_price_ttl: float = TTL_SHORT,
        allow_native_fallback: bool = True,
    ):
        self.source = source
        self.cache = cache if cache is not None else TieredCache()
        self.max_plausible_price = max_plausible_price
        self.native_price_ttl = native_price_ttl
        self.allow_native_fallback = allow_native_fallback

    def _quote_price(
        self,
        chain_id: int,
        src: str,
        src_decimals: int,
        dst: str,
        dst_decimals: int,
        amount: int,
    ) -> Decimal:
        """Price of one whole src token in dst units, from a quote for amount."""
        quote = self.source.get_quote(chain_id, src, dst, amount)
        sent = quote.src_amount or amount
        if sent <= 0 or quote.dst_amount <= 0:
            return Decimal(0)
        return to_decimal(quote.dst_amount, dst_decimals) / to_decimal(sent, src_decimals)

    def native_price_usd(self, chain: Chain, stablecoin: Stablecoin) -> Decimal:
        """
        USD price of one whole native asset on a chain, or 0 if unavailable.

        Cached per chain for native_price_ttl seconds.
        """
        key = native_price_key(chain.id)
        cached = self.cache.get(key)
        if cached is not None:
            return Decimal(cached)

        try:
            price = self._quote_price(
                chain.id,
                NATIVE_TOKEN_ADDRESS,
                chain.native_decimals,
                stablecoin.address,
                stablecoin.decimals,
                10**chain.native_decimals,
            )
        except MissingCredentialError:
            raise
        except ApiError as e:
            logger.warning("No %s/%s quote on %s: %s", chain.native_symbol, stablecoin.symbol, chain.name, e)
            return Decimal(0)

        if price <= 0:
            logger.warning("Invalid %s price on %s: %s", chain.native_symbol, chain.name, price)
            return Decimal(0)

        self.cache.set(key, str(price), self.native_price_ttl)
        return price

    def _price_via_native(self, chain: Chain, address: str, decimals: int, stablecoin: Stablecoin) -> Decimal:
        """Two-hop price: token -> native asset, then native asset -> stablecoin."""
        native_price = self.native_price_usd(chain, stablecoin)
        if native_price <= 0:
            return Decimal(0)

        try:
            price_in_native = self._quote_price(
                chain.id,
                address,
                decimals,
                NATIVE_TOKEN_ADDRESS,
                chain.native_decimals,
                sample_amount(decimals),
            )
        except PermanentRejectionError:
            logger.debug("No route for %s on %s, valuing at 0", address, chain.name)
            return Decimal(0)
        except MissingCredentialError:
            raise
        except ApiError as e:
            logger.warning("Native-route quote failed for %s on %s: %s", address, chain.name, e)
            return Decimal(0)

        return price_in_native * native_price

    def token_price_usd(self, chain: Chain, address: str, decimals: int, stablecoin: Stablecoin) -> Decimal:
        """USD price of one whole non-native, non-stablecoin token, or 0."""
        try:
            price = self._quote_price(
                chain.id,
                address,
                decimals,
                stablecoin.address,
                stablecoin.decimals,
                sample_amount(decimals),
            )
        except PermanentRejectionError:
            if not self.allow_native_fallback:
                return Decimal(0)
            price = self._price_via_native(chain, address, decimals, stablecoin)
        except MissingCredentialError:
            raise
        except ApiError as e:
            logger.warning("Quote failed for %s on %s: %s", address, chain.name, e)
            return Decimal(0)

        if price > self.max_plausible_price:
            logger.warning(
                "Discarding implausible price %s for %s on %s",
                price,
                address,
                chain.name,
            )
            return Decimal(0)
        return price

    def value_usd(self, chain: Chain, address: str, raw_balance: int, decimals: int) -> float:
        """
        USD value of a raw balance of one token.

        Args:
            chain: Chain the token lives on
            address: Token contract address or NATIVE_TOKEN_ADDRESS
            raw_balance: Balance in smallest units
            decimals: Token decimal precision

        Returns:
            USD value, 0.0 when the token cannot be priced
        """
        if raw_balance <= 0:
            return 0.0

        address = address.lower()
        balance = to_decimal(raw_balance, decimals)

        stablecoin = self.source.find_stablecoin(chain.id)
        if stablecoin is None:
            logger.warning("No reference stablecoin on %s, valuing %s at 0", chain.name, address)
            return 0.0

        if address == stablecoin.address.lower():
            return float(balance)

        if address == NATIVE_TOKEN_ADDRESS:
            price = self.native_price_usd(chain, stablecoin)
        else:
            price = self.token_price_usd(chain, address, decimals, stablecoin)

        return float(balance * price)
