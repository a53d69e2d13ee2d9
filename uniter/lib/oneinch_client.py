"""
1inch API client behind a narrow price-source interface.

PriceSource is the seam the valuation engine and chain scanners depend on.
OneInchClient implements it on top of the RequestGateway, normalizing the
upstream response shapes and caching the slow-changing lookups.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .cache import (
    TTL_LONG,
    TTL_SHORT,
    TieredCache,
    failed_search_key,
    metadata_key,
    stablecoin_key,
)
from .chains import get_chain_name
from .gateway import ApiError, MissingCredentialError, ParseFailureError, RequestGateway
from .models import Quote, Stablecoin, TokenMetadata


logger = logging.getLogger(__name__)

STABLECOIN_QUERY = "USDC"
STABLECOIN_DECIMALS = 6


class PriceSource(ABC):
    """
    Everything the valuation pipeline needs from the upstream API.

    Addresses in returned mappings are lower-cased.
    """

    @abstractmethod
    def get_balances(self, chain_id: int, wallet: str) -> Dict[str, int]:
        """Return raw balances by token address for a wallet on a chain."""
        pass

    @abstractmethod
    def get_metadata(self, chain_id: int) -> Dict[str, TokenMetadata]:
        """Return metadata for every token the upstream knows on a chain."""
        pass

    @abstractmethod
    def get_quote(self, chain_id: int, src: str, dst: str, amount: int) -> Quote:
        """
        Quote a swap of amount raw units of src into dst.

        Raises:
            PermanentRejectionError: No route or no liquidity for the pair
        """
        pass

    @abstractmethod
    def find_stablecoin(self, chain_id: int) -> Optional[Stablecoin]:
        """Return the chain's reference stablecoin, or None if none is known."""
        pass


def _is_plausible_address(address: Optional[str]) -> bool:
    return bool(address) and address not in ("0", "0x0") and len(address) >= 10


def normalize_metadata(data: Any) -> Dict[str, TokenMetadata]:
    """
    Normalize a token-list response into an address-keyed mapping.

    The token list arrives either keyed by address, as a plain list, or as an
    object wrapping a "tokens" list. Entries without a string address are
    dropped.
    """
    if isinstance(data, dict) and isinstance(data.get("tokens"), list):
        entries: List[Any] = data["tokens"]
    elif isinstance(data, dict):
        entries = []
        for key, value in data.items():
            if isinstance(value, dict):
                entries.append({"address": key, **value} if "address" not in value else value)
    elif isinstance(data, list):
        entries = data
    else:
        raise ParseFailureError(
            f"Unexpected token metadata shape: {type(data).__name__}",
            body_prefix=str(data)[:200],
        )

    metadata: Dict[str, TokenMetadata] = {}
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        if not isinstance(entry.get("address"), str) or not entry["address"]:
            continue
        address = entry["address"].lower()
        try:
            decimals = int(entry.get("decimals", 18))
        except (TypeError, ValueError):
            continue
        metadata[address] = TokenMetadata(
            address=address,
            symbol=entry.get("symbol") or "",
            name=entry.get("name") or "",
            decimals=decimals,
            logo_uri=entry.get("logoURI"),
        )
    return metadata


def _metadata_to_cache(metadata: Dict[str, TokenMetadata]) -> Dict[str, Dict[str, Any]]:
    return {
        address: {
            "address": meta.address,
            "symbol": meta.symbol,
            "name": meta.name,
            "decimals": meta.decimals,
            "logoURI": meta.logo_uri,
        }
        for address, meta in metadata.items()
    }


class OneInchClient(PriceSource):
    """
    Production PriceSource backed by the 1inch balance, token and swap APIs.

    All calls go through the shared RequestGateway.
    """

    def __init__(self, gateway: RequestGateway, cache: Optional[TieredCache] = None):
        """
        Initialize the client.

        Args:
            gateway: RequestGateway used for every upstream call
            cache: Cache for stablecoin and metadata lookups (a private one if omitted)
        """
        self.gateway = gateway
        self.cache = cache if cache is not None else TieredCache()

    def get_balances(self, chain_id: int, wallet: str) -> Dict[str, int]:
        """
        Get raw token balances for a wallet, native asset included.

        Args:
            chain_id: Target chain id
            wallet: Wallet address

        Returns:
            Mapping of lower-cased token address to raw integer balance
        """
        data = self.gateway.request(
            f"/balance/v1.2/{chain_id}/balances/{wallet}",
            f"{get_chain_name(chain_id)} balances",
        )
        if not isinstance(data, dict):
            raise ParseFailureError(
                f"Unexpected balance response shape: {type(data).__name__}",
                body_prefix=str(data)[:200],
            )

        balances: Dict[str, int] = {}
        for address, raw in data.items():
            try:
                balances[address.lower()] = int(raw)
            except (TypeError, ValueError):
                logger.warning("Skipping unparsable balance %r for %s", raw, address)
        return balances

    def get_metadata(self, chain_id: int) -> Dict[str, TokenMetadata]:
        """
        Get the chain's token list, cached long-term per chain.

        Returns:
            Mapping of lower-cased token address to TokenMetadata
        """
        key = metadata_key(chain_id)
        cached = self.cache.get(key)
        if cached is not None:
            return normalize_metadata(cached)

        data = self.gateway.request(
            f"/token/v1.2/{chain_id}",
            f"{get_chain_name(chain_id)} token metadata",
        )
        metadata = normalize_metadata(data)
        if metadata:
            self.cache.set(key, _metadata_to_cache(metadata), TTL_LONG)
        return metadata

    def get_quote(self, chain_id: int, src: str, dst: str, amount: int) -> Quote:
        """
        Quote swapping amount raw units of src into dst.

        Raises:
            PermanentRejectionError: The pair has no route or liquidity
            ParseFailureError: The response carries no dstAmount
        """
        data = self.gateway.request(
            f"/swap/v6.0/{chain_id}/quote",
            f"{get_chain_name(chain_id)} quote {src} -> {dst}",
            params={"src": src, "dst": dst, "amount": str(amount)},
        )
        if not isinstance(data, dict) or data.get("dstAmount") in (None, ""):
            raise ParseFailureError(
                "Quote response carries no dstAmount",
                body_prefix=str(data)[:200],
            )

        src_amount = data.get("srcAmount")
        try:
            return Quote(
                src_amount=int(src_amount) if src_amount not in (None, "", "undefined") else None,
                dst_amount=int(data["dstAmount"]),
            )
        except (TypeError, ValueError) as e:
            raise ParseFailureError(
                f"Quote amounts are not integers: {e}",
                body_prefix=str(data)[:200],
            ) from e

    def find_stablecoin(self, chain_id: int) -> Optional[Stablecoin]:
        """
        Discover the chain's USDC through the token search endpoint.

        Hits are cached long-term. A miss is remembered briefly so the search
        is not repeated on every token. Lookup failures other than a missing
        credential degrade to None.
        """
        key = stablecoin_key(chain_id)
        cached = self.cache.get(key)
        if cached is not None:
            return Stablecoin.from_dict(cached)

        failed_key = failed_search_key("stablecoin", chain_id, STABLECOIN_QUERY)
        if self.cache.exists(failed_key):
            logger.debug("Stablecoin search on chain %s failed recently, skipping", chain_id)
            return None

        try:
            results = self.gateway.request(
                f"/token/v1.3/{chain_id}/search",
                f"{get_chain_name(chain_id)} stablecoin search",
                params={"query": STABLECOIN_QUERY},
            )
        except MissingCredentialError:
            raise
        except ApiError as e:
            logger.warning("Stablecoin search failed on chain %s: %s", chain_id, e)
            return None

        for token in results if isinstance(results, list) else []:
            if not isinstance(token, dict) or not _is_plausible_address(token.get("address")):
                continue
            if token.get("symbol") == STABLECOIN_QUERY and token.get("decimals") == STABLECOIN_DECIMALS:
                stablecoin = Stablecoin(
                    address=token["address"].lower(),
                    symbol=token["symbol"],
                    decimals=STABLECOIN_DECIMALS,
                )
                self.cache.set(key, stablecoin.to_dict(), TTL_LONG)
                logger.info("Found %s on chain %s: %s", stablecoin.symbol, chain_id, stablecoin.address)
                return stablecoin

        logger.warning("No %s token found on chain %s", STABLECOIN_QUERY, chain_id)
        self.cache.set(failed_key, True, TTL_SHORT)
        return None
