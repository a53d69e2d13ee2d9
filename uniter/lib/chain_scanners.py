"""
Single-chain portfolio scanner.

ChainScanner fetches a wallet's balances and the chain's token list through a
PriceSource, values every held token with the TokenValuationEngine, then
filters, sorts and categorizes the result, reporting progress at each phase.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from .chains import Chain, get_chain_by_id
from .formatters import format_usd_value
from .gateway import MissingCredentialError
from .models import (
    NATIVE_TOKEN_ADDRESS,
    ScanConfig,
    ScanPhase,
    ScanProgress,
    TokenBalance,
    TokenMetadata,
    TokenScanResult,
    WalletSession,
)
from .oneinch_client import PriceSource
from .valuation import TokenValuationEngine, to_decimal


logger = logging.getLogger(__name__)


class ChainScanError(Exception):
    """A chain scan could not complete. Carries the chain that failed."""

    def __init__(self, chain: Chain, message: str):
        super().__init__(message)
        self.chain = chain


def format_quantity(raw_balance: int, decimals: int) -> str:
    """
    Format balance with full precision, trimming trailing zeros.

    Args:
        raw_balance: Raw balance value (in smallest unit)
        decimals: Number of decimal places

    Returns:
        Formatted balance string with trailing zeros trimmed

    Examples:
        format_quantity(1000000, 6) -> "1"
        format_quantity(1500000, 6) -> "1.5"
        format_quantity(1234567890123456789, 18) -> "1.234567890123456789"
    """
    if raw_balance == 0:
        return "0"

    if decimals == 0:
        return str(raw_balance)

    balance = to_decimal(raw_balance, decimals)
    formatted = format(balance, "f")

    if "." in formatted:
        formatted = formatted.rstrip("0").rstrip(".")

    return formatted


def filter_tokens(
    tokens: Iterable[TokenBalance],
    min_usd_value: Optional[float] = None,
    min_token_balance: Optional[float] = None,
    exclude_zero_balances: bool = True,
    exclude_tokens: Optional[List[str]] = None,
    max_tokens: Optional[int] = None,
) -> List[TokenBalance]:
    """
    Filter tokens, sort them by USD value (highest first) and cap the count.

    Args:
        tokens: Tokens to filter
        min_usd_value: Drop tokens valued below this
        min_token_balance: Drop tokens holding fewer whole units than this
        exclude_zero_balances: Drop tokens with a zero balance
        exclude_tokens: Addresses or symbols to drop, case-insensitive
        max_tokens: Keep at most this many tokens

    Returns:
        The surviving tokens, highest USD value first
    """
    filtered = list(tokens)

    if exclude_zero_balances:
        filtered = [t for t in filtered if t.balance_num > 0]

    if min_usd_value is not None:
        filtered = [t for t in filtered if t.balance_usd >= min_usd_value]

    if min_token_balance:
        filtered = [t for t in filtered if t.balance_num >= min_token_balance]

    if exclude_tokens:
        excluded = {value.lower() for value in exclude_tokens}
        filtered = [
            t for t in filtered if t.address.lower() not in excluded and t.symbol.lower() not in excluded
        ]

    filtered.sort(key=lambda t: t.balance_usd, reverse=True)

    if max_tokens:
        filtered = filtered[:max_tokens]

    return filtered


def categorize_tokens(
    tokens: Iterable[TokenBalance],
    dust_threshold: float,
    significant_threshold: float,
) -> Tuple[List[TokenBalance], List[TokenBalance], List[TokenBalance]]:
    """
    Split non-native tokens into (dust, medium, significant).

    dust < dust_threshold <= medium < significant_threshold <= significant.
    The native asset is never placed in any category.
    """
    dust: List[TokenBalance] = []
    medium: List[TokenBalance] = []
    significant: List[TokenBalance] = []

    for token in tokens:
        if token.is_native:
            continue
        if token.balance_usd < dust_threshold:
            dust.append(token)
        elif token.balance_usd < significant_threshold:
            medium.append(token)
        else:
            significant.append(token)

    return dust, medium, significant


class ChainScanner:
    """
    Produces one TokenScanResult per (wallet, chain).

    Tokens are priced one at a time so progress events stay in order.
    """

    def __init__(self, source: PriceSource, engine: Optional[TokenValuationEngine] = None):
        """
        Initialize the scanner.

        Args:
            source: PriceSource for balances, metadata and quotes
            engine: Valuation engine (built on source if omitted)
        """
        self.source = source
        self.engine = engine or TokenValuationEngine(source)

    def _emit(self, config: ScanConfig, chain: Chain, phase: ScanPhase, message: str, **details) -> None:
        logger.debug("[%s] %s: %s", chain.name, phase.value, message)
        if config.on_progress is not None:
            config.on_progress(
                ScanProgress(
                    phase=phase,
                    chain_id=chain.id,
                    chain_name=chain.name,
                    message=message,
                    **details,
                )
            )

    def _resolve_metadata(
        self,
        chain: Chain,
        address: str,
        metadata: Dict[str, TokenMetadata],
    ) -> Optional[TokenMetadata]:
        meta = metadata.get(address)
        if meta is None and address == NATIVE_TOKEN_ADDRESS:
            meta = TokenMetadata(
                address=NATIVE_TOKEN_ADDRESS,
                symbol=chain.native_symbol,
                name=chain.native_name,
                decimals=chain.native_decimals,
            )
        return meta

    def process_balances(
        self,
        chain: Chain,
        balances: Dict[str, int],
        metadata: Dict[str, TokenMetadata],
        config: ScanConfig,
    ) -> List[TokenBalance]:
        """
        Value every balance that has metadata, emitting a pricing event per token.

        Args:
            chain: Chain being scanned
            balances: Raw balances by lower-cased address
            metadata: Token metadata by lower-cased address
            config: Scan configuration (for progress reporting)

        Returns:
            TokenBalance entries in balance-response order
        """
        tokens: List[TokenBalance] = []
        entries = list(balances.items())
        total = len(entries)
        skipped = 0

        for index, (address, raw_balance) in enumerate(entries, start=1):
            address = address.lower()
            meta = self._resolve_metadata(chain, address, metadata)
            if meta is None:
                skipped += 1
                continue

            self._emit(
                config,
                chain,
                ScanPhase.PRICING,
                f"Pricing {meta.symbol} ({index}/{total})",
                current_token=meta.symbol,
                token_index=index,
                total_tokens=total,
            )

            try:
                balance_usd = self.engine.value_usd(chain, address, raw_balance, meta.decimals)
            except MissingCredentialError:
                raise
            except Exception as e:
                logger.warning("[%s] Valuing %s failed, using 0: %s", chain.name, meta.symbol, e)
                balance_usd = 0.0
            balance_formatted = format_quantity(raw_balance, meta.decimals)
            token = TokenBalance(
                address=address,
                symbol=meta.symbol,
                name=meta.name,
                decimals=meta.decimals,
                balance=str(raw_balance),
                balance_formatted=balance_formatted,
                balance_num=float(to_decimal(raw_balance, meta.decimals)),
                balance_usd=balance_usd,
                is_native=address == NATIVE_TOKEN_ADDRESS,
            )
            tokens.append(token)

            self._emit(
                config,
                chain,
                ScanPhase.PRICING,
                f"{meta.symbol}: {balance_formatted} × {format_usd_value(token.price_usd)} = "
                f"{format_usd_value(balance_usd)} ({index}/{total})",
                current_token=meta.symbol,
                token_index=index,
                total_tokens=total,
            )

        if skipped > 0:
            logger.info("[%s] Skipped %d token(s) without metadata", chain.name, skipped)

        return tokens

    def scan(self, session: WalletSession, config: ScanConfig) -> TokenScanResult:
        """
        Scan a wallet on the session's chain.

        Args:
            session: Wallet session scoped to the chain to scan
            config: Scan configuration

        Returns:
            TokenScanResult with filtered, categorized tokens

        Raises:
            UnsupportedChainError: The session's chain is not in the registry
            MissingCredentialError: No API key in a direct-access context
            ChainScanError: Fetching or valuing the chain's tokens failed
        """
        chain = get_chain_by_id(session.chain_id)

        self._emit(
            config,
            chain,
            ScanPhase.STARTING,
            f"Starting scan on {chain.name} (Chain ID: {chain.id})",
        )

        try:
            self._emit(config, chain, ScanPhase.FETCHING_BALANCES, "Fetching wallet balances")
            balances = self.source.get_balances(chain.id, session.address)
            self._emit(
                config,
                chain,
                ScanPhase.BALANCES_RECEIVED,
                f"Found {len(balances)} tokens with balances",
                token_count=len(balances),
            )

            self._emit(config, chain, ScanPhase.FETCHING_METADATA, "Fetching token metadata")
            metadata = self.source.get_metadata(chain.id)
            self._emit(
                config,
                chain,
                ScanPhase.METADATA_RECEIVED,
                f"Loaded metadata for {len(metadata)} tokens",
                metadata_count=len(metadata),
            )

            self._emit(
                config,
                chain,
                ScanPhase.PROCESSING,
                f"Processing {len(balances)} tokens",
                total_tokens=len(balances),
            )
            processed = self.process_balances(chain, balances, metadata, config)
        except MissingCredentialError:
            raise
        except Exception as e:
            raise ChainScanError(chain, f"Scan failed for {chain.name}: {e}") from e

        self._emit(
            config,
            chain,
            ScanPhase.FILTERING,
            f"Filtering {len(processed)} processed tokens",
            total_tokens=len(processed),
        )
        filtered = filter_tokens(
            processed,
            min_usd_value=config.min_usd_value,
            min_token_balance=config.min_token_balance,
            exclude_zero_balances=True,
            exclude_tokens=config.exclude_tokens,
            max_tokens=config.max_tokens_to_process,
        )
        self._emit(
            config,
            chain,
            ScanPhase.FILTERING,
            f"Filtered to {len(filtered)} valuable tokens",
            total_tokens=len(filtered),
        )

        dust, medium, significant = categorize_tokens(
            filtered,
            config.dust_threshold,
            config.significant_threshold,
        )
        total_usd = sum((token.balance_usd for token in filtered), 0.0)

        self._emit(
            config,
            chain,
            ScanPhase.COMPLETE,
            f"Scan complete: {len(filtered)} tokens valued {format_usd_value(total_usd)}",
            total_tokens=len(filtered),
        )

        return TokenScanResult(
            chain_id=chain.id,
            chain_name=chain.name,
            all_tokens=filtered,
            dust_tokens=dust,
            medium_tokens=medium,
            significant_tokens=significant,
            total_usd=total_usd,
        )
