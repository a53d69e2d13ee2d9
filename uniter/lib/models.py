"""
Data models for multi-chain portfolio valuation.

This module defines the token, progress, configuration and result types that
flow between the chain scanners, the valuation engine and the front ends.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


# Reserved pseudo-address for a chain's native asset
NATIVE_TOKEN_ADDRESS = "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee"

# CSV column order for output
CSV_COLUMNS = [
    "chain",
    "chain_id",
    "symbol",
    "name",
    "address",
    "balance",
    "usd_value",
    "category",
]

DEFAULT_DUST_THRESHOLD = 5.0
DEFAULT_SIGNIFICANT_THRESHOLD = 100.0
DEFAULT_MIN_USD_VALUE = 0.01
DEFAULT_MAX_TOKENS = 100


@dataclass(frozen=True)
class WalletSession:
    """An established wallet connection, scoped to one chain."""

    address: str
    chain_id: int


@dataclass(frozen=True)
class TokenMetadata:
    """Token metadata as reported by the upstream token list."""

    address: str
    symbol: str
    name: str
    decimals: int
    logo_uri: Optional[str] = None


@dataclass(frozen=True)
class Stablecoin:
    """The reference stablecoin used as valuation anchor on one chain."""

    address: str
    symbol: str
    decimals: int

    def to_dict(self) -> Dict[str, Any]:
        return {"address": self.address, "symbol": self.symbol, "decimals": self.decimals}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Stablecoin":
        return cls(
            address=data["address"],
            symbol=data["symbol"],
            decimals=int(data["decimals"]),
        )


@dataclass(frozen=True)
class Quote:
    """A swap quote: src_amount of one token buys dst_amount of another (raw units)."""

    src_amount: Optional[int]
    dst_amount: int


@dataclass(frozen=True)
class TokenBalance:
    """
    One held token on one chain, valued in USD.

    The raw balance is kept as an integer string so that it never passes
    through a float.
    """

    address: str
    symbol: str
    name: str
    decimals: int
    balance: str  # Raw balance in smallest units
    balance_formatted: str  # Full precision, trailing zeros trimmed
    balance_num: float
    balance_usd: float
    is_native: bool = False

    @property
    def price_usd(self) -> float:
        """USD price per whole token, derived from the valuation."""
        if self.balance_num <= 0:
            return 0.0
        return self.balance_usd / self.balance_num


class ScanPhase(str, Enum):
    """Pipeline phases reported through ScanProgress, in emission order."""

    SCANNING_CHAIN = "scanning_chain"  # orchestrator, once per chain
    STARTING = "starting"
    FETCHING_BALANCES = "fetching_balances"
    BALANCES_RECEIVED = "balances_received"
    FETCHING_METADATA = "fetching_metadata"
    METADATA_RECEIVED = "metadata_received"
    PROCESSING = "processing"
    PRICING = "pricing"
    FILTERING = "filtering"
    COMPLETE = "complete"


@dataclass(frozen=True)
class ScanProgress:
    """A discrete progress event emitted while a scan runs."""

    phase: ScanPhase
    chain_id: int
    chain_name: str
    message: str
    current_token: Optional[str] = None
    token_index: Optional[int] = None
    total_tokens: Optional[int] = None
    token_count: Optional[int] = None
    metadata_count: Optional[int] = None


ProgressCallback = Callable[[ScanProgress], None]


@dataclass
class ScanConfig:
    """
    Per-scan parameters, read-only while a scan runs.

    Thresholds partition tokens as
    dust < dust_threshold <= medium < significant_threshold <= significant.
    """

    api_key: Optional[str] = None  # informational; the gateway holds the credential it sends
    max_tokens_to_process: int = DEFAULT_MAX_TOKENS
    min_usd_value: float = DEFAULT_MIN_USD_VALUE
    min_token_balance: float = 0.0  # 0 disables the balance floor
    exclude_tokens: List[str] = field(default_factory=list)
    dust_threshold: float = DEFAULT_DUST_THRESHOLD
    significant_threshold: float = DEFAULT_SIGNIFICANT_THRESHOLD
    on_progress: Optional[ProgressCallback] = None

    def __post_init__(self) -> None:
        if self.dust_threshold > self.significant_threshold:
            raise ValueError(
                f"dust_threshold ({self.dust_threshold}) must not exceed "
                f"significant_threshold ({self.significant_threshold})"
            )
        if self.max_tokens_to_process < 1:
            raise ValueError("max_tokens_to_process must be at least 1")


@dataclass
class TokenScanResult:
    """
    Result of scanning a single chain.

    dust_tokens, medium_tokens and significant_tokens partition every
    non-native entry of all_tokens; the native asset is in none of them.
    """

    chain_id: int
    chain_name: str
    all_tokens: List[TokenBalance]
    dust_tokens: List[TokenBalance]
    medium_tokens: List[TokenBalance]
    significant_tokens: List[TokenBalance]
    total_usd: float

    @property
    def native_tokens(self) -> List[TokenBalance]:
        return [token for token in self.all_tokens if token.is_native]

    def category_of(self, token: TokenBalance) -> str:
        """Return the category name a token was placed in."""
        if token.is_native:
            return "native"
        if token in self.dust_tokens:
            return "dust"
        if token in self.significant_tokens:
            return "significant"
        return "medium"
