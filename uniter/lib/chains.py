"""
Static registry of the EVM chains the portfolio scanner supports.

The registry is ordered; multi-chain scans walk it in this order.
"""

from dataclasses import dataclass
from typing import List, Optional, Union


@dataclass(frozen=True)
class Chain:
    """Immutable descriptor for a supported chain."""

    id: int
    name: str
    native_symbol: str
    native_name: str
    native_decimals: int = 18


class UnsupportedChainError(ValueError):
    """Raised when a chain id or name is not in the registry."""

    pass


SUPPORTED_CHAINS: List[Chain] = [
    Chain(42161, "Arbitrum One", "ETH", "Ether"),
    Chain(43114, "Avalanche", "AVAX", "Avalanche"),
    Chain(8453, "Base", "ETH", "Ether"),
    Chain(56, "BNB Smart Chain", "BNB", "BNB"),
    Chain(100, "Gnosis", "XDAI", "xDAI"),
    Chain(59144, "Linea Mainnet", "ETH", "Linea Ether"),
    Chain(1, "Ethereum", "ETH", "Ether"),
    Chain(10, "OP Mainnet", "ETH", "Ether"),
    Chain(137, "Polygon", "POL", "POL"),
    Chain(146, "Sonic", "S", "Sonic"),
    Chain(130, "Unichain", "ETH", "Ether"),
    Chain(324, "ZKsync Era", "ETH", "Ether"),
]

# Name aliases accepted on top of the full name and its first word
CHAIN_ALIASES = {
    "mainnet": 1,
    "bsc": 56,
    "bnb": 56,
}


def get_supported_chains() -> List[Chain]:
    """Return the supported chains in registry order."""
    return list(SUPPORTED_CHAINS)


def find_chain(chain_id: int) -> Optional[Chain]:
    """Return the chain with the given id, or None."""
    for chain in SUPPORTED_CHAINS:
        if chain.id == chain_id:
            return chain
    return None


def get_chain_by_id(chain_id: int) -> Chain:
    """
    Look up a chain by numeric id.

    Raises:
        UnsupportedChainError: If the id is not in the registry
    """
    chain = find_chain(chain_id)
    if chain is None:
        raise UnsupportedChainError(f"Unsupported chain ID: {chain_id}")
    return chain


def get_chain_id(value: Union[int, str]) -> int:
    """
    Resolve a chain id from a numeric id or a chain name.

    Names match case-insensitively against the full chain name, the first word
    of the name, or one of CHAIN_ALIASES.

    Examples:
        get_chain_id("8453") -> 8453
        get_chain_id("arbitrum") -> 42161
        get_chain_id("bsc") -> 56
    """
    if isinstance(value, int):
        return get_chain_by_id(value).id

    text = value.strip()
    if text.isdigit():
        chain = find_chain(int(text))
        if chain is not None:
            return chain.id

    normalized = text.lower()
    if normalized in CHAIN_ALIASES:
        return CHAIN_ALIASES[normalized]

    for chain in SUPPORTED_CHAINS:
        full_name = chain.name.lower()
        if normalized == full_name or normalized == full_name.split(" ")[0]:
            return chain.id

    raise UnsupportedChainError(
        f"Unsupported chain: {value}. "
        f"Supported: {', '.join(c.name for c in SUPPORTED_CHAINS)}"
    )


def get_chain_name(chain_id: int) -> str:
    """Return the display name for a chain id, or 'Unknown'."""
    chain = find_chain(chain_id)
    return chain.name if chain else "Unknown"
