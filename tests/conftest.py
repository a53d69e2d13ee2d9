"""
Pytest configuration and shared fixtures for portfolio scanner tests.
"""

from typing import Dict, List, Optional, Tuple, Union

import pytest

from uniter.lib.gateway import PermanentRejectionError
from uniter.lib.models import Quote, Stablecoin, TokenMetadata
from uniter.lib.oneinch_client import PriceSource


USDC_BASE = "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913"
WETH_BASE = "0x4200000000000000000000000000000000000006"
DEGEN_BASE = "0x4ed4e862860bed51a9570b96d89af5e1b0efefed"


class FakeClock:
    """Deterministic clock whose sleep advances time and records the delay."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePriceSource(PriceSource):
    """In-memory PriceSource that records every call."""

    def __init__(self):
        self.balances: Dict[int, Union[Dict[str, int], Exception]] = {}
        self.metadata: Dict[int, Union[Dict[str, TokenMetadata], Exception]] = {}
        self.stablecoins: Dict[int, Stablecoin] = {}
        self.quotes: Dict[Tuple[int, str, str], Union[Quote, Exception]] = {}
        self.calls: List[tuple] = []

    def add_token(self, chain_id: int, address: str, symbol: str, decimals: int, raw_balance: int) -> None:
        address = address.lower()
        self.balances.setdefault(chain_id, {})[address] = raw_balance
        self.metadata.setdefault(chain_id, {})[address] = TokenMetadata(
            address=address, symbol=symbol, name=symbol, decimals=decimals
        )

    def add_quote(self, chain_id: int, src: str, dst: str, result: Union[Quote, Exception]) -> None:
        self.quotes[(chain_id, src.lower(), dst.lower())] = result

    def calls_to(self, method: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == method]

    def get_balances(self, chain_id, wallet):
        self.calls.append(("get_balances", chain_id, wallet))
        result = self.balances.get(chain_id, {})
        if isinstance(result, Exception):
            raise result
        return dict(result)

    def get_metadata(self, chain_id):
        self.calls.append(("get_metadata", chain_id))
        result = self.metadata.get(chain_id, {})
        if isinstance(result, Exception):
            raise result
        return dict(result)

    def get_quote(self, chain_id, src, dst, amount):
        self.calls.append(("get_quote", chain_id, src.lower(), dst.lower(), amount))
        result = self.quotes.get((chain_id, src.lower(), dst.lower()))
        if result is None:
            raise PermanentRejectionError("insufficient liquidity", status_code=400)
        if isinstance(result, Exception):
            raise result
        return result

    def find_stablecoin(self, chain_id) -> Optional[Stablecoin]:
        self.calls.append(("find_stablecoin", chain_id))
        return self.stablecoins.get(chain_id)


@pytest.fixture
def sample_wallet_address():
    """Sample Ethereum wallet address for testing."""
    return "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"  # vitalik.eth


@pytest.fixture
def mock_api_key():
    """Mock 1inch API key for testing."""
    return "test-api-key-12345"


@pytest.fixture
def fake_clock():
    """Deterministic clock starting at t=0."""
    return FakeClock()


@pytest.fixture
def usdc_base():
    """USDC as the reference stablecoin on Base."""
    return Stablecoin(address=USDC_BASE, symbol="USDC", decimals=6)


@pytest.fixture
def price_source(usdc_base):
    """Fake price source with USDC registered on Base and nothing held."""
    source = FakePriceSource()
    source.stablecoins[8453] = usdc_base
    return source
