"""
Multi-chain portfolio scan orchestration.

PortfolioScanner walks the chain registry in order, scanning one chain at a
time. A chain that fails is logged, recorded and skipped; only a missing
credential aborts the whole scan.
"""

import logging
from dataclasses import replace
from typing import Dict, List, Optional

from .cache import KeyValueStore, TieredCache
from .chain_scanners import ChainScanner
from .chains import Chain, get_supported_chains
from .config import Settings
from .gateway import MissingCredentialError
from .models import (
    ProgressCallback,
    ScanConfig,
    ScanPhase,
    ScanProgress,
    TokenScanResult,
    WalletSession,
)
from .oneinch_client import OneInchClient
from .valuation import TokenValuationEngine


logger = logging.getLogger(__name__)


class PortfolioScanner:
    """
    Scans every supported chain for a wallet and aggregates the results.

    Chains are scanned sequentially: they share one gateway and its
    admission-control queue. Running chains in parallel would need a lock
    around the gateway's dispatch timestamp and a thread-safe cache first.
    """

    def __init__(self, scanner: ChainScanner, chains: Optional[List[Chain]] = None):
        """
        Initialize the orchestrator.

        Args:
            scanner: Single-chain scanner used for every chain
            chains: Chains to scan, in order (the full registry if omitted)
        """
        self.scanner = scanner
        self.chains = chains if chains is not None else get_supported_chains()
        self.failures: Dict[int, str] = {}

    def scan_all(
        self,
        session: WalletSession,
        config: ScanConfig,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[TokenScanResult]:
        """
        Scan the wallet on every configured chain.

        Args:
            session: Wallet session; its chain id is replaced per chain
            config: Scan configuration shared by every chain
            on_progress: Progress callback, overriding config.on_progress

        Returns:
            One TokenScanResult per chain that scanned successfully, in
            registry order. Chains holding nothing relevant are included with
            empty token lists. Failed chains are listed in self.failures.

        Raises:
            ValueError: The session has no wallet address
            MissingCredentialError: No API key in a direct-access context
        """
        if not session or not session.address:
            raise ValueError("No wallet session available")

        if on_progress is not None:
            config = replace(config, on_progress=on_progress)

        self.failures = {}
        results: List[TokenScanResult] = []
        total = len(self.chains)
        logger.info("Starting multi-chain scan of %s on %d chains", session.address, total)

        for index, chain in enumerate(self.chains, start=1):
            if config.on_progress is not None:
                config.on_progress(
                    ScanProgress(
                        phase=ScanPhase.SCANNING_CHAIN,
                        chain_id=chain.id,
                        chain_name=chain.name,
                        message=f"Scanning chain {index}/{total}: {chain.name}...",
                    )
                )

            chain_session = replace(session, chain_id=chain.id)
            try:
                result = self.scanner.scan(chain_session, config)
            except MissingCredentialError:
                raise
            except Exception as e:
                logger.warning("Failed to scan %s: %s", chain.name, e)
                self.failures[chain.id] = str(e)
                continue

            logger.info(
                "%s: %d tokens, %d dust, total $%.2f",
                chain.name,
                len(result.all_tokens),
                len(result.dust_tokens),
                result.total_usd,
            )
            results.append(result)

        return results


def build_portfolio_scanner(
    settings: Settings,
    store: Optional[KeyValueStore] = None,
    chains: Optional[List[Chain]] = None,
) -> PortfolioScanner:
    """
    Wire gateway, cache, client, valuation engine and scanners together.

    Args:
        settings: Loaded settings
        store: Optional external cache tier (e.g. a redis.Redis client)
        chains: Chains to scan (the full registry if omitted)
    """
    cache = TieredCache(store=store)
    gateway = settings.create_gateway(cache=cache)
    client = OneInchClient(gateway, cache=cache)
    engine = TokenValuationEngine(client, cache=cache)
    return PortfolioScanner(ChainScanner(client, engine), chains=chains)
