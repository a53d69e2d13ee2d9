#!/usr/bin/env python3
"""
Value a wallet's token holdings across the supported EVM chains.

This script scans every supported chain (or the ones given with --chains),
prices each held token in USD through 1inch quotes, reports progress on
stderr and writes a CSV report of all valued tokens with their dust, medium
or significant category.
"""

import argparse
import logging
import sys
from typing import List, Optional

from uniter.lib.chains import Chain, get_chain_by_id, get_chain_id, get_supported_chains
from uniter.lib.config import load_settings
from uniter.lib.formatters import collect_dust_tokens, format_usd_value, summarize_scan, write_csv
from uniter.lib.gateway import MissingCredentialError
from uniter.lib.models import ScanPhase, ScanProgress, WalletSession
from uniter.lib.portfolio import build_portfolio_scanner


def log(chain_name: str, message: str) -> None:
    """Log a message with chain prefix."""
    print(f"[{chain_name}] {message}", file=sys.stderr)


def print_progress(progress: ScanProgress) -> None:
    """Progress callback that echoes scan events to stderr."""
    if progress.phase == ScanPhase.PRICING and progress.message.startswith("Pricing "):
        return
    log(progress.chain_name, progress.message)


def validate_chains(chains: List[str]) -> List[Chain]:
    """
    Resolve chain names or ids to registry entries.

    Args:
        chains: Chain names, aliases or numeric ids

    Returns:
        Matching chains, in the order given

    Raises:
        UnsupportedChainError: If any chain is not supported
    """
    return [get_chain_by_id(get_chain_id(chain)) for chain in chains]


def main(args: Optional[List[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        args: Command line arguments (uses sys.argv if None)

    Returns:
        Exit code (0 for success, 1 for error)
    """
    parser = argparse.ArgumentParser(
        description="Value wallet token holdings across EVM chains and find dust.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Scan every supported chain, output to stdout
  %(prog)s --wallet 0x...

  # Scan Base and Arbitrum, save to file
  %(prog)s --wallet 0x... --chains base arbitrum --output portfolio.csv
        """,
    )

    parser.add_argument(
        "--api-key",
        help="1inch API key (defaults to ONEINCH_API_KEY)",
    )
    parser.add_argument(
        "--wallet",
        required=True,
        help="Wallet address to scan",
    )
    parser.add_argument(
        "--chains",
        nargs="+",
        help="Chains to scan by name or id (default: all supported chains)",
    )
    parser.add_argument(
        "--dust-threshold",
        type=float,
        help="USD value below which a token counts as dust",
    )
    parser.add_argument(
        "--exclude",
        nargs="+",
        default=[],
        help="Token addresses or symbols to leave out",
    )
    parser.add_argument(
        "--output",
        help="Output file path (timestamp auto-appended). If not specified, outputs to stdout.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    parsed_args = parser.parse_args(args)

    logging.basicConfig(
        level=logging.DEBUG if parsed_args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        settings = load_settings()
        chains = validate_chains(parsed_args.chains) if parsed_args.chains else get_supported_chains()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if parsed_args.api_key:
        settings.api_key = parsed_args.api_key
    if parsed_args.dust_threshold is not None:
        settings.dust_threshold = parsed_args.dust_threshold
    settings.exclude_tokens.extend(parsed_args.exclude)

    try:
        config = settings.to_scan_config(on_progress=print_progress)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    scanner = build_portfolio_scanner(settings, chains=chains)
    session = WalletSession(address=parsed_args.wallet, chain_id=chains[0].id)

    try:
        results = scanner.scan_all(session, config)
    except (MissingCredentialError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for chain_id, error in scanner.failures.items():
        log(get_chain_by_id(chain_id).name, f"ERROR: {error}. Skipping chain.")

    output_file = write_csv(results, parsed_args.output)
    if output_file:
        print(f"\nResults written to: {output_file}", file=sys.stderr)

    dust = collect_dust_tokens(results)
    if dust:
        print(f"\nDust tokens ({len(dust)}):", file=sys.stderr)
        for token in dust:
            print(
                f"  {token.symbol}: {token.balance_formatted} ({format_usd_value(token.balance_usd)})",
                file=sys.stderr,
            )

    print(summarize_scan(results, len(chains)), file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
