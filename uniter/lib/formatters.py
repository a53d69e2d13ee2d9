"""
Output formatters for portfolio scan reports.

This module handles USD formatting, CSV file generation with timestamp-based
filenames, and the multi-chain scan summary.
"""

import csv
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional, TextIO

from .models import CSV_COLUMNS, TokenBalance, TokenScanResult


def format_usd_value(value: float) -> str:
    """
    Format a USD amount for display.

    Examples:
        format_usd_value(1234.5) -> "$1,234.50"
        format_usd_value(0.004) -> "<$0.01"
        format_usd_value(0) -> "$0.00"
    """
    if 0 < value < 0.01:
        return "<$0.01"
    return f"${value:,.2f}"


def generate_timestamp() -> str:
    """
    Generate a timestamp string for filenames.

    Returns:
        Timestamp in YYYYMMDD_HHMMSS format
    """
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def generate_filename(base_path: str, timestamp: Optional[str] = None) -> str:
    """
    Generate a timestamped filename for a CSV report.

    Args:
        base_path: Base output path (e.g., "portfolio.csv")
        timestamp: Optional timestamp to use (generates new one if not provided)

    Examples:
        generate_filename("portfolio.csv", "20241214_153022")
        -> "portfolio_20241214_153022.csv"
    """
    if timestamp is None:
        timestamp = generate_timestamp()

    path = Path(base_path)
    suffix = path.suffix or ".csv"
    return str(path.parent / f"{path.stem}_{timestamp}{suffix}")


def token_to_csv_row(result: TokenScanResult, token: TokenBalance) -> List[str]:
    """Convert one scanned token to a CSV row (list of strings)."""
    return [
        result.chain_name,
        str(result.chain_id),
        token.symbol,
        token.name,
        token.address,
        token.balance_formatted,
        f"{token.balance_usd:.2f}",
        result.category_of(token),
    ]


def write_csv_to_stream(results: List[TokenScanResult], stream: TextIO) -> None:
    """
    Write every token of every result to a CSV stream.

    Args:
        results: Per-chain scan results
        stream: File-like object to write to
    """
    writer = csv.writer(stream)
    writer.writerow(CSV_COLUMNS)

    for result in results:
        for token in result.all_tokens:
            writer.writerow(token_to_csv_row(result, token))


def write_csv(results: List[TokenScanResult], output_path: Optional[str] = None) -> Optional[str]:
    """
    Write scan results to a CSV file or stdout.

    Args:
        results: Per-chain scan results
        output_path: Base output path. If None, writes to stdout.

    Returns:
        The written file path, or None when writing to stdout
    """
    if output_path is None:
        write_csv_to_stream(results, sys.stdout)
        return None

    filename = generate_filename(output_path)
    with open(filename, "w", newline="", encoding="utf-8") as f:
        write_csv_to_stream(results, f)
    return filename


def collect_dust_tokens(results: List[TokenScanResult]) -> List[TokenBalance]:
    """Return every non-native dust token across results, highest value first."""
    dust: List[TokenBalance] = []
    for result in results:
        dust.extend(result.dust_tokens)
    return sorted(dust, key=lambda t: t.balance_usd, reverse=True)


def summarize_scan(results: List[TokenScanResult], total_chains: int) -> str:
    """
    One-line summary of a multi-chain scan.

    Example:
        "Scanned 11 of 12 chains: 23 tokens worth $1,234.56 (7 dust)"
    """
    token_count = sum(len(r.all_tokens) for r in results)
    dust_count = sum(len(r.dust_tokens) for r in results)
    total_usd = sum((r.total_usd for r in results), 0.0)
    return (
        f"Scanned {len(results)} of {total_chains} chains: "
        f"{token_count} tokens worth {format_usd_value(total_usd)} ({dust_count} dust)"
    )
