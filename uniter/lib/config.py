"""
Settings loaded from the environment, with .env support.

Real environment variables win over values from a .env file.
"""

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from dotenv import find_dotenv, load_dotenv

from .cache import TieredCache
from .gateway import DEFAULT_BASE_URL, DEFAULT_MAX_RETRIES, RequestGateway
from .models import (
    DEFAULT_DUST_THRESHOLD,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MIN_USD_VALUE,
    DEFAULT_SIGNIFICANT_THRESHOLD,
    ProgressCallback,
    ScanConfig,
)


DEFAULT_REQUEST_INTERVAL_MS = 1000


@dataclass
class Settings:
    """Process-wide settings for the gateway and for scans."""

    api_key: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    proxy_base_url: Optional[str] = None
    request_interval_ms: int = DEFAULT_REQUEST_INTERVAL_MS
    max_api_retries: int = DEFAULT_MAX_RETRIES
    dust_threshold: float = DEFAULT_DUST_THRESHOLD
    significant_threshold: float = DEFAULT_SIGNIFICANT_THRESHOLD
    min_usd_value: float = DEFAULT_MIN_USD_VALUE
    max_tokens_to_process: int = DEFAULT_MAX_TOKENS
    exclude_tokens: List[str] = field(default_factory=list)

    def to_scan_config(self, on_progress: Optional[ProgressCallback] = None) -> ScanConfig:
        return ScanConfig(
            api_key=self.api_key,
            max_tokens_to_process=self.max_tokens_to_process,
            min_usd_value=self.min_usd_value,
            exclude_tokens=list(self.exclude_tokens),
            dust_threshold=self.dust_threshold,
            significant_threshold=self.significant_threshold,
            on_progress=on_progress,
        )

    def create_gateway(self, cache: Optional[TieredCache] = None) -> RequestGateway:
        return RequestGateway(
            api_key=self.api_key,
            base_url=self.base_url,
            proxy_base_url=self.proxy_base_url,
            min_interval=self.request_interval_ms / 1000.0,
            max_retries=self.max_api_retries,
            cache=cache,
        )


def _parse_number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"Invalid value for {name}: {raw!r}") from None


def load_settings(env: Optional[Mapping[str, str]] = None, dotenv_path: Optional[str] = None) -> Settings:
    """
    Build Settings from environment variables.

    Args:
        env: Mapping to read instead of os.environ (skips .env loading)
        dotenv_path: Explicit .env file; searched from the working directory if omitted

    Raises:
        ValueError: A numeric variable cannot be parsed
    """
    if env is None:
        load_dotenv(dotenv_path or find_dotenv(usecwd=True), override=False)
        env = os.environ

    exclude = env.get("EXCLUDE_TOKENS", "")

    return Settings(
        api_key=env.get("ONEINCH_API_KEY") or None,
        base_url=env.get("ONEINCH_BASE_URL") or DEFAULT_BASE_URL,
        proxy_base_url=env.get("UNITER_PROXY_BASE_URL") or None,
        request_interval_ms=_parse_number(env, "API_REQUEST_INTERVAL", DEFAULT_REQUEST_INTERVAL_MS, int),
        max_api_retries=_parse_number(env, "MAX_API_RETRIES", DEFAULT_MAX_RETRIES, int),
        dust_threshold=_parse_number(env, "DUST_THRESHOLD_USD", DEFAULT_DUST_THRESHOLD, float),
        significant_threshold=_parse_number(
            env, "SIGNIFICANT_THRESHOLD_USD", DEFAULT_SIGNIFICANT_THRESHOLD, float
        ),
        min_usd_value=_parse_number(env, "MIN_USD_VALUE", DEFAULT_MIN_USD_VALUE, float),
        max_tokens_to_process=_parse_number(env, "MAX_TOKENS_TO_PROCESS", DEFAULT_MAX_TOKENS, int),
        exclude_tokens=[value.strip() for value in exclude.split(",") if value.strip()],
    )
