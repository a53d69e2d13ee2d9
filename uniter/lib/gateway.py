"""
Rate-limited request gateway for the upstream pricing API.

Every outbound call goes through RequestGateway.request, which enforces a
minimum spacing between dispatches, retries HTTP 429 with exponential backoff
and maps failures onto the error taxonomy below.
"""

import logging
import random
import time
from typing import Any, Callable, Dict, Optional

import requests

from .cache import TTL_SHORT, TieredCache, rate_limited_key


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.1inch.dev"

# Admission control and retry configuration
DEFAULT_MIN_INTERVAL = 1.0  # seconds between dispatches
DEFAULT_INITIAL_DELAY = 2.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_MAX_DELAY = 32.0  # seconds
DEFAULT_JITTER = 0.1  # ±10%
DEFAULT_TIMEOUT = 30.0  # seconds

BODY_PREFIX_LENGTH = 200


class ApiError(Exception):
    """Base class for upstream API failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(ApiError):
    """HTTP 429 persisted after every retry, or the endpoint is backing off."""

    pass


class PermanentRejectionError(ApiError):
    """HTTP 400, typically no liquidity or an unsupported pair. Never retried."""

    pass


class TransientFailureError(ApiError):
    """Network failure or unexpected non-2xx status. Not retried here."""

    pass


class ParseFailureError(ApiError):
    """The response body was not valid JSON."""

    def __init__(self, message: str, body_prefix: str = "", status_code: Optional[int] = None):
        super().__init__(message, status_code=status_code)
        self.body_prefix = body_prefix


class MissingCredentialError(ApiError):
    """No API key in a context that must send one. Fatal for a whole scan."""

    pass


class RequestGateway:
    """
    Single admission-controlled entry point for upstream HTTP calls.

    Requests are dispatched in submission order, each at least min_interval
    seconds after the previous dispatch. The gateway keeps no business data;
    its only state is the last dispatch time.

    When a proxy_base_url is given the gateway behaves like a browser client:
    requests go to the same-origin proxy, which injects the credential, so no
    Authorization header is sent and no API key is required.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        proxy_base_url: Optional[str] = None,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_delay: float = DEFAULT_MAX_DELAY,
        jitter: float = DEFAULT_JITTER,
        timeout: float = DEFAULT_TIMEOUT,
        cache: Optional[TieredCache] = None,
        rate_limit_ttl: float = TTL_SHORT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the gateway.

        Args:
            api_key: Bearer credential for direct (trusted) access
            base_url: Upstream API base URL
            proxy_base_url: Same-origin proxy URL; when set, no credential is sent
            min_interval: Minimum seconds between consecutive dispatches
            initial_delay: First backoff delay in seconds after a 429
            backoff_multiplier: Multiplier for exponential backoff
            max_retries: Maximum number of 429 retries
            max_delay: Maximum backoff delay cap in seconds
            jitter: Jitter factor (±percentage) to randomize backoff delays
            timeout: Per-request timeout in seconds
            cache: Optional cache for rate-limit backpressure markers
            rate_limit_ttl: Seconds an endpoint stays marked as rate limited
            clock: Monotonic time source, injectable for tests
            sleep: Sleeper, injectable for tests
            session: Optional requests.Session to reuse
        """
        self.api_key = api_key
        self.base_url = (proxy_base_url or base_url).rstrip("/")
        self.use_proxy = proxy_base_url is not None
        self.min_interval = min_interval
        self.initial_delay = initial_delay
        self.backoff_multiplier = backoff_multiplier
        self.max_retries = max_retries
        self.max_delay = max_delay
        self.jitter = jitter
        self.timeout = timeout
        self.cache = cache
        self.rate_limit_ttl = rate_limit_ttl
        self.clock = clock
        self.sleep = sleep
        self.session = session or requests.Session()
        self._last_dispatch: Optional[float] = None

    @property
    def requires_credential(self) -> bool:
        return not self.use_proxy

    def _sanitize_error_message(self, message: str) -> str:
        """Remove API key from error messages to prevent credential leakage."""
        if not self.api_key:
            return message
        return message.replace(self.api_key, "[REDACTED]")

    def _apply_jitter(self, delay: float) -> float:
        """Apply random jitter to a delay value."""
        jitter_range = delay * self.jitter
        return delay + random.uniform(-jitter_range, jitter_range)

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if not self.use_proxy:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _wait_for_slot(self) -> None:
        """Block until min_interval has passed since the previous dispatch."""
        if self._last_dispatch is not None:
            wait = self.min_interval - (self.clock() - self._last_dispatch)
            if wait > 0:
                self.sleep(wait)
        self._last_dispatch = self.clock()

    def check_credential(self) -> None:
        """
        Raises:
            MissingCredentialError: If a direct-access gateway has no API key
        """
        if self.requires_credential and not self.api_key:
            raise MissingCredentialError("1inch API key not configured")

    def request(
        self,
        endpoint: str,
        description: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Perform a GET against an upstream endpoint and return the parsed JSON.

        Args:
            endpoint: Path below the base URL, e.g. "/token/v1.2/8453"
            description: Short human label used in errors and logs
            params: Optional query parameters

        Returns:
            The decoded JSON body

        Raises:
            MissingCredentialError: No API key in a direct-access context
            RateLimitedError: 429 persisted past max_retries, or endpoint backing off
            PermanentRejectionError: HTTP 400
            TransientFailureError: Network failure or other non-2xx status
            ParseFailureError: Body is not valid JSON
        """
        self.check_credential()

        marker = rate_limited_key(endpoint)
        if self.cache is not None and self.cache.exists(marker):
            raise RateLimitedError(
                f"{description}: endpoint is backing off after rate limiting",
                status_code=429,
            )

        url = f"{self.base_url}{endpoint}"
        delay = self.initial_delay

        for attempt in range(self.max_retries + 1):
            self._wait_for_slot()
            logger.debug("%s: GET %s (attempt %d)", description, endpoint, attempt + 1)

            try:
                response = self.session.get(
                    url,
                    headers=self._headers(),
                    params=params,
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                sanitized_msg = self._sanitize_error_message(str(e))
                raise TransientFailureError(f"{description} failed: {sanitized_msg}") from e

            if response.status_code == 429:
                if attempt < self.max_retries:
                    sleep_time = self._apply_jitter(min(delay, self.max_delay))
                    logger.info(
                        "%s: rate limited, retrying in %.1fs (%d/%d)",
                        description,
                        sleep_time,
                        attempt + 1,
                        self.max_retries,
                    )
                    self.sleep(sleep_time)
                    delay *= self.backoff_multiplier
                    continue
                if self.cache is not None:
                    self.cache.set(marker, True, self.rate_limit_ttl)
                raise RateLimitedError(
                    f"{description}: rate limit exceeded and max retries reached",
                    status_code=429,
                )

            if response.status_code == 400:
                body = self._sanitize_error_message(response.text[:BODY_PREFIX_LENGTH])
                raise PermanentRejectionError(
                    f"{description} rejected: {body}",
                    status_code=400,
                )

            if not 200 <= response.status_code < 300:
                raise TransientFailureError(
                    f"{description} failed: HTTP {response.status_code} {response.reason}",
                    status_code=response.status_code,
                )

            try:
                return response.json()
            except ValueError as e:
                body = self._sanitize_error_message(response.text[:BODY_PREFIX_LENGTH])
                raise ParseFailureError(
                    f"{description}: malformed JSON response",
                    body_prefix=body,
                    status_code=response.status_code,
                ) from e

        raise RateLimitedError(f"{description}: max retries exceeded", status_code=429)
