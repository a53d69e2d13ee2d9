"""
Unit tests for the request gateway.

Tests follow the Given/When/Then pattern for clarity.
"""

import pytest
import requests
import responses

from uniter.lib.cache import TieredCache
from uniter.lib.gateway import (
    DEFAULT_BASE_URL,
    MissingCredentialError,
    ParseFailureError,
    PermanentRejectionError,
    RateLimitedError,
    RequestGateway,
    TransientFailureError,
)


ENDPOINT = "/token/v1.2/8453"
URL = f"{DEFAULT_BASE_URL}{ENDPOINT}"


def make_gateway(api_key, clock, **kwargs):
    options = dict(
        api_key=api_key,
        min_interval=1.0,
        initial_delay=2.0,
        max_retries=3,
        jitter=0,  # Disable jitter for predictable timing
        clock=clock,
        sleep=clock.sleep,
    )
    options.update(kwargs)
    return RequestGateway(**options)


class TestRateLimitHandling:
    """Tests for 429 retry behavior."""

    @responses.activate
    def test_retries_three_429s_with_doubling_delays(self, mock_api_key, fake_clock):
        """
        Given a gateway allowing 3 retries
        When three 429 responses are followed by a 200
        Then exactly 4 requests are made with 2s, 4s and 8s backoff between them
        """
        # Given
        gateway = make_gateway(mock_api_key, fake_clock)
        responses.add(responses.GET, URL, status=429)
        responses.add(responses.GET, URL, status=429)
        responses.add(responses.GET, URL, status=429)
        responses.add(responses.GET, URL, json={"ok": True}, status=200)

        # When
        result = gateway.request(ENDPOINT, "Base token metadata")

        # Then
        assert result == {"ok": True}
        assert len(responses.calls) == 4
        assert fake_clock.sleeps == [2.0, 4.0, 8.0]

    @responses.activate
    def test_raises_rate_limited_after_max_retries(self, mock_api_key, fake_clock):
        """
        Given a gateway allowing 2 retries
        When 429 responses persist
        Then RateLimitedError is raised after the initial call plus 2 retries
        """
        # Given
        gateway = make_gateway(mock_api_key, fake_clock, max_retries=2)
        for _ in range(4):
            responses.add(responses.GET, URL, status=429)

        # When / Then
        with pytest.raises(RateLimitedError) as exc_info:
            gateway.request(ENDPOINT, "Base token metadata")

        assert exc_info.value.status_code == 429
        assert len(responses.calls) == 3

    @responses.activate
    def test_backoff_is_capped_at_max_delay(self, mock_api_key, fake_clock):
        """
        Given a gateway whose max delay is below the third backoff step
        When 429 responses keep arriving
        Then the delay never exceeds the cap
        """
        # Given
        gateway = make_gateway(mock_api_key, fake_clock, max_delay=5.0)
        for _ in range(3):
            responses.add(responses.GET, URL, status=429)
        responses.add(responses.GET, URL, json=[], status=200)

        # When
        gateway.request(ENDPOINT, "Base token metadata")

        # Then
        assert fake_clock.sleeps == [2.0, 4.0, 5.0]

    @responses.activate
    def test_exhausted_endpoint_fails_fast_while_marked(self, mock_api_key, fake_clock):
        """
        Given a gateway with a cache and no retries
        When an endpoint exhausts its retries
        Then the next request to it fails without touching the network
        """
        # Given
        cache = TieredCache(clock=fake_clock)
        gateway = make_gateway(mock_api_key, fake_clock, max_retries=0, cache=cache)
        responses.add(responses.GET, URL, status=429)

        with pytest.raises(RateLimitedError):
            gateway.request(ENDPOINT, "Base token metadata")

        # When / Then
        with pytest.raises(RateLimitedError, match="backing off"):
            gateway.request(ENDPOINT, "Base token metadata")

        assert len(responses.calls) == 1

    def test_jitter_applies_randomization_to_delay(self, mock_api_key):
        """
        Given a gateway with jitter enabled
        When calculating delay with jitter
        Then the delay should be within the expected range
        """
        # Given
        gateway = RequestGateway(mock_api_key, jitter=0.1)

        # When
        jittered_delays = [gateway._apply_jitter(2.0) for _ in range(100)]

        # Then
        for delay in jittered_delays:
            assert 1.8 <= delay <= 2.2


class TestAdmissionControl:
    """Tests for minimum spacing between dispatches."""

    @responses.activate
    def test_back_to_back_requests_are_spaced_by_min_interval(self, mock_api_key, fake_clock):
        """
        Given a gateway with a 1s minimum interval
        When two requests are made with no time passing in between
        Then the second waits the full interval before dispatch
        """
        # Given
        gateway = make_gateway(mock_api_key, fake_clock)
        responses.add(responses.GET, URL, json={}, status=200)
        responses.add(responses.GET, URL, json={}, status=200)

        # When
        gateway.request(ENDPOINT, "first")
        gateway.request(ENDPOINT, "second")

        # Then
        assert fake_clock.sleeps == [1.0]
        assert len(responses.calls) == 2

    @responses.activate
    def test_only_the_remaining_interval_is_waited(self, mock_api_key, fake_clock):
        """
        Given a request dispatched 0.25s ago
        When the next request is made
        Then it waits only the remaining 0.75s
        """
        # Given
        gateway = make_gateway(mock_api_key, fake_clock)
        responses.add(responses.GET, URL, json={}, status=200)
        responses.add(responses.GET, URL, json={}, status=200)
        gateway.request(ENDPOINT, "first")
        fake_clock.advance(0.25)

        # When
        gateway.request(ENDPOINT, "second")

        # Then
        assert fake_clock.sleeps == [pytest.approx(0.75)]

    @responses.activate
    def test_no_wait_once_interval_has_passed(self, mock_api_key, fake_clock):
        """
        Given a request dispatched more than the interval ago
        When the next request is made
        Then it is dispatched immediately
        """
        # Given
        gateway = make_gateway(mock_api_key, fake_clock)
        responses.add(responses.GET, URL, json={}, status=200)
        responses.add(responses.GET, URL, json={}, status=200)
        gateway.request(ENDPOINT, "first")
        fake_clock.advance(5.0)

        # When
        gateway.request(ENDPOINT, "second")

        # Then
        assert fake_clock.sleeps == []


class TestErrorClassification:
    """Tests for mapping failures onto the error taxonomy."""

    @responses.activate
    def test_400_fails_immediately_without_retry(self, mock_api_key, fake_clock):
        """
        Given a gateway with retries enabled
        When the upstream answers 400
        Then PermanentRejectionError is raised after exactly one request
        """
        # Given
        gateway = make_gateway(mock_api_key, fake_clock)
        responses.add(
            responses.GET,
            URL,
            json={"error": "Bad Request", "description": "insufficient liquidity"},
            status=400,
        )

        # When / Then
        with pytest.raises(PermanentRejectionError, match="insufficient liquidity") as exc_info:
            gateway.request(ENDPOINT, "quote")

        assert exc_info.value.status_code == 400
        assert len(responses.calls) == 1
        assert fake_clock.sleeps == []

    @responses.activate
    def test_server_error_is_transient_and_not_retried(self, mock_api_key, fake_clock):
        """
        Given a gateway
        When the upstream answers 500
        Then TransientFailureError is raised after one request
        """
        # Given
        gateway = make_gateway(mock_api_key, fake_clock)
        responses.add(responses.GET, URL, status=500)

        # When / Then
        with pytest.raises(TransientFailureError) as exc_info:
            gateway.request(ENDPOINT, "Base token metadata")

        assert exc_info.value.status_code == 500
        assert len(responses.calls) == 1

    @responses.activate
    def test_network_failure_is_transient(self, mock_api_key, fake_clock):
        """
        Given a gateway
        When the connection fails
        Then TransientFailureError is raised
        """
        # Given
        gateway = make_gateway(mock_api_key, fake_clock)
        responses.add(responses.GET, URL, body=requests.ConnectionError("connection refused"))

        # When / Then
        with pytest.raises(TransientFailureError, match="connection refused"):
            gateway.request(ENDPOINT, "Base token metadata")

    @responses.activate
    def test_malformed_json_raises_parse_failure_with_body_prefix(self, mock_api_key, fake_clock):
        """
        Given a gateway
        When a 200 response carries a non-JSON body
        Then ParseFailureError is raised carrying the start of the body
        """
        # Given
        gateway = make_gateway(mock_api_key, fake_clock)
        responses.add(responses.GET, URL, body="<html>upstream maintenance</html>", status=200)

        # When / Then
        with pytest.raises(ParseFailureError) as exc_info:
            gateway.request(ENDPOINT, "Base token metadata")

        assert exc_info.value.body_prefix.startswith("<html>upstream maintenance")

    @responses.activate
    def test_api_key_is_redacted_from_error_messages(self, mock_api_key, fake_clock):
        """
        Given an error body that echoes the API key
        When the error is raised
        Then the key is replaced with [REDACTED]
        """
        # Given
        gateway = make_gateway(mock_api_key, fake_clock)
        responses.add(responses.GET, URL, body=f"bad token {mock_api_key}", status=400)

        # When / Then
        with pytest.raises(PermanentRejectionError) as exc_info:
            gateway.request(ENDPOINT, "quote")

        assert mock_api_key not in str(exc_info.value)
        assert "[REDACTED]" in str(exc_info.value)


class TestCredentials:
    """Tests for credential handling in direct and proxied contexts."""

    @responses.activate
    def test_sends_bearer_credential(self, mock_api_key, fake_clock):
        """
        Given a direct-access gateway with an API key
        When making a request
        Then the Authorization header carries the bearer key
        """
        # Given
        gateway = make_gateway(mock_api_key, fake_clock)
        responses.add(responses.GET, URL, json={}, status=200)

        # When
        gateway.request(ENDPOINT, "Base token metadata")

        # Then
        assert responses.calls[0].request.headers["Authorization"] == f"Bearer {mock_api_key}"

    @responses.activate
    def test_missing_credential_fails_before_any_request(self, fake_clock):
        """
        Given a direct-access gateway without an API key
        When making a request
        Then MissingCredentialError is raised and nothing is sent
        """
        # Given
        gateway = make_gateway(None, fake_clock)

        # When / Then
        with pytest.raises(MissingCredentialError):
            gateway.request(ENDPOINT, "Base token metadata")

        assert len(responses.calls) == 0

    @responses.activate
    def test_proxy_context_needs_no_credential(self, fake_clock):
        """
        Given a gateway routed through a same-origin proxy
        When making a request without an API key
        Then the proxy URL is used and no Authorization header is sent
        """
        # Given
        gateway = make_gateway(None, fake_clock, proxy_base_url="https://uniter.example/api/1inch/")
        responses.add(responses.GET, f"https://uniter.example/api/1inch{ENDPOINT}", json=[], status=200)

        # When
        result = gateway.request(ENDPOINT, "Base token metadata")

        # Then
        assert result == []
        assert "Authorization" not in responses.calls[0].request.headers
