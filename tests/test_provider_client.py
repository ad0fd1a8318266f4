"""Unit tests for the provider route client and its circuit breaker."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from canvas_relay.adapters.provider_client import PROVIDER_ROUTES, ProviderClient
from canvas_relay.infra.circuit_breaker import CircuitBreaker, CircuitState, is_upstream_failure, provider_breaker
from canvas_relay.infra.error_handler import ProviderCallError, ValidationError
from canvas_relay.models.turn import ContentBlockTurn, FlatCallTurn


def mock_async_client(mock_client_class, status_code=200, body=None, json_error=False):
    mock_client = AsyncMock()
    mock_response = MagicMock()
    mock_response.status_code = status_code
    if json_error:
        mock_response.json.side_effect = ValueError("not json")
    else:
        mock_response.json.return_value = body
    mock_client.post = AsyncMock(return_value=mock_response)
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=None)
    mock_client_class.return_value = mock_client
    return mock_client


@pytest.fixture
def provider_client():
    return ProviderClient(base_url="http://pro.internal", breakers={})


PAYLOAD = {"userId": "user-1", "messages": [], "model": "gpt-4o", "systemPrompt": "", "enableWebSearch": True}


class TestCompleteTurn:
    """Test one provider turn."""

    @pytest.mark.asyncio
    async def test_posts_to_fixed_route(self, provider_client):
        """Test the URL is the configured base plus the provider route."""
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = mock_async_client(mock_client_class, body={"content": "hi"})
            turn = await provider_client.complete_turn("grok", PAYLOAD, authorization="Bearer abc")

        assert isinstance(turn, FlatCallTurn)
        assert turn.text == "hi"
        call_args = mock_client.post.call_args
        assert call_args[0][0] == "http://pro.internal" + PROVIDER_ROUTES["grok"]
        assert call_args[1]["json"] == PAYLOAD
        assert call_args[1]["headers"]["Authorization"] == "Bearer abc"

    @pytest.mark.asyncio
    async def test_content_block_reply(self, provider_client):
        body = {"stop_reason": "tool_use", "contentBlocks": [{"type": "tool_use", "id": "t", "name": "x", "input": {}}]}
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_async_client(mock_client_class, body=body)
            turn = await provider_client.complete_turn("claude", PAYLOAD)

        assert isinstance(turn, ContentBlockTurn)
        assert turn.wants_tools

    @pytest.mark.asyncio
    async def test_unsupported_provider(self, provider_client):
        with pytest.raises(ValidationError, match="Unsupported provider: gemini"):
            await provider_client.complete_turn("gemini", PAYLOAD)

    @pytest.mark.asyncio
    async def test_error_field_surfaced(self, provider_client):
        """Test a non-2xx reply raises with the upstream error message."""
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_async_client(mock_client_class, status_code=429, body={"error": "Quota exceeded"})
            with pytest.raises(ProviderCallError, match="Quota exceeded") as exc_info:
                await provider_client.complete_turn("openai", PAYLOAD)

        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_default_messages(self, provider_client):
        """Test the fallback message differs for the first turn and later turns."""
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_async_client(mock_client_class, status_code=500, json_error=True)
            with pytest.raises(ProviderCallError, match="^API request failed$"):
                await provider_client.complete_turn("openai", PAYLOAD, first_turn=True)
            with pytest.raises(ProviderCallError, match="^API request failed during tool loop$"):
                await provider_client.complete_turn("openai", PAYLOAD, first_turn=False)

    @pytest.mark.asyncio
    async def test_malformed_json(self, provider_client):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_async_client(mock_client_class, status_code=200, json_error=True)
            with pytest.raises(ProviderCallError, match="Malformed provider response"):
                await provider_client.complete_turn("openai", PAYLOAD)

    @pytest.mark.asyncio
    async def test_transport_error_wrapped(self, provider_client):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = mock_async_client(mock_client_class, body={})
            mock_client.post = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
            with pytest.raises(ProviderCallError, match="connection refused"):
                await provider_client.complete_turn("openai", PAYLOAD)


class TestCircuitBreaker:
    """Test provider circuit breaking."""

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(self):
        """Test calls are rejected without a request once the breaker opens."""
        breaker = CircuitBreaker(service="pro_openai", failure_threshold=2, recovery_timeout=60)
        client = ProviderClient(base_url="http://pro.internal", breakers={"openai": breaker})

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = mock_async_client(mock_client_class, status_code=503, body={"error": "down"})
            for _ in range(2):
                with pytest.raises(ProviderCallError, match="down"):
                    await client.complete_turn("openai", PAYLOAD)

            assert breaker.state == CircuitState.OPEN
            with pytest.raises(ProviderCallError, match="Circuit breaker is OPEN"):
                await client.complete_turn("openai", PAYLOAD)

        assert mock_client.post.await_count == 2

    @pytest.mark.asyncio
    async def test_half_open_recovers(self):
        """Test two successes after the recovery timeout close the circuit."""
        breaker = CircuitBreaker(service="pro_claude", failure_threshold=1, recovery_timeout=0)
        failing = AsyncMock(side_effect=RuntimeError("boom"))
        with pytest.raises(RuntimeError):
            await breaker.call_async(failing)
        assert breaker.state == CircuitState.OPEN

        ok = AsyncMock(return_value="ok")
        assert await breaker.call_async(ok) == "ok"
        assert breaker.state == CircuitState.HALF_OPEN
        assert await breaker.call_async(ok) == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_caller_errors_do_not_open_circuit(self):
        """Test 4xx replies for one caller never block other callers."""
        breaker = provider_breaker("openai")
        client = ProviderClient(base_url="http://pro.internal", breakers={"openai": breaker})

        unauthorized = MagicMock(status_code=401)
        unauthorized.json.return_value = {"error": "Unauthorized"}
        ok = MagicMock(status_code=200)
        ok.json.return_value = {"content": "hello"}

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = mock_async_client(mock_client_class)
            mock_client.post = AsyncMock(side_effect=[unauthorized] * 5 + [ok])
            for _ in range(5):
                with pytest.raises(ProviderCallError, match="Unauthorized") as exc_info:
                    await client.complete_turn("openai", PAYLOAD, authorization="Bearer expired")
                assert exc_info.value.status_code == 401

            turn = await client.complete_turn("openai", PAYLOAD, authorization="Bearer valid")

        assert turn.text == "hello"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0
        assert mock_client.post.await_count == 6

    @pytest.mark.asyncio
    async def test_upstream_errors_still_open_circuit(self):
        """Test 5xx replies from the provider route count towards opening."""
        breaker = provider_breaker("claude")
        client = ProviderClient(base_url="http://pro.internal", breakers={"claude": breaker})

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_async_client(mock_client_class, status_code=502, body={"error": "Bad gateway"})
            for _ in range(5):
                with pytest.raises(ProviderCallError, match="Bad gateway"):
                    await client.complete_turn("claude", PAYLOAD)

        assert breaker.state == CircuitState.OPEN

    def test_upstream_failure_classification(self):
        assert is_upstream_failure(ProviderCallError("Malformed provider response"))
        assert is_upstream_failure(ProviderCallError("down", status_code=503))
        assert is_upstream_failure(httpx.ConnectError("refused"))
        assert not is_upstream_failure(ProviderCallError("Forbidden", status_code=403))
