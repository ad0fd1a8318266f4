"""Client for the internal provider "pro" routes (one chat turn per call)."""

import logging
import time
from typing import Any, Dict, Optional

import httpx

from canvas_relay.infra.circuit_breaker import CircuitBreaker, CircuitOpenError, provider_circuit_breakers
from canvas_relay.infra.config import config
from canvas_relay.infra.error_handler import ProviderCallError, ValidationError
from canvas_relay.infra.metrics import llm_calls_total, llm_call_duration
from canvas_relay.infra.timeout import PROVIDER_CALL_TIMEOUT
from canvas_relay.models.turn import ProviderTurn
from canvas_relay.services.protocol_normalizer import parse_provider_turn

logger = logging.getLogger(__name__)

PROVIDER_ROUTES: Dict[str, str] = {
    "openai": "/api/pro/openai",
    "claude": "/api/pro/claude",
    "grok": "/api/pro/grok",
}


def provider_route(provider: Optional[str]) -> str:
    """Route path for a provider; unsupported providers are a validation error."""
    route = PROVIDER_ROUTES.get(provider or "")
    if route is None:
        raise ValidationError(f"Unsupported provider: {provider}")
    return route


def _error_message(response: httpx.Response, first_turn: bool) -> str:
    default = "API request failed" if first_turn else "API request failed during tool loop"
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return default


class ProviderClient:
    """
    Completes one chat turn against a provider route.

    The base URL always comes from configuration; only the fixed route for
    the provider is appended.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = PROVIDER_CALL_TIMEOUT,
        breakers: Optional[Dict[str, CircuitBreaker]] = None,
    ):
        self.base_url = (base_url or config.PRO_API_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.breakers = breakers if breakers is not None else provider_circuit_breakers

    async def _post(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Dict[str, str],
        first_turn: bool,
    ) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(url, json=payload, headers=headers)

        if response.status_code < 200 or response.status_code >= 300:
            raise ProviderCallError(_error_message(response, first_turn), status_code=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise ProviderCallError("Malformed provider response") from e

    async def complete_turn(
        self,
        provider: str,
        payload: Dict[str, Any],
        authorization: Optional[str] = None,
        first_turn: bool = True,
    ) -> ProviderTurn:
        """
        POST one turn and parse the reply.

        Raises:
            ValidationError: Unsupported provider
            ProviderCallError: Non-2xx reply, malformed body, transport failure or open circuit
        """
        url = f"{self.base_url}{provider_route(provider)}"
        headers = {"Content-Type": "application/json"}
        if authorization:
            headers["Authorization"] = authorization

        model = str(payload.get("model") or "unknown")
        start_time = time.time()
        status = "success"
        try:
            breaker = self.breakers.get(provider)
            if breaker is not None:
                data = await breaker.call_async(self._post, url, payload, headers, first_turn)
            else:
                data = await self._post(url, payload, headers, first_turn)
            return parse_provider_turn(data)
        except CircuitOpenError as e:
            status = "circuit_open"
            raise ProviderCallError(str(e)) from e
        except httpx.HTTPError as e:
            status = "error"
            raise ProviderCallError(f"Provider request failed: {e}") from e
        except ProviderCallError:
            status = "error"
            raise
        finally:
            duration = time.time() - start_time
            llm_calls_total.labels(provider=provider, model=model, status=status).inc()
            llm_call_duration.labels(provider=provider, model=model).observe(duration)
            logger.debug(
                "Provider turn finished",
                extra={"provider": provider, "model": model, "status": status, "duration_ms": int(duration * 1000)}
            )
