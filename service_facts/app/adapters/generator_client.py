"""
Chat-completions client used by the generative fallback.
"""

from typing import Dict, Any, Optional, List

import httpx

from shared.errors import GenerationError
from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.logging import get_logger


class GeneratorClient:
    """Client for an OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(self,
                 base_url: str,
                 api_key: Optional[str] = None,
                 model: str = "xai/grok-3",
                 timeout: float = 8.0,
                 *,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 circuit_breaker: Optional[CircuitBreaker] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.transport = transport
        self.logger = get_logger("facts.generator_client")
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=3,
            recovery_timeout=60.0,
            name="generator"
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def complete(self, prompt: List[Dict[str, str]], options: Optional[Dict[str, Any]] = None) -> str:
        """Send chat messages and return the first choice's content."""
        options = options or {}
        payload = {
            "messages": prompt,
            "model": options.get("model", self.model),
            "temperature": options.get("temperature", 0.8),
            "top_p": options.get("top_p", 0.9),
            "max_tokens": options.get("max_tokens", 200),
        }

        async def _complete():
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers=self._headers()
                )

            if response.status_code != 200:
                raise GenerationError(
                    f"HTTP {response.status_code}",
                    details={"status_code": response.status_code}
                )

            body = response.json()
            try:
                return body["choices"][0]["message"]["content"]
            except (KeyError, IndexError, TypeError) as e:
                raise GenerationError("Malformed completion response") from e

        try:
            return await self.circuit_breaker.call(_complete)

        except GenerationError:
            raise
        except CircuitBreakerOpenException as e:
            raise GenerationError("Generator unavailable", details={"circuit": "open"}) from e
        except httpx.HTTPError as e:
            self.logger.error("Generator HTTP error", error=str(e))
            raise GenerationError("Generator unreachable", details={"http_error": str(e)}) from e
