"""
Common HTTP plumbing for Facts Service adapters.
"""

from typing import Dict, Any, Optional

import httpx

from shared.logging import get_logger
from shared.errors import ExternalServiceError
from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.retry import retry_on_exception, ADAPTER_RETRY, RetryError


class ServiceClient:
    """JSON-over-HTTP client with a circuit breaker and transport retries.

    Subclasses set ``service_name``; any failure surfaces as
    ``ExternalServiceError`` tagged with it.
    """

    service_name = "service"

    def __init__(self,
                 base_url: str,
                 timeout: float = 5.0,
                 *,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 circuit_breaker: Optional[CircuitBreaker] = None,
                 headers: Optional[Dict[str, str]] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.headers = headers or {}
        self.logger = get_logger(f"facts.{self.service_name}_client")
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=30.0,
            name=self.service_name
        )

    @retry_on_exception((httpx.TransportError,), config=ADAPTER_RETRY)
    async def _send(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport, headers=self.headers) as client:
            return await client.request(method, f"{self.base_url}{path}", json=payload)

    async def _request(self,
                       method: str,
                       path: str,
                       payload: Optional[Dict[str, Any]] = None,
                       allow_not_found: bool = False) -> Optional[Dict[str, Any]]:
        """Send a request through the circuit breaker and decode the JSON body."""
        async def _call():
            response = await self._send(method, path, payload)

            if response.status_code == 404 and allow_not_found:
                return None
            if response.status_code >= 400:
                raise ExternalServiceError(
                    self.service_name,
                    f"HTTP {response.status_code}",
                    details={"path": path, "status_code": response.status_code}
                )
            if not response.content:
                return {}
            return response.json()

        try:
            return await self.circuit_breaker.call(_call)

        except ExternalServiceError:
            raise
        except CircuitBreakerOpenException as e:
            self.logger.warning("Circuit open, skipping call", path=path)
            raise ExternalServiceError(self.service_name, "Service unavailable", details={"circuit": "open"}) from e
        except RetryError as e:
            self.logger.error("Service unreachable", path=path, error=str(e.last_exception))
            raise ExternalServiceError(
                self.service_name,
                "Service unreachable",
                details={"http_error": str(e.last_exception)}
            ) from e
        except Exception as e:
            self.logger.error("Service call failed", path=path, error=str(e))
            raise ExternalServiceError(self.service_name, str(e), details={"error": str(e)}) from e
