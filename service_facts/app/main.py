"""
Facts service for the Fact Access Layer.
"""

from typing import Any, Dict, List, Optional

from fastapi import Request, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from shared.base_service import BaseService
from shared.config import ServiceConfig

from service_facts.app.adapters import FactStoreClient, IdentityStoreClient, GeneratorClient
from service_facts.app.auth import AuthGate, credential_from_headers
from service_facts.app.caching import CacheLayer, RedisBackend
from service_facts.app.generation import FallbackGenerator
from service_facts.app.models import ClientContext, FactRequest
from service_facts.app.ratelimit import QuotaTracker, FixedWindow
from service_facts.app.resolver import FactResolver
from service_facts.app.usage import UsageRecorder
from shared.circuit_breaker import CircuitBreakerManager


class FactSubmission(BaseModel):
    """Body of a fact submission."""

    fact: str = Field(..., description="Fact text, 10 to 1000 characters")
    category: str = Field(..., description="One of the fixed categories")
    source: Optional[str] = None
    tags: Optional[List[str]] = None


class FactsService(BaseService):
    """Facts service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None, resolver: Optional[FactResolver] = None):
        super().__init__("facts", 8020, config)
        self.circuit_breakers = CircuitBreakerManager()
        self.backend: Optional[RedisBackend] = None
        self.resolver = resolver or self._build_resolver()

        self._setup_fact_routes()

    async def _on_shutdown(self):
        """Close the Redis connection pool."""
        if self.backend is not None:
            await self.backend.close()

    def _build_resolver(self) -> FactResolver:
        """Wire the resolver and its collaborators from configuration."""
        config = self.config
        self.backend = RedisBackend(config.redis_url, socket_timeout=config.redis_socket_timeout)

        fact_store = FactStoreClient(config.fact_store_url, timeout=config.store_timeout_seconds)
        identity_store = IdentityStoreClient(config.identity_store_url, timeout=config.store_timeout_seconds)
        self.circuit_breakers.register(fact_store.circuit_breaker)
        self.circuit_breakers.register(identity_store.circuit_breaker)

        generator = None
        if config.fallback_enabled or config.moderation_enabled:
            client = GeneratorClient(
                config.generator_url,
                api_key=config.generator_api_key,
                model=config.generator_model,
                timeout=config.generator_timeout_seconds
            )
            self.circuit_breakers.register(client.circuit_breaker)
            generator = FallbackGenerator(
                client,
                model=config.generator_model,
                timeout=config.generator_timeout_seconds,
                moderation_enabled=config.moderation_enabled,
                metrics=self.metrics
            )

        return FactResolver(
            auth_gate=AuthGate(identity_store),
            quota_tracker=QuotaTracker(
                self.backend,
                rate_window=FixedWindow(config.rate_window_seconds, name="rate"),
                metrics=self.metrics
            ),
            cache=CacheLayer(self.backend, namespace=config.cache_namespace, metrics=self.metrics),
            fact_store=fact_store,
            usage_recorder=UsageRecorder(identity_store),
            generator=generator,
            fallback_enabled=config.fallback_enabled,
            store_ttl=config.store_fact_ttl_seconds,
            generated_ttl=config.generated_fact_ttl_seconds,
            metrics=self.metrics
        )

    @staticmethod
    def _client_context(request: Request) -> ClientContext:
        return ClientContext(
            ip=request.client.host if request.client else None,
            origin=request.headers.get("Origin"),
            endpoint=request.url.path,
            method=request.method,
            user_agent=request.headers.get("User-Agent")
        )

    async def _serve_fact(self, request: Request, fact_request: FactRequest) -> JSONResponse:
        resolved = await self.resolver.resolve_fact(
            fact_request,
            credential_from_headers(request.headers),
            self._client_context(request)
        )
        headers = resolved.quota.to_headers() if resolved.quota else {}
        return JSONResponse(
            content={"success": True, "data": resolved.to_response()},
            headers=headers
        )

    def _setup_fact_routes(self):
        """Set up fact routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "facts",
                "message": "Fact Access Layer - Facts Service",
                "version": "1.0.0",
                "endpoints": {
                    "random": "/api/v1/facts/random",
                    "by_category": "/api/v1/facts/category/{category}",
                    "categories": "/api/v1/facts/categories",
                    "submit": "/api/v1/facts",
                    "usage": "/api/v1/usage"
                }
            }

        @self.app.get("/api/v1/facts/random")
        async def random_fact(
            request: Request,
            category: Optional[str] = Query(None),
            force_new: bool = Query(False),
            exclude_generated: bool = Query(False),
            persist_generated: bool = Query(True)
        ):
            """Get a random fact, optionally restricted to one category."""
            fact_request = FactRequest(
                category=category,
                force_new=force_new,
                exclude_generated=exclude_generated,
                persist_generated=persist_generated
            )
            return await self._serve_fact(request, fact_request)

        @self.app.get("/api/v1/facts/category/{category}")
        async def fact_by_category(
            request: Request,
            category: str,
            exclude_generated: bool = Query(False)
        ):
            """Get a fact from one category."""
            fact_request = FactRequest(category=category, exclude_generated=exclude_generated)
            return await self._serve_fact(request, fact_request)

        @self.app.get("/api/v1/facts/categories")
        async def list_categories():
            """List the fact categories."""
            categories = self.resolver.categories()
            return {"success": True, "data": {"categories": categories, "count": len(categories)}}

        @self.app.post("/api/v1/facts", status_code=201)
        async def submit_fact(request: Request, submission: FactSubmission):
            """Submit a fact for review."""
            fact = await self.resolver.submit_fact(
                credential_from_headers(request.headers),
                submission.fact,
                submission.category,
                context=self._client_context(request),
                source=submission.source,
                tags=submission.tags
            )
            return {"success": True, "data": fact.to_record()}

        @self.app.get("/api/v1/usage")
        async def usage_stats(request: Request):
            """Quota status and usage analytics for the calling credential."""
            summary = await self.resolver.usage_summary(
                credential_from_headers(request.headers),
                self._client_context(request)
            )
            return {"success": True, "data": summary}

        @self.app.get("/circuit-breakers")
        async def circuit_breaker_status():
            """Circuit breaker states for outbound adapters."""
            return self.circuit_breakers.get_all_states()

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Check facts service dependencies."""
        dependencies = {}
        dependencies["redis"] = "ok" if await self.resolver.cache.health_check() else "error"
        # Quota counters share Redis with the cache
        dependencies["quota_store"] = dependencies["redis"]
        return dependencies


def create_app():
    """Create FastAPI application."""
    service = FactsService()
    return service.app


if __name__ == "__main__":
    service = FactsService()
    service.run()
