"""
Adapters for services the Facts Service depends on.

Each adapter owns its circuit breaker and accepts an httpx transport so
tests can run against ``httpx.MockTransport``.
"""

from service_facts.app.adapters.fact_store_client import FactStoreClient
from service_facts.app.adapters.identity_store_client import IdentityStoreClient
from service_facts.app.adapters.generator_client import GeneratorClient

__all__ = ["FactStoreClient", "IdentityStoreClient", "GeneratorClient"]
