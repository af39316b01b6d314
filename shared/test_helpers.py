"""
Test helper functions and in-memory collaborators for the Fact Access Layer.
"""

import asyncio
import copy
import uuid
from typing import Dict, Any, Optional, List, Tuple, Union

from shared.errors import InfrastructureError, ExternalServiceError, GenerationError
from service_facts.app.auth.gate import AuthGate
from service_facts.app.caching.cache_layer import CacheLayer
from service_facts.app.generation.fallback import FallbackGenerator
from service_facts.app.ratelimit.quota_tracker import QuotaTracker
from service_facts.app.resolver.fact_resolver import FactResolver
from service_facts.app.usage.recorder import UsageRecorder
from service_facts.app.models import (
    Credential,
    CredentialKind,
    CredentialMaterial,
    CredentialStatus,
    Fact,
    FactRequest,
    Identity,
    IdentityStatus,
    PlanTier,
)


# 2024-03-10T12:00:00Z, mid-month and at the start of a 15 minute window
DEFAULT_NOW = 1710072000.0


class FakeClock:
    """Settable clock for injecting into components."""

    def __init__(self, now: float = DEFAULT_NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeBackend:
    """In-memory counter store with lazy TTL expiry."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock or FakeClock()
        self.values: Dict[str, Tuple[str, Optional[float]]] = {}
        self.sets: Dict[str, Tuple[set, Optional[float]]] = {}
        self.fail = False
        self.calls: List[str] = []

    def _check(self, op: str):
        self.calls.append(op)
        if self.fail:
            raise InfrastructureError(message="backend down")

    def _expiry(self, ttl: Optional[int]) -> Optional[float]:
        return self.clock() + ttl if ttl else None

    def _alive(self, store: Dict[str, Tuple[Any, Optional[float]]], key: str):
        entry = store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self.clock() >= expires_at:
            del store[key]
            return None
        return entry

    def ttl_of(self, key: str) -> Optional[float]:
        """Seconds left on a key or tag set, None when it has no expiry or is gone."""
        entry = self._alive(self.values, key) or self._alive(self.sets, key)
        if entry is None or entry[1] is None:
            return None
        return entry[1] - self.clock()

    async def get(self, key: str) -> Optional[str]:
        self._check("get")
        entry = self._alive(self.values, key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        self._check("set")
        self.values[key] = (value, self._expiry(ttl))
        return True

    async def delete(self, *keys: str) -> int:
        self._check("delete")
        deleted = 0
        for key in keys:
            if self._alive(self.values, key) is not None:
                del self.values[key]
                deleted += 1
            elif self._alive(self.sets, key) is not None:
                del self.sets[key]
                deleted += 1
        return deleted

    async def incr_with_expiry(self, key: str, ttl: int, amount: int = 1) -> int:
        self._check("incr_with_expiry")
        entry = self._alive(self.values, key)
        count = int(entry[0]) + amount if entry else amount
        self.values[key] = (str(count), self._expiry(ttl))
        return count

    async def add_to_set(self, key: str, members: List[str], ttl: Optional[int] = None) -> int:
        self._check("add_to_set")
        entry = self._alive(self.sets, key)
        current, expires_at = entry if entry else (set(), None)
        added = len(set(members) - current)
        current.update(members)
        new_expiry = self._expiry(ttl)
        if new_expiry is not None and (expires_at is None or new_expiry > expires_at):
            expires_at = new_expiry
        self.sets[key] = (current, expires_at)
        return added

    async def set_members(self, key: str) -> List[str]:
        self._check("set_members")
        entry = self._alive(self.sets, key)
        return sorted(entry[0]) if entry else []

    async def ping(self) -> bool:
        self._check("ping")
        return True


def _matches(record: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for field, expected in query.items():
        if isinstance(expected, dict) and "$ne" in expected:
            if record.get(field) == expected["$ne"]:
                return False
        elif record.get(field) != expected:
            return False
    return True


class FakeFactStore:
    """In-memory fact store recording every call."""

    def __init__(self, records: Optional[List[Dict[str, Any]]] = None):
        self.records: List[Dict[str, Any]] = [dict(record) for record in records or []]
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.fail = False
        self.fail_insert = False

    async def find_one(self, filter: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        self.calls.append(("find_one", filter))
        if self.fail:
            raise ExternalServiceError("fact_store", "store down")
        for record in self.records:
            if _matches(record, filter):
                return dict(record)
        return None

    async def sample_one(self, filter: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        self.calls.append(("sample_one", filter))
        if self.fail:
            raise ExternalServiceError("fact_store", "store down")
        for record in self.records:
            if _matches(record, filter):
                return dict(record)
        return None

    async def insert(self, record: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(("insert", record))
        if self.fail or self.fail_insert:
            raise ExternalServiceError("fact_store", "insert failed")
        stored = dict(record)
        stored["fact_id"] = stored.get("fact_id") or str(uuid.uuid4())
        self.records.append(stored)
        return dict(stored)


class FakeIdentityStore:
    """In-memory identity store that hands out copies, like a real database."""

    def __init__(self):
        self.identities: Dict[str, Identity] = {}
        self.credentials: Dict[str, Credential] = {}
        self.fail = False
        self.saves: List[str] = []

    def _check(self):
        if self.fail:
            raise ExternalServiceError("identity_store", "store down")

    def add(self, credential: Credential, identity: Optional[Identity] = None):
        self.credentials[credential.credential_id] = copy.deepcopy(credential)
        if identity is not None:
            self.identities[identity.identity_id] = copy.deepcopy(identity)

    async def find_by_credential(self, secret: str) -> Optional[Tuple[Credential, Identity]]:
        self._check()
        for credential in self.credentials.values():
            if credential.secret == secret:
                identity = self.identities.get(credential.identity_id)
                return copy.deepcopy(credential), copy.deepcopy(identity)
        return None

    async def get_identity(self, identity_id: str) -> Optional[Identity]:
        self._check()
        return copy.deepcopy(self.identities.get(identity_id))

    async def get_credential(self, credential_id: str) -> Optional[Credential]:
        self._check()
        return copy.deepcopy(self.credentials.get(credential_id))

    async def save_identity(self, identity: Identity) -> None:
        self._check()
        self.saves.append(f"identity:{identity.identity_id}")
        self.identities[identity.identity_id] = copy.deepcopy(identity)

    async def save_credential(self, credential: Credential) -> None:
        self._check()
        self.saves.append(f"credential:{credential.credential_id}")
        self.credentials[credential.credential_id] = copy.deepcopy(credential)


class FakeTextGenerator:
    """Scripted text generator.

    ``responses`` are returned in order (the last one repeats); an exception
    instance in the list is raised instead.
    """

    def __init__(self, responses: Optional[List[Union[str, Exception]]] = None, delay: float = 0.0):
        self.responses = list(responses or [])
        self.delay = delay
        self.prompts: List[List[Dict[str, str]]] = []

    @property
    def call_count(self) -> int:
        return len(self.prompts)

    async def complete(self, prompt: List[Dict[str, str]], options: Optional[Dict[str, Any]] = None) -> str:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.responses:
            raise GenerationError("No scripted response")
        response = self.responses[0] if len(self.responses) == 1 else self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class TestDataFactory:
    """Factory for creating test data."""

    __test__ = False

    @staticmethod
    def create_identity(identity_id: str = "user-1", plan: PlanTier = PlanTier.BASIC, **kwargs) -> Identity:
        """Create an active identity."""
        return Identity(identity_id=identity_id, plan=plan, status=kwargs.pop("status", IdentityStatus.ACTIVE), **kwargs)

    @staticmethod
    def create_credential(identity_id: str = "user-1",
                          secret: str = "fk_live_0123456789abcdef",
                          credential_id: str = "key-1",
                          kind: CredentialKind = CredentialKind.API_KEY,
                          **kwargs) -> Credential:
        """Create an active credential."""
        return Credential(
            credential_id=credential_id,
            identity_id=identity_id,
            secret=secret,
            kind=kind,
            status=kwargs.pop("status", CredentialStatus.ACTIVE),
            **kwargs
        )

    @staticmethod
    def create_fact(text: str = "Honey never spoils when stored in a sealed container.",
                    category: str = "food",
                    **kwargs) -> Fact:
        """Create a verified stored fact."""
        kwargs.setdefault("verified", True)
        kwargs.setdefault("fact_id", str(uuid.uuid4()))
        return Fact(text=text, category=category, **kwargs)

    @staticmethod
    def create_fact_records() -> List[Dict[str, Any]]:
        """Create stored fact records across a few categories."""
        return [
            {
                "fact_id": "fact-1",
                "text": "Light from the Sun takes about eight minutes to reach Earth.",
                "category": "space",
                "verified": True,
                "generated": False,
                "source": "NASA",
                "tags": ["sun", "light"],
            },
            {
                "fact_id": "fact-2",
                "text": "Octopuses have three hearts and blue blood.",
                "category": "animals",
                "verified": True,
                "generated": False,
                "source": "Smithsonian",
                "tags": ["octopus"],
            },
            {
                "fact_id": "fact-3",
                "text": "The Great Wall of China is not visible to the naked eye from orbit.",
                "category": "history",
                "verified": False,
                "generated": False,
                "source": "User Submitted",
                "tags": ["china"],
            },
            {
                "fact_id": "fact-4",
                "text": "Bananas are botanically classified as berries.",
                "category": "food",
                "verified": True,
                "generated": True,
                "source": "AI Generated",
                "tags": ["fruit"],
                "model": "xai/grok-3",
            },
        ]



TEST_SECRET = "fk_live_0123456789abcdef"

GENERATED_FACT_JSON = (
    '{"fact": "Tardigrades can survive the vacuum of space.", "category": "science", '
    '"source_context": "Biology", "tags": ["tardigrade"]}'
)


class ResolverHarness:
    """Fact resolver wired to in-memory collaborators."""

    __test__ = False

    def __init__(self,
                 plan: PlanTier = PlanTier.PREMIUM,
                 fallback_enabled: bool = True,
                 records: Optional[List[Dict[str, Any]]] = None,
                 responses: Optional[List[Union[str, Exception]]] = None,
                 metrics=None):
        self.clock = FakeClock()
        self.backend = FakeBackend(self.clock)
        self.identity_store = FakeIdentityStore()
        self.identity_store.add(
            TestDataFactory.create_credential(secret=TEST_SECRET),
            TestDataFactory.create_identity(plan=plan)
        )
        self.fact_store = FakeFactStore(records if records is not None else TestDataFactory.create_fact_records())
        self.text_generator = FakeTextGenerator(responses if responses is not None else [GENERATED_FACT_JSON])
        self.metrics = metrics
        self.cache = CacheLayer(self.backend, metrics=metrics)
        self.resolver = FactResolver(
            auth_gate=AuthGate(self.identity_store, clock=self.clock),
            quota_tracker=QuotaTracker(self.backend, clock=self.clock, metrics=metrics),
            cache=self.cache,
            fact_store=self.fact_store,
            usage_recorder=UsageRecorder(self.identity_store, clock=self.clock),
            generator=FallbackGenerator(self.text_generator, clock=self.clock),
            fallback_enabled=fallback_enabled,
            clock=self.clock,
            metrics=metrics
        )

    async def resolve(self, **kwargs):
        """Resolve a fact with the harness API key."""
        material = CredentialMaterial(kind=CredentialKind.API_KEY, secret=TEST_SECRET)
        return await self.resolver.resolve_fact(FactRequest(**kwargs), material)

    def store_ops(self) -> List[str]:
        return [op for op, _ in self.fact_store.calls]

    def credential(self) -> Credential:
        return self.identity_store.credentials["key-1"]
