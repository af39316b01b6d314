"""
Tiered fact resolution for the Facts Service.
"""

import time
from typing import Dict, Any, Optional, List, Tuple, Callable

from shared.logging import get_logger, set_identity_context
from shared.metrics import MetricsCollector
from shared.errors import (
    FactServiceException,
    GenerationError,
    InvalidCategory,
    NoFactAvailable,
    ValidationError,
)

from service_facts.app.auth.gate import AuthGate
from service_facts.app.caching.cache_layer import CacheLayer
from service_facts.app.generation.fallback import FallbackGenerator
from service_facts.app.ratelimit.quota_tracker import QuotaTracker
from service_facts.app.usage.recorder import UsageRecorder
from service_facts.app.protocols import FactStore
from service_facts.app.models import (
    AuthResult,
    CATEGORIES,
    ClientContext,
    CredentialMaterial,
    Fact,
    FactRequest,
    FactSource,
    QuotaDecision,
    RequestOutcome,
    ResolvedFact,
    FACT_MIN_LENGTH,
    FACT_MAX_LENGTH,
    UNLIMITED,
    is_valid_category,
)


DEFAULT_STORE_TTL = 300
DEFAULT_GENERATED_TTL = 3600
GENERATION_CATEGORY = "general"
GENERATION_FEATURE = "ai_facts"


class FactResolver:
    """Serves facts from the cache, then the store, then the generator.

    Per request the stages run in a fixed order: authenticate, validate the
    category, reserve quota, look up the cache, query the store, generate,
    persist, cache and respond. Usage is recorded once for every request
    that got past authentication.
    """

    def __init__(self,
                 auth_gate: AuthGate,
                 quota_tracker: QuotaTracker,
                 cache: CacheLayer,
                 fact_store: FactStore,
                 usage_recorder: UsageRecorder,
                 generator: Optional[FallbackGenerator] = None,
                 *,
                 fallback_enabled: bool = False,
                 store_ttl: int = DEFAULT_STORE_TTL,
                 generated_ttl: int = DEFAULT_GENERATED_TTL,
                 clock: Callable[[], float] = time.time,
                 metrics: Optional[MetricsCollector] = None):
        self.auth_gate = auth_gate
        self.quota_tracker = quota_tracker
        self.cache = cache
        self.fact_store = fact_store
        self.usage_recorder = usage_recorder
        self.generator = generator
        self.fallback_enabled = fallback_enabled
        self.store_ttl = store_ttl
        self.generated_ttl = generated_ttl
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("facts.resolver")

    @staticmethod
    def cache_key(category: Optional[str], exclude_generated: bool = False) -> str:
        """Cache key for a random fact request."""
        key = f"random_fact:{category or 'any'}"
        if exclude_generated:
            key += ":stored"
        return key

    @staticmethod
    def cache_tags(category: Optional[str]) -> List[str]:
        return [f"category:{category or 'any'}"]

    def categories(self) -> List[str]:
        """Get the fixed category set."""
        return list(CATEGORIES)

    def _validate_category(self, category: Optional[str]):
        if category is not None and not is_valid_category(category):
            raise InvalidCategory(category, details={"valid_categories": list(CATEGORIES)})

    async def _authenticate(self, material: Optional[CredentialMaterial], context: ClientContext) -> AuthResult:
        auth = await self.auth_gate.resolve(material, context)
        set_identity_context(auth.identity.identity_id, auth.credential.credential_id)
        return auth

    async def _record_usage(self, auth: AuthResult, context: ClientContext, status_code: int, start_time: float):
        outcome = RequestOutcome(
            status_code=status_code,
            response_time_ms=(self.clock() - start_time) * 1000,
            endpoint=context.endpoint,
            method=context.method,
            finished_at=self.clock()
        )
        await self.usage_recorder.record(auth.identity, auth.credential, outcome)

    def _scope_to_plan(self, request: FactRequest, auth: AuthResult) -> FactRequest:
        """Restrict callers whose plan lacks generated facts to stored facts."""
        if request.exclude_generated or auth.identity.has_feature(GENERATION_FEATURE):
            return request
        self.logger.debug("Plan excludes generated facts", plan=auth.identity.plan.value)
        return request.model_copy(update={"exclude_generated": True})

    async def resolve_fact(self,
                           request: FactRequest,
                           material: Optional[CredentialMaterial],
                           context: Optional[ClientContext] = None) -> ResolvedFact:
        """Resolve one fact for an authenticated caller."""
        context = context or ClientContext()
        start_time = self.clock()

        auth = await self._authenticate(material, context)
        request = self._scope_to_plan(request, auth)

        status_code = 500
        decision: Optional[QuotaDecision] = None
        try:
            self._validate_category(request.category)

            decision = await self.quota_tracker.check_and_reserve(
                auth.identity,
                rate_limit=auth.rate_limit,
                limit_source=auth.rate_limit_source
            )
            self.quota_tracker.raise_if_denied(decision)

            fact, source = await self._resolve(request)
            status_code = 200

        except FactServiceException as e:
            status_code = e.status_code
            raise
        finally:
            if status_code >= 400 and decision is not None and decision.allowed:
                await self.quota_tracker.release(decision)
            await self._record_usage(auth, context, status_code, start_time)

        elapsed_ms = (self.clock() - start_time) * 1000
        if self.metrics:
            self.metrics.increment_counter("fact_resolutions_total", source=source.value)
            self.metrics.observe_histogram("fact_resolution_duration_seconds", elapsed_ms / 1000, source=source.value)

        self.logger.info(
            "Fact resolved",
            category=request.category,
            source=source.value,
            response_time_ms=round(elapsed_ms, 2),
            degraded_quota=decision.degraded
        )

        return ResolvedFact(fact=fact, source=source, response_time_ms=elapsed_ms, quota=decision)

    async def _resolve(self, request: FactRequest) -> Tuple[Fact, FactSource]:
        """Run the cache, store and generator tiers."""
        key = self.cache_key(request.category, request.exclude_generated)
        tags = self.cache_tags(request.category)
        origin: Dict[str, FactSource] = {}

        async def populate() -> Dict[str, Any]:
            fact, source = await self._fetch(request)
            origin["source"] = source
            return fact.to_record()

        def ttl_for(record: Dict[str, Any]) -> int:
            if origin.get("source") == FactSource.GENERATED:
                return self.generated_ttl
            return self.store_ttl

        if request.force_new:
            record = await populate()
            await self.cache.set_with_tags(key, record, tags, ttl_for(record))
        else:
            record = await self.cache.get_or_populate(key, ttl_for, populate, tags)

        return Fact.from_record(record), origin.get("source", FactSource.CACHE)

    async def _fetch(self, request: FactRequest) -> Tuple[Fact, FactSource]:
        """Query the store, falling back to generation."""
        fact = await self._lookup_store(request.category, request.exclude_generated)
        if fact is not None:
            return fact, FactSource.STORE

        fact = await self._generate(request)
        return fact, FactSource.GENERATED

    async def _lookup_store(self, category: Optional[str], exclude_generated: bool) -> Optional[Fact]:
        query: Dict[str, Any] = {"verified": True}
        if category:
            query["category"] = category
        if exclude_generated:
            query["generated"] = {"$ne": True}

        try:
            if category:
                record = await self.fact_store.find_one(query)
            else:
                record = await self.fact_store.sample_one(query)
        except Exception as e:
            self.logger.error("Fact store lookup failed, treating as miss", category=category, error=str(e))
            return None

        return Fact.from_record(record) if record else None

    async def _generate(self, request: FactRequest) -> Fact:
        category = request.category
        if request.exclude_generated or not self.fallback_enabled or self.generator is None:
            raise NoFactAvailable(category)

        self.logger.info("No stored fact found, using generative fallback", category=category)
        try:
            fact = await self.generator.generate(category or GENERATION_CATEGORY)
        except GenerationError as e:
            raise NoFactAvailable(category, details={"reason": e.message}) from e

        if request.persist_generated:
            fact = await self._persist(fact)
        return fact

    async def _persist(self, fact: Fact) -> Fact:
        try:
            stored = await self.fact_store.insert(fact.to_record())
        except Exception as e:
            self.logger.error("Failed to persist generated fact", category=fact.category, error=str(e))
            return fact

        stored_id = stored.get("fact_id", stored.get("_id")) if stored else None
        if stored_id is not None:
            fact.fact_id = str(stored_id)
        return fact

    async def submit_fact(self,
                          material: Optional[CredentialMaterial],
                          text: str,
                          category: str,
                          context: Optional[ClientContext] = None,
                          source: Optional[str] = None,
                          tags: Optional[List[str]] = None) -> Fact:
        """Validate and store a caller-submitted fact, then drop cached facts for its category."""
        context = context or ClientContext(endpoint="/api/v1/facts", method="POST")
        start_time = self.clock()

        auth = await self._authenticate(material, context)

        status_code = 500
        try:
            fact = await self._build_submission(text, category, source, tags)
            stored = await self.fact_store.insert(fact.to_record())
            if stored:
                fact = Fact.from_record({**fact.to_record(), **stored})
            status_code = 201

        except FactServiceException as e:
            status_code = e.status_code
            raise
        finally:
            await self._record_usage(auth, context, status_code, start_time)

        await self.invalidate_category(fact.category)
        self.logger.info("Fact submitted", category=fact.category, identity_id=auth.identity.identity_id)
        return fact

    async def _build_submission(self, text: str, category: str,
                                source: Optional[str], tags: Optional[List[str]]) -> Fact:
        text = (text or "").strip()
        category = (category or "").strip().lower()

        self._validate_category(category)
        if not FACT_MIN_LENGTH <= len(text) <= FACT_MAX_LENGTH:
            raise ValidationError(
                f"Fact must be between {FACT_MIN_LENGTH} and {FACT_MAX_LENGTH} characters",
                details={"length": len(text)}
            )

        if self.generator is not None and not await self.generator.moderate(text):
            raise ValidationError("Content rejected by moderation")

        return Fact(
            text=text,
            category=category,
            verified=False,
            generated=False,
            source=source or "User Submitted",
            tags=[tag.lower() for tag in tags] if tags else [category],
            created_at=self.clock()
        )

    async def usage_summary(self,
                            material: Optional[CredentialMaterial],
                            context: Optional[ClientContext] = None) -> Dict[str, Any]:
        """Quota status and credential analytics for the caller. Not metered."""
        context = context or ClientContext(endpoint="/api/v1/usage")
        auth = await self._authenticate(material, context)
        identity = auth.identity
        policy = identity.policy

        rate = await self.quota_tracker.get_status(identity.identity_id, auth.rate_limit, window="rate")
        if policy.unlimited_monthly:
            monthly = {"window": "monthly", "limit": UNLIMITED, "remaining": UNLIMITED}
        else:
            monthly = await self.quota_tracker.get_status(identity.identity_id, policy.monthly_limit, window="monthly")

        return {
            "identity_id": identity.identity_id,
            "plan": identity.plan.value,
            "features": sorted(set(policy.features) | set(identity.features)),
            "quota": {"rate": rate, "monthly": monthly},
            "credential": self.usage_recorder.summarize(auth.credential),
        }

    async def invalidate_category(self, category: str) -> int:
        """Drop cached facts for a category and for unfiltered requests."""
        self._validate_category(category)
        count = await self.cache.invalidate_by_tag(f"category:{category}")
        count += await self.cache.invalidate_by_tag("category:any")
        return count
