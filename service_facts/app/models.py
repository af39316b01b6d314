"""
Domain models for the Facts Service.
"""

from typing import Dict, Any, Optional, List, Tuple
from dataclasses import dataclass, field
from enum import Enum
import time

from pydantic import BaseModel, Field, field_validator


UNLIMITED = -1

CATEGORIES: Tuple[str, ...] = (
    "science", "history", "technology", "nature", "space", "animals",
    "geography", "sports", "entertainment", "health", "food", "general",
)

FACT_MIN_LENGTH = 10
FACT_MAX_LENGTH = 1000


class PlanTier(str, Enum):
    """Subscription plans, ordered basic < premium < platinum."""
    BASIC = "basic"
    PREMIUM = "premium"
    PLATINUM = "platinum"

    @property
    def rank(self) -> int:
        return _PLAN_ORDER.index(self)

    def at_least(self, other: "PlanTier") -> bool:
        """Check whether this plan is the same as or above ``other``."""
        return self.rank >= PlanTier(other).rank


_PLAN_ORDER = [PlanTier.BASIC, PlanTier.PREMIUM, PlanTier.PLATINUM]


class IdentityStatus(str, Enum):
    """Account status."""
    ACTIVE = "active"
    SUSPENDED = "suspended"
    LOCKED = "locked"
    DELETED = "deleted"


class CredentialStatus(str, Enum):
    """Credential status."""
    ACTIVE = "active"
    SUSPENDED = "suspended"
    REVOKED = "revoked"


class CredentialKind(str, Enum):
    """How the credential was presented."""
    API_KEY = "api_key"
    SESSION = "session"


class FactSource(str, Enum):
    """Tier that satisfied a resolution."""
    CACHE = "cache"
    STORE = "store"
    GENERATED = "generated"


@dataclass(frozen=True)
class PlanPolicy:
    """Limits and features granted by a plan."""
    plan: PlanTier
    rate_limit: int
    monthly_limit: int
    features: Tuple[str, ...]

    @property
    def unlimited_monthly(self) -> bool:
        return self.monthly_limit == UNLIMITED


# Lowest plan that includes each feature
FEATURE_TIERS: Dict[str, PlanTier] = {
    "basic_facts": PlanTier.BASIC,
    "all_categories": PlanTier.PREMIUM,
    "ai_facts": PlanTier.PREMIUM,
    "priority_support": PlanTier.PREMIUM,
    "custom_integration": PlanTier.PLATINUM,
}


def plan_features(plan: PlanTier) -> Tuple[str, ...]:
    """Get the features included in a plan."""
    return tuple(feature for feature, minimum in FEATURE_TIERS.items() if PlanTier(plan).at_least(minimum))


PLAN_POLICIES: Dict[PlanTier, PlanPolicy] = {
    PlanTier.BASIC: PlanPolicy(
        plan=PlanTier.BASIC,
        rate_limit=100,
        monthly_limit=1000,
        features=plan_features(PlanTier.BASIC),
    ),
    PlanTier.PREMIUM: PlanPolicy(
        plan=PlanTier.PREMIUM,
        rate_limit=1000,
        monthly_limit=100000,
        features=plan_features(PlanTier.PREMIUM),
    ),
    PlanTier.PLATINUM: PlanPolicy(
        plan=PlanTier.PLATINUM,
        rate_limit=5000,
        monthly_limit=UNLIMITED,
        features=plan_features(PlanTier.PLATINUM),
    ),
}


def policy_for(plan: PlanTier) -> PlanPolicy:
    """Get the policy for a plan."""
    return PLAN_POLICIES[PlanTier(plan)]


def is_valid_category(category: Optional[str]) -> bool:
    """Check a category against the fixed category set."""
    return category in CATEGORIES


@dataclass
class QuotaWindow:
    """Counter for one fixed window."""
    window_start: float
    count: int = 0
    limit: int = UNLIMITED
    window_duration: float = 0.0

    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED

    @property
    def reset_at(self) -> float:
        return self.window_start + self.window_duration

    @property
    def remaining(self) -> int:
        if self.unlimited:
            return UNLIMITED
        return max(0, self.limit - self.count)

    def is_stale(self, now: float) -> bool:
        """Check whether ``now`` is past the end of this window."""
        return now >= self.reset_at

    def current(self, now: float, granularity) -> "QuotaWindow":
        """Return this window, or a zeroed one for the bucket containing ``now``."""
        if not self.is_stale(now):
            return self
        start, end = granularity.bounds(now)
        return QuotaWindow(window_start=start, count=0, limit=self.limit, window_duration=end - start)

    @classmethod
    def open(cls, now: float, granularity, limit: int) -> "QuotaWindow":
        """Create an empty window for the bucket containing ``now``."""
        start, end = granularity.bounds(now)
        return cls(window_start=start, count=0, limit=limit, window_duration=end - start)

    def to_record(self) -> Dict[str, Any]:
        return {
            "window_start": self.window_start,
            "count": self.count,
            "limit": self.limit,
            "window_duration": self.window_duration,
        }

    @classmethod
    def from_record(cls, record: Optional[Dict[str, Any]]) -> Optional["QuotaWindow"]:
        if not record:
            return None
        return cls(
            window_start=float(record.get("window_start", 0.0)),
            count=int(record.get("count", 0)),
            limit=int(record.get("limit", UNLIMITED)),
            window_duration=float(record.get("window_duration", 0.0)),
        )


@dataclass
class EndpointStat:
    """Request count for one endpoint."""
    endpoint: str
    count: int = 0


@dataclass
class Identity:
    """Authenticated account behind a request."""
    identity_id: str
    plan: PlanTier = PlanTier.BASIC
    status: IdentityStatus = IdentityStatus.ACTIVE
    locked_until: Optional[float] = None
    features: List[str] = field(default_factory=list)
    monthly_usage: Optional[QuotaWindow] = None
    total_requests: int = 0
    last_request_at: Optional[float] = None
    email: Optional[str] = None

    @property
    def policy(self) -> PlanPolicy:
        return policy_for(self.plan)

    def is_locked(self, now: float) -> bool:
        return self.locked_until is not None and self.locked_until > now

    def is_active(self, now: float) -> bool:
        """An identity is active only while its status is active and it is not locked."""
        return self.status == IdentityStatus.ACTIVE and not self.is_locked(now)

    def has_feature(self, feature: str) -> bool:
        return feature in self.features or feature in self.policy.features

    def to_record(self) -> Dict[str, Any]:
        return {
            "identity_id": self.identity_id,
            "plan": self.plan.value,
            "status": self.status.value,
            "locked_until": self.locked_until,
            "features": list(self.features),
            "monthly_usage": self.monthly_usage.to_record() if self.monthly_usage else None,
            "total_requests": self.total_requests,
            "last_request_at": self.last_request_at,
            "email": self.email,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Identity":
        return cls(
            identity_id=str(record["identity_id"]),
            plan=PlanTier(record.get("plan", PlanTier.BASIC.value)),
            status=IdentityStatus(record.get("status", IdentityStatus.ACTIVE.value)),
            locked_until=record.get("locked_until"),
            features=list(record.get("features") or []),
            monthly_usage=QuotaWindow.from_record(record.get("monthly_usage")),
            total_requests=int(record.get("total_requests", 0)),
            last_request_at=record.get("last_request_at"),
            email=record.get("email"),
        )


@dataclass
class Credential:
    """Bearer secret presented per request."""
    credential_id: str
    identity_id: str
    secret: str
    kind: CredentialKind = CredentialKind.API_KEY
    status: CredentialStatus = CredentialStatus.ACTIVE
    name: str = "default"
    expires_at: Optional[float] = None
    ip_whitelist: List[str] = field(default_factory=list)
    allowed_origins: List[str] = field(default_factory=list)
    rate_limit_override: Optional[int] = None
    total_requests: int = 0
    monthly_usage: Optional[QuotaWindow] = None
    error_count: int = 0
    avg_response_time_ms: float = 0.0
    popular_endpoints: List[EndpointStat] = field(default_factory=list)
    last_used_at: Optional[float] = None

    @property
    def masked_secret(self) -> str:
        if len(self.secret) <= 8:
            return "*" * len(self.secret)
        return f"{self.secret[:4]}...{self.secret[-4:]}"

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def is_usable(self, now: float) -> bool:
        """A credential authorizes only while active and unexpired."""
        return self.status == CredentialStatus.ACTIVE and not self.is_expired(now)

    def to_record(self) -> Dict[str, Any]:
        return {
            "credential_id": self.credential_id,
            "identity_id": self.identity_id,
            "secret": self.secret,
            "kind": self.kind.value,
            "status": self.status.value,
            "name": self.name,
            "expires_at": self.expires_at,
            "ip_whitelist": list(self.ip_whitelist),
            "allowed_origins": list(self.allowed_origins),
            "rate_limit_override": self.rate_limit_override,
            "total_requests": self.total_requests,
            "monthly_usage": self.monthly_usage.to_record() if self.monthly_usage else None,
            "error_count": self.error_count,
            "avg_response_time_ms": self.avg_response_time_ms,
            "popular_endpoints": [
                {"endpoint": stat.endpoint, "count": stat.count}
                for stat in self.popular_endpoints
            ],
            "last_used_at": self.last_used_at,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Credential":
        return cls(
            credential_id=str(record["credential_id"]),
            identity_id=str(record["identity_id"]),
            secret=record.get("secret", ""),
            kind=CredentialKind(record.get("kind", CredentialKind.API_KEY.value)),
            status=CredentialStatus(record.get("status", CredentialStatus.ACTIVE.value)),
            name=record.get("name", "default"),
            expires_at=record.get("expires_at"),
            ip_whitelist=list(record.get("ip_whitelist") or []),
            allowed_origins=list(record.get("allowed_origins") or []),
            rate_limit_override=record.get("rate_limit_override"),
            total_requests=int(record.get("total_requests", 0)),
            monthly_usage=QuotaWindow.from_record(record.get("monthly_usage")),
            error_count=int(record.get("error_count", 0)),
            avg_response_time_ms=float(record.get("avg_response_time_ms", 0.0)),
            popular_endpoints=[
                EndpointStat(endpoint=item["endpoint"], count=int(item.get("count", 0)))
                for item in record.get("popular_endpoints") or []
            ],
            last_used_at=record.get("last_used_at"),
        )


@dataclass
class Fact:
    """A short factual statement."""
    text: str
    category: str
    verified: bool = False
    generated: bool = False
    fact_id: Optional[str] = None
    source: str = "Unknown"
    tags: List[str] = field(default_factory=list)
    views: int = 0
    likes: int = 0
    model: Optional[str] = None
    created_at: Optional[float] = None

    def to_record(self) -> Dict[str, Any]:
        record = {
            "text": self.text,
            "category": self.category,
            "verified": self.verified,
            "generated": self.generated,
            "source": self.source,
            "tags": list(self.tags),
            "views": self.views,
            "likes": self.likes,
            "model": self.model,
            "created_at": self.created_at,
        }
        if self.fact_id is not None:
            record["fact_id"] = self.fact_id
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Fact":
        fact_id = record.get("fact_id", record.get("_id"))
        return cls(
            text=record.get("text", record.get("fact", "")),
            category=record.get("category", "general"),
            verified=bool(record.get("verified", False)),
            generated=bool(record.get("generated", False)),
            fact_id=str(fact_id) if fact_id is not None else None,
            source=record.get("source") or "Unknown",
            tags=list(record.get("tags") or []),
            views=int(record.get("views", 0)),
            likes=int(record.get("likes", 0)),
            model=record.get("model"),
            created_at=record.get("created_at"),
        )


@dataclass
class ClientContext:
    """Caller network details and the endpoint being hit."""
    ip: Optional[str] = None
    origin: Optional[str] = None
    endpoint: str = "/api/v1/facts/random"
    method: str = "GET"
    user_agent: Optional[str] = None


@dataclass
class CredentialMaterial:
    """Raw credential as presented by the caller."""
    kind: CredentialKind
    secret: str


@dataclass
class AuthResult:
    """Successful authentication."""
    identity: Identity
    credential: Credential
    rate_limit: int
    rate_limit_source: str = "plan"


@dataclass
class Reservation:
    """Units taken from one counter bucket, kept so they can be given back."""
    key: str
    cost: int
    reset_at: float


@dataclass
class QuotaDecision:
    """Outcome of a quota reservation."""
    allowed: bool
    window: str
    limit: int
    remaining: int
    reset_at: float
    retry_after: int = 0
    degraded: bool = False
    limit_source: str = "plan"
    reservations: List[Reservation] = field(default_factory=list)

    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED

    def to_headers(self) -> Dict[str, str]:
        """Rate limit headers for HTTP responses."""
        if self.unlimited:
            return {}
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class FactRequest(BaseModel):
    """Caller options for a fact resolution."""

    category: Optional[str] = Field(default=None, description="Restrict to one category")
    force_new: bool = Field(default=False, description="Skip the cache lookup")
    exclude_generated: bool = Field(default=False, description="Only serve stored facts")
    persist_generated: bool = Field(default=True, description="Store facts produced by the generator")

    @field_validator("category")
    @classmethod
    def normalize_category(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().lower()
        return v or None


@dataclass
class ResolvedFact:
    """Fact returned to the caller with its provenance."""
    fact: Fact
    source: FactSource
    response_time_ms: float
    quota: Optional[QuotaDecision] = None

    def to_response(self) -> Dict[str, Any]:
        payload = {
            "fact": self.fact.text,
            "category": self.fact.category,
            "source": self.fact.source,
            "verified": self.fact.verified,
            "generated": self.fact.generated,
            "tags": list(self.fact.tags),
            "served_from": self.source.value,
            "response_time_ms": round(self.response_time_ms, 2),
        }
        if self.fact.fact_id:
            payload["id"] = self.fact.fact_id
        if self.fact.model:
            payload["model"] = self.fact.model
        return payload


@dataclass
class RequestOutcome:
    """Final result of an authenticated request, fed to usage recording."""
    status_code: int
    response_time_ms: float
    endpoint: str
    method: str = "GET"
    finished_at: float = field(default_factory=time.time)

    @property
    def succeeded(self) -> bool:
        return self.status_code < 400
