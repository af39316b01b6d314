"""
Fixed-window quota tracker for the Facts Service.
"""

import math
import time
from dataclasses import replace
from typing import Dict, Any, Optional, Callable

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.errors import QuotaError, RateLimited, QuotaExceeded

from service_facts.app.models import Identity, QuotaDecision, Reservation, UNLIMITED
from service_facts.app.protocols import CounterStore
from service_facts.app.ratelimit.windows import FixedWindow, CalendarMonthWindow


class QuotaTracker:
    """Meters identities against a request-rate window and a monthly window.

    Each window bucket is one counter key; check and increment happen in a
    single ``incr_with_expiry`` call on the counter store, so concurrent
    requests can overshoot the counter but never lose an increment. Counter
    store failures fail open and mark the decision as degraded.
    """

    def __init__(self,
                 counter_store: CounterStore,
                 rate_window: Optional[FixedWindow] = None,
                 monthly_window: Optional[CalendarMonthWindow] = None,
                 clock: Callable[[], float] = time.time,
                 metrics: Optional[MetricsCollector] = None):
        self.counter_store = counter_store
        self.rate_window = rate_window or FixedWindow(900, name="rate")
        self.monthly_window = monthly_window or CalendarMonthWindow(name="monthly")
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("facts.quota_tracker")

    def _granularity(self, window: str):
        if window == self.rate_window.name:
            return self.rate_window
        if window == self.monthly_window.name:
            return self.monthly_window
        raise ValueError(f"Unknown quota window: {window}")

    def _make_key(self, window: str, identity_id: str, window_start: float) -> str:
        """Generate quota counter key."""
        return f"quota:{window}:{identity_id}:{int(window_start)}"

    async def _reserve(self,
                       identity_id: str,
                       limit: int,
                       granularity,
                       cost: int,
                       now: float,
                       limit_source: str) -> QuotaDecision:
        """Reserve ``cost`` units in the bucket of ``granularity`` containing ``now``."""
        start, end = granularity.bounds(now)

        if limit == UNLIMITED:
            return QuotaDecision(
                allowed=True,
                window=granularity.name,
                limit=UNLIMITED,
                remaining=UNLIMITED,
                reset_at=end,
                limit_source=limit_source
            )

        key = self._make_key(granularity.name, identity_id, start)
        ttl = max(1, math.ceil(end - now))

        try:
            count = await self.counter_store.incr_with_expiry(key, ttl, cost)
        except Exception as e:
            self.logger.error(
                "Quota counter unavailable, allowing request",
                identity_id=identity_id,
                window=granularity.name,
                error=str(e)
            )
            return QuotaDecision(
                allowed=True,
                window=granularity.name,
                limit=limit,
                remaining=limit,
                reset_at=end,
                degraded=True,
                limit_source=limit_source
            )

        allowed = count <= limit
        decision = QuotaDecision(
            allowed=allowed,
            window=granularity.name,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=end,
            retry_after=0 if allowed else ttl,
            limit_source=limit_source,
            reservations=[Reservation(key=key, cost=cost, reset_at=end)] if allowed else []
        )

        if not allowed:
            self.logger.warning(
                "Quota exceeded",
                identity_id=identity_id,
                window=granularity.name,
                count=count,
                limit=limit
            )
            if self.metrics:
                self.metrics.increment_counter("quota_denials_total", window=granularity.name)

        return decision

    async def check_and_reserve(self,
                                identity: Identity,
                                cost: int = 1,
                                rate_limit: Optional[int] = None,
                                limit_source: str = "plan") -> QuotaDecision:
        """Reserve one request against the rate window, then the monthly window."""
        now = self.clock()
        policy = identity.policy
        if rate_limit is None:
            rate_limit = policy.rate_limit
            limit_source = "plan"

        rate_decision = await self._reserve(
            identity.identity_id, rate_limit, self.rate_window, cost, now, limit_source
        )
        if not rate_decision.allowed:
            return rate_decision

        monthly_decision = await self._reserve(
            identity.identity_id, policy.monthly_limit, self.monthly_window, cost, now, "plan"
        )
        if not monthly_decision.allowed:
            return monthly_decision

        tighter = min(
            (rate_decision, monthly_decision),
            key=lambda d: math.inf if d.unlimited else d.remaining
        )
        return replace(tighter, reservations=rate_decision.reservations + monthly_decision.reservations)

    async def release(self, decision: QuotaDecision) -> bool:
        """Give back the units an allowed decision reserved.

        Used when the request fails after its quota was taken. Denied decisions
        hold no reservations, so denied requests stay counted.
        """
        now = self.clock()
        released = True
        for reservation in decision.reservations:
            ttl = max(1, math.ceil(reservation.reset_at - now))
            try:
                await self.counter_store.incr_with_expiry(reservation.key, ttl, -reservation.cost)
            except Exception as e:
                self.logger.error("Quota refund failed", key=reservation.key, error=str(e))
                released = False
        decision.reservations = []
        return released

    def raise_if_denied(self, decision: QuotaDecision) -> None:
        """Raise the quota error matching a denied decision."""
        if decision.allowed:
            return
        raise self.to_error(decision)

    @staticmethod
    def to_error(decision: QuotaDecision) -> QuotaError:
        """Convert a denied decision into a quota error."""
        kwargs = {
            "limit": decision.limit,
            "remaining": decision.remaining,
            "reset_at": decision.reset_at,
            "retry_after": decision.retry_after,
            "details": {"window": decision.window},
        }
        if decision.limit_source == "credential":
            return RateLimited(**kwargs)
        return QuotaExceeded(**kwargs)

    async def get_status(self, identity_id: str, limit: int, window: str = "rate") -> Dict[str, Any]:
        """Get current usage for a window without consuming it."""
        granularity = self._granularity(window)
        now = self.clock()
        start, end = granularity.bounds(now)

        try:
            value = await self.counter_store.get(self._make_key(granularity.name, identity_id, start))
            count = int(value) if value else 0
        except Exception as e:
            self.logger.error("Quota status error", identity_id=identity_id, window=window, error=str(e))
            return {
                "window": window,
                "current_count": 0,
                "limit": limit,
                "remaining": limit,
                "reset_at": end,
                "error": str(e)
            }

        return {
            "window": window,
            "current_count": count,
            "limit": limit,
            "remaining": UNLIMITED if limit == UNLIMITED else max(0, limit - count),
            "reset_at": end
        }
