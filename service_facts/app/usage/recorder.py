"""
Post-resolution usage bookkeeping for the Facts Service.
"""

import time
from typing import Dict, Any, Callable

from shared.logging import get_logger

from service_facts.app.models import (
    Identity,
    Credential,
    EndpointStat,
    QuotaWindow,
    RequestOutcome,
)
from service_facts.app.protocols import IdentityStore
from service_facts.app.ratelimit.windows import CalendarMonthWindow


MAX_POPULAR_ENDPOINTS = 10


class UsageRecorder:
    """Updates identity and credential usage after each authenticated request.

    Records are re-read from the identity store before they are mutated so
    concurrent requests do not write back stale snapshots.
    """

    def __init__(self, identity_store: IdentityStore, clock: Callable[[], float] = time.time):
        self.identity_store = identity_store
        self.clock = clock
        self.monthly_window = CalendarMonthWindow()
        self.logger = get_logger("facts.usage_recorder")

    def _bump_monthly(self, window: QuotaWindow, limit: int, now: float) -> QuotaWindow:
        if window is None:
            window = QuotaWindow.open(now, self.monthly_window, limit)
        window = window.current(now, self.monthly_window)
        window.limit = limit
        window.count += 1
        return window

    def _update_analytics(self, credential: Credential, outcome: RequestOutcome):
        n = credential.total_requests
        credential.avg_response_time_ms = (
            (credential.avg_response_time_ms * (n - 1) + outcome.response_time_ms) / n
        )

        for stat in credential.popular_endpoints:
            if stat.endpoint == outcome.endpoint:
                stat.count += 1
                break
        else:
            credential.popular_endpoints.append(EndpointStat(endpoint=outcome.endpoint, count=1))

        credential.popular_endpoints.sort(key=lambda stat: stat.count, reverse=True)
        del credential.popular_endpoints[MAX_POPULAR_ENDPOINTS:]

    async def record(self, identity: Identity, credential: Credential, outcome: RequestOutcome) -> bool:
        """Record one request outcome. Never raises; returns False when nothing was saved."""
        now = self.clock()
        try:
            fresh_credential = await self.identity_store.get_credential(credential.credential_id)
            if fresh_credential is None:
                self.logger.warning("Credential vanished before usage recording", credential_id=credential.credential_id)
                return False

            if not outcome.succeeded:
                fresh_credential.error_count += 1
                await self.identity_store.save_credential(fresh_credential)
                return True

            fresh_identity = await self.identity_store.get_identity(identity.identity_id)
            if fresh_identity is None:
                self.logger.warning("Identity vanished before usage recording", identity_id=identity.identity_id)
                return False

            monthly_limit = fresh_identity.policy.monthly_limit
            fresh_identity.monthly_usage = self._bump_monthly(fresh_identity.monthly_usage, monthly_limit, now)
            fresh_identity.total_requests += 1
            fresh_identity.last_request_at = now

            fresh_credential.total_requests += 1
            fresh_credential.monthly_usage = self._bump_monthly(fresh_credential.monthly_usage, monthly_limit, now)
            fresh_credential.last_used_at = now
            self._update_analytics(fresh_credential, outcome)

            await self.identity_store.save_identity(fresh_identity)
            await self.identity_store.save_credential(fresh_credential)
            return True

        except Exception as e:
            self.logger.error(
                "Usage recording failed",
                identity_id=identity.identity_id,
                credential_id=credential.credential_id,
                status_code=outcome.status_code,
                error=str(e)
            )
            return False

    def summarize(self, credential: Credential) -> Dict[str, Any]:
        """Usage analytics for one credential, with the monthly count rolled over if stale."""
        monthly = credential.monthly_usage
        monthly_count = monthly.current(self.clock(), self.monthly_window).count if monthly else 0
        return {
            "credential_id": credential.credential_id,
            "name": credential.name,
            "key": credential.masked_secret,
            "total_requests": credential.total_requests,
            "monthly_requests": monthly_count,
            "error_count": credential.error_count,
            "avg_response_time_ms": round(credential.avg_response_time_ms, 2),
            "popular_endpoints": [
                {"endpoint": stat.endpoint, "count": stat.count}
                for stat in credential.popular_endpoints
            ],
            "last_used_at": credential.last_used_at,
        }
