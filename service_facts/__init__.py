"""
Facts Service package for the Fact Access Layer.

The service answers fact requests for authenticated callers, enforcing:
- Authentication: API keys and session tokens via the identity store
- Quotas: fixed-window request rate plus a calendar-month plan quota
- Caching: tagged TTL cache in front of the fact store
- Fallback: generated facts when the store has nothing to serve

Structure:
- app.main: FastAPI app and routes.
- app.resolver: The cache, store and generator tiers.
- app.auth: Credential resolution.
- app.ratelimit: Quota windows and tracker.
- app.caching: Redis backend and cache layer.
- app.generation: Generative fallback.
- app.usage: Post-request usage bookkeeping.
- app.adapters: HTTP clients for the stores and the generator.
"""
