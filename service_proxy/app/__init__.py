"""
Proxy service package for PNCP Access.

The proxy fronts the public procurement registry (PNCP), providing:
- URL translation from local mounts to the upstream consultation API
- An in-memory TTL cache with single-flight population
- Failure classification for upstream timeouts, errors and bad payloads
- Route-specific shaping (vehicle filtering, document projection)

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.routing: Inbound path to upstream URL translation and cache keys.
- app.caching: Response cache.
- app.adapters: HTTP client for the upstream registry.
- app.domain: Envelope models, payload transformer, and the orchestrator.
"""
