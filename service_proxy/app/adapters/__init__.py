"""
Adapters package for the proxy service.

Contains the HTTP client wrapper for the upstream registry. The adapter
classifies every outcome into a result variant instead of raising, so the
orchestrator decides how each failure is reported.
"""

from .upstream_client import Success, Timeout, TransportError, UpstreamClient, UpstreamError, UpstreamResult

__all__ = [
    "Success",
    "Timeout",
    "TransportError",
    "UpstreamClient",
    "UpstreamError",
    "UpstreamResult",
]
