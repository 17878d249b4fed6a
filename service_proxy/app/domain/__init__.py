"""
Domain helpers for the proxy service.

- models: request, envelope and result types
- transformer: route-specific payload shaping
- orchestrator: the per-request pipeline
"""

from .models import ProxyRequest, ProxyResponse, ProxyResult, RouteKind

__all__ = ["ProxyRequest", "ProxyResponse", "ProxyResult", "RouteKind"]
