"""
PNCP Access proxy service.
"""

from datetime import date
from typing import Any, Callable, Dict, Optional

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.retry import RetryConfig
from service_proxy.app.adapters.upstream_client import UpstreamClient
from service_proxy.app.caching.cache_store import CacheStore
from service_proxy.app.domain.models import ProxyRequest, ProxyResponse, ProxyResult, RouteKind
from service_proxy.app.domain.orchestrator import ProxyOrchestrator
from service_proxy.app.domain.transformer import ResponseTransformer
from service_proxy.app.routing.translator import (
    DOCUMENTS_MOUNT,
    GENERIC_MOUNT,
    PROCUREMENTS_MOUNT,
    VEHICLES_MOUNT,
    UrlTranslator,
)


ENDPOINTS = {
    "health": "GET /health",
    "metrics": "GET /metrics",
    "passthrough": f"GET {GENERIC_MOUNT}/{{path}}",
    "procurements": f"GET {PROCUREMENTS_MOUNT}",
    "vehicles": f"GET {VEHICLES_MOUNT}?dataInicial=YYYYMMDD&dataFinal=YYYYMMDD&pagina=1&tamanhoPagina=50",
    "documents": f"GET {DOCUMENTS_MOUNT}/{{id}}",
    "cache_stats": "GET /api/v1/cache/stats",
    "cache_clear": "DELETE /api/v1/cache",
}


class ProxyService(BaseService):
    """Caching reverse proxy for the PNCP public procurement API."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Callable[[], float]] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        super().__init__("proxy", 8000, config or get_config("proxy", 8000))

        self.translator = UrlTranslator(self.config.upstream_base_url, today=today)
        cache_kwargs: Dict[str, Any] = {"max_entries": self.config.cache_max_entries}
        if clock is not None:
            cache_kwargs["clock"] = clock
        self.cache = CacheStore(self.config.cache_ttl_seconds, **cache_kwargs)
        self.upstream_client = UpstreamClient(
            user_agent=self.config.upstream_user_agent,
            default_timeout=self.config.generic_timeout_seconds,
            transport=transport,
        )
        self.transformer = ResponseTransformer(self.translator.document_download_url)
        self.orchestrator = ProxyOrchestrator(
            self.translator,
            self.cache,
            self.upstream_client,
            self.transformer,
            timeouts={
                RouteKind.GENERIC: self.config.generic_timeout_seconds,
                RouteKind.PROCUREMENTS: self.config.procurements_timeout_seconds,
                RouteKind.VEHICLES: self.config.vehicles_timeout_seconds,
                RouteKind.DOCUMENTS: self.config.documents_timeout_seconds,
            },
            retry_config=RetryConfig(
                max_attempts=self.config.upstream_retry_attempts,
                base_delay=self.config.upstream_retry_base_delay,
                max_delay=5.0,
            ),
            source=httpx.URL(self.config.upstream_base_url).host,
            metrics=self.metrics,
        )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.upstream_client.close()

        self._setup_proxy_routes()
        self._setup_not_found_handler()

        # Expose service instance via app state for introspection/testing
        self.app.state.proxy_service = self

    def _setup_proxy_routes(self):
        """Set up proxy routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": self.service_name,
                "message": "PNCP Access - procurement registry proxy",
                "version": self.config.version,
                "endpoints": ENDPOINTS,
            }

        @self.app.get("/api/v1/cache/stats")
        async def cache_stats():
            """Response cache statistics."""
            return self.cache.stats()

        @self.app.delete("/api/v1/cache")
        async def cache_clear():
            """Drop every cached response."""
            cleared = await self.cache.clear()
            self.metrics.set_gauge("cache_entries", len(self.cache))
            return {"cleared": cleared}

        @self.app.get(PROCUREMENTS_MOUNT)
        async def procurements(request: Request):
            """Procurement publications, forwarded as-is."""
            return await self._proxy(request, RouteKind.PROCUREMENTS)

        @self.app.get(VEHICLES_MOUNT)
        async def vehicles(request: Request):
            """Procurement publications filtered to vehicle-related purchases."""
            return await self._proxy(request, RouteKind.VEHICLES)

        @self.app.get(DOCUMENTS_MOUNT)
        async def documents_without_id(request: Request):
            """Rejected: a procurement id is required."""
            return await self._proxy(request, RouteKind.DOCUMENTS, procurement_id="")

        @self.app.get(DOCUMENTS_MOUNT + "/{procurement_id:path}")
        async def documents(request: Request, procurement_id: str):
            """Documents attached to a procurement."""
            return await self._proxy(request, RouteKind.DOCUMENTS, procurement_id=procurement_id)

        @self.app.get(GENERIC_MOUNT)
        async def passthrough_root(request: Request):
            """Rejected: nothing to forward."""
            return await self._proxy(request, RouteKind.GENERIC, path=GENERIC_MOUNT)

        @self.app.get(GENERIC_MOUNT + "/{path:path}")
        async def passthrough(request: Request, path: str):
            """Generic passthrough to the upstream consultation API."""
            return await self._proxy(request, RouteKind.GENERIC, path=f"{GENERIC_MOUNT}/{path}")

    def _setup_not_found_handler(self):
        """Render unmatched paths with the list of available endpoints."""

        @self.app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(request: Request, exc: StarletteHTTPException):
            if exc.status_code == 404:
                return JSONResponse(
                    status_code=404,
                    content={
                        "success": False,
                        "error": f"Endpoint not found: {request.method} {request.url.path}",
                        "endpoints": ENDPOINTS,
                    },
                )
            return JSONResponse(
                status_code=exc.status_code,
                content={"success": False, "error": str(exc.detail)},
                headers=getattr(exc, "headers", None),
            )

    async def _proxy(
        self,
        request: Request,
        route_kind: RouteKind,
        *,
        path: Optional[str] = None,
        procurement_id: Optional[str] = None,
    ) -> JSONResponse:
        proxy_request = ProxyRequest.from_items(
            path or request.url.path,
            request.query_params.multi_items(),
            route_kind=route_kind,
            procurement_id=procurement_id,
        )
        result = await self.orchestrator.handle(proxy_request)
        return self._render(result)

    @staticmethod
    def _render(result: ProxyResult) -> JSONResponse:
        return JSONResponse(
            status_code=result.status_code,
            content=result.response.to_body(),
            headers={"X-Cache": result.cache_status},
        )

    def _internal_error_body(self, exc: Exception) -> Dict[str, Any]:
        return ProxyResponse.fail("Internal server error").to_body()


def create_app(**kwargs):
    """Create FastAPI application."""
    service = ProxyService(**kwargs)
    return service.app


if __name__ == "__main__":
    service = ProxyService()
    service.run()
