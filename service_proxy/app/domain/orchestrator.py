"""
Per-request proxy pipeline: translate, consult cache, fetch, transform, respond.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TYPE_CHECKING

from shared.errors import InvalidRequestError
from shared.logging import get_logger, set_route_kind
from shared.retry import RetryConfig, call_with_retry

from service_proxy.app.adapters.upstream_client import (
    Success,
    Timeout,
    TransportError,
    UpstreamClient,
    UpstreamError,
    UpstreamResult,
)
from service_proxy.app.caching.cache_store import FROM_CACHE, CacheStore
from service_proxy.app.domain.models import (
    ProxyRequest,
    ProxyResponse,
    ProxyResult,
    ResponseMetadata,
    RouteKind,
)
from service_proxy.app.domain.transformer import ResponseTransformer
from service_proxy.app.routing.translator import UrlTranslator, make_cache_key

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class UpstreamFailure(Exception):
    """Carries a failed ``UpstreamResult`` out of the single-flight producer."""

    def __init__(self, result: UpstreamResult):
        self.result = result
        super().__init__(result.outcome)


class RetryableUpstreamFailure(UpstreamFailure):
    """Timeouts and transport failures; the only outcomes worth retrying."""


TIMEOUT_MESSAGE = "Upstream request timed out; try again later"
TRANSPORT_MESSAGE = "Failed to connect to the upstream service"
UPSTREAM_ERROR_MESSAGE = "Upstream service returned HTTP {status}"


class ProxyOrchestrator:
    """
    Runs one request through the proxy pipeline and always yields one envelope.

    The cache is written only from inside the single-flight producer and only
    after both the fetch and the transform succeeded.
    """

    def __init__(
        self,
        translator: UrlTranslator,
        cache: CacheStore,
        client: UpstreamClient,
        transformer: ResponseTransformer,
        *,
        timeouts: Optional[Dict[RouteKind, float]] = None,
        retry_config: Optional[RetryConfig] = None,
        source: str = "pncp.gov.br",
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.translator = translator
        self.cache = cache
        self.client = client
        self.transformer = transformer
        self.timeouts = dict(timeouts or {})
        self.retry_config = retry_config or RetryConfig(max_attempts=1)
        self.source = source
        self.metrics = metrics
        self.logger = get_logger("proxy.orchestrator")

    async def handle(self, request: ProxyRequest) -> ProxyResult:
        """Serve ``request`` and return the envelope with its HTTP status."""
        set_route_kind(request.route_kind.value)

        try:
            target = self.translator.translate(request)
        except InvalidRequestError as exc:
            self.logger.info("Rejected invalid request", path=request.path, error=exc.message)
            return ProxyResult(
                status_code=exc.status_code,
                response=ProxyResponse.fail(exc.message, self._metadata()),
            )

        key = make_cache_key(request.route_kind, target.path, target.query)

        entry = await self.cache.get(key)
        if entry is not None:
            self._count("cache_hits_total", route_kind=request.route_kind.value)
            self.logger.debug("Cache hit", key=key)
            return ProxyResult(
                status_code=200,
                response=ProxyResponse.ok(entry.payload, self._metadata(cached=True)),
                cache_status="HIT",
            )

        self._count("cache_misses_total", route_kind=request.route_kind.value)

        async def produce() -> Any:
            result = await call_with_retry(
                lambda: self._fetch_once(request.route_kind, target.url),
                exceptions=(RetryableUpstreamFailure,),
                config=self.retry_config,
                name="upstream_fetch",
            )
            payload, item_count = self.transformer.transform(
                result.payload,
                request.route_kind,
                procurement_id=target.procurement_id,
            )
            self.logger.info(
                "Upstream payload cached",
                key=key,
                item_count=item_count,
            )
            return payload

        try:
            payload, origin = await self.cache.resolve(key, produce)
        except UpstreamFailure as failure:
            return self._failure_result(failure.result, target.url)
        finally:
            self._record_cache_size()

        return ProxyResult(
            status_code=200,
            response=ProxyResponse.ok(payload, self._metadata(cached=origin == FROM_CACHE)),
            cache_status=origin,
        )

    async def _fetch_once(self, route_kind: RouteKind, url: str) -> Success:
        timeout = self.timeouts.get(route_kind)
        start = time.perf_counter()
        result = await self.client.fetch(url, timeout=timeout)
        duration = time.perf_counter() - start

        if self.metrics:
            self.metrics.increment_counter(
                "upstream_requests_total",
                route_kind=route_kind.value,
                outcome=result.outcome,
            )
            self.metrics.observe_histogram(
                "upstream_request_duration_seconds",
                duration,
                route_kind=route_kind.value,
            )

        if isinstance(result, Success):
            return result
        if isinstance(result, (Timeout, TransportError)):
            raise RetryableUpstreamFailure(result)
        raise UpstreamFailure(result)

    def _failure_result(self, result: UpstreamResult, url: str) -> ProxyResult:
        if isinstance(result, UpstreamError):
            self.logger.warning("Forwarding upstream error", url=url, status_code=result.status_code)
            return ProxyResult(
                status_code=result.status_code,
                response=ProxyResponse.fail(
                    UPSTREAM_ERROR_MESSAGE.format(status=result.status_code),
                    self._metadata(upstreamStatus=result.status_code, upstreamBody=result.body),
                ),
            )
        if isinstance(result, Timeout):
            self.logger.warning("Upstream timeout", url=url, timeout=result.seconds)
            return ProxyResult(
                status_code=504,
                response=ProxyResponse.fail(
                    TIMEOUT_MESSAGE,
                    self._metadata(errorType="timeout", timeoutSeconds=result.seconds),
                ),
            )
        self.logger.error("Upstream transport error", url=url, reason=result.reason)
        return ProxyResult(
            status_code=502,
            response=ProxyResponse.fail(
                TRANSPORT_MESSAGE,
                self._metadata(errorType="transport", reason=result.reason),
            ),
        )

    def _metadata(self, **extra: Any) -> ResponseMetadata:
        timestamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        return ResponseMetadata(timestamp=timestamp, source=self.source, **extra)

    def _count(self, metric_name: str, **labels: str) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric_name, **labels)

    def _record_cache_size(self) -> None:
        if self.metrics:
            self.metrics.set_gauge("cache_entries", len(self.cache))
