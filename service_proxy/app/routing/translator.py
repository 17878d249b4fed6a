"""
Inbound path to upstream URL translation.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional, Tuple
from urllib.parse import quote, urlencode

from shared.errors import InvalidRequestError

from service_proxy.app.domain.models import ProxyRequest, QueryPairs, RouteKind, UpstreamTarget


GENERIC_MOUNT = "/api/pncp"
PROCUREMENTS_MOUNT = "/api/contratacoes"
VEHICLES_MOUNT = "/api/contratacoes/veiculos"
DOCUMENTS_MOUNT = "/api/documentos"

PUBLICATIONS_PATH = "/v1/contratacoes/publicacao"
DOCUMENTS_PATH = "/v1/contratacoes/{procurement_id}/arquivos"

DATE_FORMAT = "%Y%m%d"
DEFAULT_LOOKBACK_DAYS = 7
DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 50

PATH_SAFE = "/:@!$&'()*+,;="

_DATE_PATTERN = re.compile(r"^\d{8}$")


def encode_path_segment(value: str) -> str:
    """Percent-encode a single path segment, including ``/``."""
    return quote(value, safe="")


def encode_path(value: str) -> str:
    """Re-encode a decoded path so ``?``, ``#`` and ``%`` stay inside it."""
    return quote(value, safe=PATH_SAFE)


def canonical_query(query: QueryPairs) -> List[Tuple[str, str]]:
    """Sort pairs by key; values of a repeated key keep their order."""
    return sorted(query, key=lambda pair: pair[0])


def make_cache_key(route_kind: RouteKind, upstream_path: str, query: QueryPairs) -> str:
    """Derive the cache key for an upstream target.

    The route kind is part of the key because routes sharing an upstream path
    cache differently shaped payloads.
    """
    path = "/" + upstream_path.strip("/")
    encoded = urlencode(canonical_query(query))
    return f"{route_kind.value}:{path}?{encoded}"


class UrlTranslator:
    """Maps proxy requests onto the upstream registry URL space."""

    def __init__(self, base_url: str, *, today: Optional[Callable[[], date]] = None):
        self.base_url = base_url.rstrip("/")
        self._today = today or date.today

    def translate(self, request: ProxyRequest) -> UpstreamTarget:
        """Resolve the upstream target for ``request``."""
        procurement_id = None
        if request.route_kind is RouteKind.GENERIC:
            path = self._strip_mount(request.path, GENERIC_MOUNT)
            if not path.strip("/"):
                raise InvalidRequestError(
                    "Nothing to forward: upstream path is empty",
                    details={"path": request.path},
                )
            if not path.startswith("/"):
                path = "/" + path
            path = encode_path(path)
            query = list(request.query)
        elif request.route_kind is RouteKind.PROCUREMENTS:
            path = PUBLICATIONS_PATH
            query = list(request.query)
        elif request.route_kind is RouteKind.VEHICLES:
            path = PUBLICATIONS_PATH
            query = self._with_listing_defaults(request.query)
        elif request.route_kind is RouteKind.DOCUMENTS:
            procurement_id = request.procurement_id
            if procurement_id is None:
                procurement_id = self._strip_mount(request.path, DOCUMENTS_MOUNT).strip("/")
            if not procurement_id:
                raise InvalidRequestError("Procurement id is required", details={"path": request.path})
            path = DOCUMENTS_PATH.format(procurement_id=encode_path_segment(procurement_id))
            query = list(request.query)
        else:  # pragma: no cover - exhaustive over RouteKind
            raise InvalidRequestError(f"Unsupported route kind: {request.route_kind}")

        return UpstreamTarget(
            url=self.build_url(path, query),
            path=path,
            query=query,
            procurement_id=procurement_id,
        )

    def build_url(self, path: str, query: QueryPairs) -> str:
        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{urlencode(query)}"
        return url

    def document_download_url(self, procurement_id: str, document_id: object) -> str:
        path = DOCUMENTS_PATH.format(procurement_id=encode_path_segment(procurement_id))
        return f"{self.base_url}{path}/{encode_path_segment(str(document_id))}"

    @staticmethod
    def _strip_mount(path: str, mount: str) -> str:
        if path == mount:
            return ""
        if path.startswith(mount + "/"):
            return path[len(mount):]
        return path

    def _with_listing_defaults(self, query: QueryPairs) -> QueryPairs:
        """Fill in the date window and paging for listing routes."""
        present = {key for key, _ in query}
        result = list(query)
        today = self._today()

        defaults = [
            ("dataInicial", (today - timedelta(days=DEFAULT_LOOKBACK_DAYS)).strftime(DATE_FORMAT)),
            ("dataFinal", today.strftime(DATE_FORMAT)),
            ("pagina", str(DEFAULT_PAGE)),
            ("tamanhoPagina", str(DEFAULT_PAGE_SIZE)),
        ]
        for key, value in defaults:
            if key not in present:
                result.append((key, value))

        values = dict(result)
        start = self._parse_date(values["dataInicial"], "dataInicial")
        end = self._parse_date(values["dataFinal"], "dataFinal")
        if start > end:
            raise InvalidRequestError(
                "dataInicial must not be after dataFinal",
                details={"dataInicial": values["dataInicial"], "dataFinal": values["dataFinal"]},
            )
        for key in ("pagina", "tamanhoPagina"):
            self._parse_positive_int(values[key], key)
        return result

    @staticmethod
    def _parse_date(value: str, field: str) -> date:
        if not _DATE_PATTERN.match(value):
            raise InvalidRequestError(f"{field} must use the YYYYMMDD format", details={field: value})
        try:
            return datetime.strptime(value, DATE_FORMAT).date()
        except ValueError as exc:
            raise InvalidRequestError(f"{field} is not a valid date", details={field: value}) from exc

    @staticmethod
    def _parse_positive_int(value: str, field: str) -> int:
        try:
            parsed = int(value)
        except ValueError as exc:
            raise InvalidRequestError(f"{field} must be an integer", details={field: value}) from exc
        if parsed < 1:
            raise InvalidRequestError(f"{field} must be positive", details={field: value})
        return parsed
