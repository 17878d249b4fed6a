"""
Post-processing of upstream payloads per route kind.
"""

from __future__ import annotations

import copy
import unicodedata
from typing import Any, Dict, Iterable, List, Optional, Tuple

from service_proxy.app.domain.models import RouteKind


ITEMS_FIELD = "data"
DESCRIPTION_FIELD = "objetoCompra"
VEHICLE_FILTER_LABEL = "veiculos"

VEHICLE_KEYWORDS: Tuple[str, ...] = (
    "ônibus",
    "van",
    "ambulância",
    "caminhonete",
    "picape",
    "pick-up",
    "utilitário",
    "frota",
    "automóvel",
    "caminhão",
    "veículo",
    "transporte",
    "locação de veículo",
)

CATEGORY_NOTICE = "EDITAL"
CATEGORY_ATTACHMENT = "ANEXO"


def normalize_text(value: str) -> str:
    """Casefold and strip diacritics so "Ônibus" and "onibus" compare equal."""
    decomposed = unicodedata.normalize("NFKD", value.casefold())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


_NORMALIZED_KEYWORDS = tuple(normalize_text(keyword) for keyword in VEHICLE_KEYWORDS)


def matches_keywords(text: Any, keywords: Iterable[str] = _NORMALIZED_KEYWORDS) -> bool:
    """True when ``text`` contains any keyword; non-strings never match."""
    if not isinstance(text, str) or not text:
        return False
    haystack = normalize_text(text)
    return any(keyword in haystack for keyword in keywords)


def classify_document(name: Any) -> str:
    if isinstance(name, str) and "edital" in name.lower():
        return CATEGORY_NOTICE
    return CATEGORY_ATTACHMENT


def _first_present(record: Dict[str, Any], *fields: str) -> Any:
    for field in fields:
        value = record.get(field)
        if value is not None:
            return value
    return None


class ResponseTransformer:
    """Pure payload shaping; inputs are never mutated."""

    def __init__(self, download_url_builder=None):
        self._download_url_builder = download_url_builder

    def transform(
        self,
        raw: Any,
        route_kind: RouteKind,
        procurement_id: Optional[str] = None,
    ) -> Tuple[Any, Optional[int]]:
        """Return the shaped payload and the number of items it carries."""
        if route_kind is RouteKind.VEHICLES:
            return self.filter_vehicles(raw)
        if route_kind is RouteKind.DOCUMENTS:
            if procurement_id is None:
                raise ValueError("procurement_id is required for document payloads")
            documents = self.project_documents(raw, procurement_id)
            return documents, len(documents)
        return raw, count_items(raw)

    def filter_vehicles(self, raw: Any) -> Tuple[Any, int]:
        """Keep listing items whose description mentions a vehicle keyword."""
        if isinstance(raw, list):
            items = raw
            envelope: Dict[str, Any] = {}
        elif isinstance(raw, dict):
            items = raw.get(ITEMS_FIELD) or []
            envelope = {key: copy.deepcopy(value) for key, value in raw.items() if key != ITEMS_FIELD}
        else:
            items = []
            envelope = {}

        if not isinstance(items, list):
            items = []

        matched = [
            copy.deepcopy(item)
            for item in items
            if isinstance(item, dict) and matches_keywords(item.get(DESCRIPTION_FIELD))
        ]

        envelope[ITEMS_FIELD] = matched
        envelope["totalFiltrado"] = len(matched)
        envelope["filtroAplicado"] = VEHICLE_FILTER_LABEL
        return envelope, len(matched)

    def project_documents(self, raw: Any, procurement_id: str) -> List[Dict[str, Any]]:
        """Project raw document records into the public document shape."""
        if isinstance(raw, dict):
            records = raw.get(ITEMS_FIELD) or []
        else:
            records = raw
        if not isinstance(records, list):
            return []

        projected = []
        for record in records:
            if not isinstance(record, dict):
                continue
            document_id = _first_present(record, "sequencialDocumento", "id")
            name = _first_present(record, "titulo", "nome", "name")
            projected.append({
                "id": document_id,
                "name": name,
                "category": classify_document(name),
                "downloadUrl": self._download_url(procurement_id, document_id, record),
                "publicationDate": _first_present(record, "dataPublicacaoPncp", "dataPublicacao"),
                "size": _first_present(record, "tamanhoArquivo", "tamanho"),
            })
        return projected

    def _download_url(self, procurement_id: str, document_id: Any, record: Dict[str, Any]) -> Optional[str]:
        if document_id is None:
            return record.get("url")
        if self._download_url_builder is None:
            return record.get("url")
        return self._download_url_builder(procurement_id, document_id)


def count_items(payload: Any) -> Optional[int]:
    """Best-effort item count for passthrough payloads."""
    if isinstance(payload, list):
        return len(payload)
    if isinstance(payload, dict) and isinstance(payload.get(ITEMS_FIELD), list):
        return len(payload[ITEMS_FIELD])
    return None
