"""
Unit tests for URL translation and cache key derivation.
"""

import itertools
from datetime import date
from urllib.parse import parse_qsl, urlsplit

import pytest

from shared.errors import InvalidRequestError
from service_proxy.app.domain.models import ProxyRequest, RouteKind
from service_proxy.app.routing.translator import UrlTranslator, make_cache_key


BASE = "https://pncp.gov.br/api/consulta"


@pytest.fixture
def translator():
    return UrlTranslator(BASE + "/", today=lambda: date(2024, 3, 10))


def _query(url):
    return parse_qsl(urlsplit(url).query, keep_blank_values=True)


class TestGenericRoute:

    def test_remainder_is_appended_to_base(self, translator):
        request = ProxyRequest(
            path="/api/pncp/v1/contratacoes/publicacao",
            query=[("dataInicial", "20240101"), ("dataFinal", "20240101"), ("pagina", "1")],
        )

        target = translator.translate(request)

        assert target.path == "/v1/contratacoes/publicacao"
        assert target.url == (
            "https://pncp.gov.br/api/consulta/v1/contratacoes/publicacao"
            "?dataInicial=20240101&dataFinal=20240101&pagina=1"
        )

    def test_repeated_keys_are_forwarded_individually(self, translator):
        request = ProxyRequest(
            path="/api/pncp/v1/orgaos",
            query=[("uf", "SP"), ("uf", "RJ"), ("pagina", "2")],
        )

        target = translator.translate(request)

        assert _query(target.url) == [("uf", "SP"), ("uf", "RJ"), ("pagina", "2")]

    def test_no_query_means_no_question_mark(self, translator):
        target = translator.translate(ProxyRequest(path="/api/pncp/v1/modalidades"))
        assert target.url == f"{BASE}/v1/modalidades"

    def test_reserved_characters_stay_in_the_path(self, translator):
        request = ProxyRequest(path="/api/pncp/v1/x?y#z", query=[("pagina", "1")])

        target = translator.translate(request)

        assert target.path == "/v1/x%3Fy%23z"
        assert target.url == f"{BASE}/v1/x%3Fy%23z?pagina=1"
        assert _query(target.url) == [("pagina", "1")]

    def test_encoded_delimiter_does_not_collide_with_query(self, translator):
        folded = translator.translate(ProxyRequest(path="/api/pncp/v1/contratacoes?pagina=9"))
        real = translator.translate(ProxyRequest(path="/api/pncp/v1/contratacoes", query=[("pagina", "9")]))

        assert folded.url != real.url
        assert make_cache_key(RouteKind.GENERIC, folded.path, folded.query) != (
            make_cache_key(RouteKind.GENERIC, real.path, real.query)
        )

    def test_percent_and_sub_delimiters(self, translator):
        target = translator.translate(ProxyRequest(path="/api/pncp/v1/orgaos/12:34,5/100%"))
        assert target.path == "/v1/orgaos/12:34,5/100%25"

    @pytest.mark.parametrize("path", ["/api/pncp", "/api/pncp/", "/api/pncp//"])
    def test_empty_remainder_is_rejected(self, translator, path):
        with pytest.raises(InvalidRequestError) as exc_info:
            translator.translate(ProxyRequest(path=path))
        assert exc_info.value.code == "INVALID_REQUEST"


class TestVehicleRoute:

    def test_defaults_fill_date_window_and_paging(self, translator):
        target = translator.translate(ProxyRequest(path="/api/contratacoes/veiculos", route_kind=RouteKind.VEHICLES))

        assert target.path == "/v1/contratacoes/publicacao"
        assert dict(_query(target.url)) == {
            "dataInicial": "20240303",
            "dataFinal": "20240310",
            "pagina": "1",
            "tamanhoPagina": "50",
        }

    def test_supplied_values_win_over_defaults(self, translator):
        request = ProxyRequest(
            path="/api/contratacoes/veiculos",
            route_kind=RouteKind.VEHICLES,
            query=[("dataInicial", "20240101"), ("pagina", "3"), ("codigoModalidadeContratacao", "6")],
        )

        params = dict(_query(translator.translate(request).url))

        assert params["dataInicial"] == "20240101"
        assert params["dataFinal"] == "20240310"
        assert params["pagina"] == "3"
        assert params["tamanhoPagina"] == "50"
        assert params["codigoModalidadeContratacao"] == "6"

    @pytest.mark.parametrize("query", [
        [("dataInicial", "2024-01-01")],
        [("dataFinal", "20241341")],
        [("dataInicial", "20240305"), ("dataFinal", "20240301")],
        [("pagina", "0")],
        [("tamanhoPagina", "abc")],
    ])
    def test_invalid_listing_parameters_are_rejected(self, translator, query):
        request = ProxyRequest(path="/api/contratacoes/veiculos", route_kind=RouteKind.VEHICLES, query=query)
        with pytest.raises(InvalidRequestError):
            translator.translate(request)


class TestProcurementsRoute:

    def test_query_forwarded_without_defaults(self, translator):
        request = ProxyRequest(
            path="/api/contratacoes",
            route_kind=RouteKind.PROCUREMENTS,
            query=[("dataInicial", "20240101")],
        )

        target = translator.translate(request)

        assert target.url == f"{BASE}/v1/contratacoes/publicacao?dataInicial=20240101"


class TestDocumentsRoute:

    def test_id_is_encoded_as_single_segment(self, translator):
        request = ProxyRequest(
            path="/api/documentos/00394452000103-1-000123/2024",
            route_kind=RouteKind.DOCUMENTS,
            procurement_id="00394452000103-1-000123/2024",
        )

        target = translator.translate(request)

        assert target.path == "/v1/contratacoes/00394452000103-1-000123%2F2024/arquivos"
        assert target.url == f"{BASE}/v1/contratacoes/00394452000103-1-000123%2F2024/arquivos"

    def test_id_taken_from_path_when_not_given(self, translator):
        request = ProxyRequest(path="/api/documentos/abc def", route_kind=RouteKind.DOCUMENTS)
        assert translator.translate(request).path == "/v1/contratacoes/abc%20def/arquivos"

    def test_resolved_id_is_returned(self, translator):
        derived = translator.translate(ProxyRequest(path="/api/documentos/123/2024", route_kind=RouteKind.DOCUMENTS))
        given = translator.translate(ProxyRequest(
            path="/api/documentos/ignored", route_kind=RouteKind.DOCUMENTS, procurement_id="987",
        ))

        assert derived.procurement_id == "123/2024"
        assert given.procurement_id == "987"

    def test_other_routes_have_no_procurement_id(self, translator):
        assert translator.translate(ProxyRequest(path="/api/pncp/v1/x")).procurement_id is None

    def test_empty_id_is_rejected(self, translator):
        request = ProxyRequest(path="/api/documentos", route_kind=RouteKind.DOCUMENTS, procurement_id="")
        with pytest.raises(InvalidRequestError):
            translator.translate(request)

    def test_download_url(self, translator):
        url = translator.document_download_url("123/2024", 7)
        assert url == f"{BASE}/v1/contratacoes/123%2F2024/arquivos/7"


class TestCacheKey:

    def test_permutations_share_a_key(self):
        pairs = [("dataInicial", "20240101"), ("dataFinal", "20240102"), ("pagina", "1"), ("uf", "SP")]
        keys = {
            make_cache_key(RouteKind.GENERIC, "/v1/contratacoes/publicacao", list(permutation))
            for permutation in itertools.permutations(pairs)
        }
        assert len(keys) == 1

    def test_values_are_part_of_the_key(self):
        first = make_cache_key(RouteKind.GENERIC, "/v1/x", [("pagina", "1")])
        second = make_cache_key(RouteKind.GENERIC, "/v1/x", [("pagina", "2")])
        assert first != second

    def test_route_kind_separates_keys(self):
        query = [("pagina", "1")]
        generic = make_cache_key(RouteKind.GENERIC, "/v1/contratacoes/publicacao", query)
        vehicles = make_cache_key(RouteKind.VEHICLES, "/v1/contratacoes/publicacao", query)
        assert generic != vehicles

    def test_path_slashes_are_normalized(self):
        assert make_cache_key(RouteKind.GENERIC, "/v1/x/", []) == make_cache_key(RouteKind.GENERIC, "v1/x", [])
