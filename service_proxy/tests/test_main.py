"""
Tests for the proxy HTTP surface.
"""

from datetime import date

import httpx
import pytest
from fastapi.testclient import TestClient

from shared.test_helpers import StubReply, TestDataFactory, UpstreamStub, make_test_config
from service_proxy.app.main import create_app


PUBLICATIONS = "/api/consulta/v1/contratacoes/publicacao"


class FakeClock:

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def upstream():
    return UpstreamStub()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client(upstream, clock):
    app = create_app(
        config=make_test_config(generic_timeout_seconds=12.0),
        transport=upstream.transport(),
        clock=clock,
        today=lambda: date(2024, 3, 10),
    )
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def service(client):
    return client.app.state.proxy_service


class TestServiceEndpoints:

    def test_health(self, client, upstream):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["message"]
        assert body["timestamp"].endswith("Z")
        assert body["version"] == "1.0.0"
        assert upstream.call_count == 0

    def test_root_lists_endpoints(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert "passthrough" in response.json()["endpoints"]

    def test_unmatched_path_lists_endpoints(self, client):
        response = client.get("/nope")

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert "vehicles" in body["endpoints"]

    def test_request_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_metrics_endpoint(self, client):
        client.get("/api/pncp/v1/modalidades")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "upstream_requests_total" in response.text
        assert "cache_misses_total" in response.text


class TestProxyScenarios:

    def test_passthrough_success(self, client, upstream):
        items = [{"numeroControlePNCP": "1"}]
        upstream.reply(PUBLICATIONS, StubReply(json_body={"data": items}))

        response = client.get(
            "/api/pncp/v1/contratacoes/publicacao?dataInicial=20240101&dataFinal=20240101&pagina=1"
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"] == {"data": items}
        assert body["metadata"]["source"] == "pncp.gov.br"
        assert "error" not in body
        assert str(upstream.requests[0].url) == (
            "https://pncp.gov.br/api/consulta/v1/contratacoes/publicacao"
            "?dataInicial=20240101&dataFinal=20240101&pagina=1"
        )

    def test_repeat_within_ttl_uses_cache(self, client, upstream, clock):
        upstream.reply(PUBLICATIONS, StubReply(json_body={"data": [{"id": 1}]}))
        url = "/api/pncp/v1/contratacoes/publicacao?dataInicial=20240101&dataFinal=20240101&pagina=1"

        first = client.get(url)
        clock.now += 60
        second = client.get(url)

        assert upstream.call_count == 1
        assert first.headers["X-Cache"] == "MISS"
        assert second.headers["X-Cache"] == "HIT"
        assert second.json()["data"] == first.json()["data"]

    def test_repeated_query_keys_reach_upstream(self, client, upstream):
        client.get("/api/pncp/v1/orgaos?uf=SP&uf=RJ")

        assert upstream.requests[0].url.params.get_list("uf") == ["SP", "RJ"]

    def test_encoded_question_mark_stays_in_path(self, client, upstream):
        response = client.get("/api/pncp/v1/contratacoes%3Fpagina=9?pagina=1")

        assert response.status_code == 200
        sent = upstream.requests[0].url
        assert sent.raw_path == b"/api/consulta/v1/contratacoes%3Fpagina=9?pagina=1"
        assert sent.params.multi_items() == [("pagina", "1")]

    def test_vehicle_listing_is_filtered(self, client, upstream):
        upstream.reply(PUBLICATIONS, StubReply(json_body={"data": [
            {"objetoCompra": "Aquisição de ônibus escolar"},
            {"objetoCompra": "Compra de papel A4"},
        ]}))

        response = client.get("/api/contratacoes/veiculos")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["data"] == [{"objetoCompra": "Aquisição de ônibus escolar"}]
        assert data["totalFiltrado"] == 1
        params = upstream.requests[0].url.params
        assert params["dataInicial"] == "20240303"
        assert params["dataFinal"] == "20240310"
        assert params["pagina"] == "1"
        assert params["tamanhoPagina"] == "50"

    def test_vehicle_listing_rejects_bad_dates(self, client, upstream):
        response = client.get("/api/contratacoes/veiculos?dataInicial=2024-01-01")

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert upstream.call_count == 0

    def test_procurements_route_is_plain_passthrough(self, client, upstream):
        upstream.reply(PUBLICATIONS, StubReply(json_body={"data": [{"objetoCompra": "Papel"}]}))

        response = client.get("/api/contratacoes?dataInicial=20240101&dataFinal=20240102")

        assert response.json()["data"] == {"data": [{"objetoCompra": "Papel"}]}
        assert dict(upstream.requests[0].url.params) == {"dataInicial": "20240101", "dataFinal": "20240102"}

    def test_documents_by_id(self, client, upstream):
        upstream.reply(
            "/api/consulta/v1/contratacoes/00394452000103-1-000123/2024/arquivos",
            StubReply(json_body=[
                TestDataFactory.document(1, "Edital completo"),
                TestDataFactory.document(2, "Planilha de custos"),
            ]),
        )

        response = client.get("/api/documentos/00394452000103-1-000123%2F2024")

        assert response.status_code == 200
        documents = response.json()["data"]
        assert [doc["category"] for doc in documents] == ["EDITAL", "ANEXO"]
        assert upstream.requests[0].url.raw_path == (
            b"/api/consulta/v1/contratacoes/00394452000103-1-000123%2F2024/arquivos"
        )

    def test_documents_without_id_is_invalid(self, client, upstream):
        response = client.get("/api/documentos")

        assert response.status_code == 400
        assert upstream.call_count == 0

    def test_upstream_503_is_preserved_and_not_cached(self, client, upstream):
        upstream.reply(PUBLICATIONS, StubReply(status_code=503, text="manutencao"))
        url = "/api/pncp/v1/contratacoes/publicacao?pagina=1"

        first = client.get(url)
        second = client.get(url)

        assert first.status_code == 503
        body = first.json()
        assert body["success"] is False
        assert body["metadata"]["upstreamStatus"] == 503
        assert body["metadata"]["upstreamBody"] == "manutencao"
        assert second.status_code == 503
        assert upstream.call_count == 2

    def test_timeout_is_specific(self, client, upstream):
        upstream.reply(PUBLICATIONS, StubReply(raise_error=httpx.ReadTimeout("timed out")))

        response = client.get("/api/pncp/v1/contratacoes/publicacao")

        assert response.status_code == 504
        body = response.json()
        assert body["metadata"]["errorType"] == "timeout"
        assert body["metadata"]["timeoutSeconds"] == 12.0

    def test_connection_failure_is_generic(self, client, upstream):
        upstream.reply(PUBLICATIONS, StubReply(raise_error=httpx.ConnectError("Connection refused")))

        response = client.get("/api/pncp/v1/contratacoes/publicacao")

        assert response.status_code == 502
        assert response.json()["metadata"]["errorType"] == "transport"

    @pytest.mark.parametrize("path", ["/api/pncp", "/api/pncp/"])
    def test_empty_passthrough_is_rejected(self, client, upstream, path):
        response = client.get(path)

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert upstream.call_count == 0


class TestCacheEndpoints:

    def test_stats_and_clear(self, client, upstream, service):
        client.get("/api/pncp/v1/modalidades")
        client.get("/api/pncp/v1/modalidades")

        stats = client.get("/api/v1/cache/stats").json()
        assert stats["entries"] == 1
        assert stats["hits"] == 1
        assert stats["ttl_seconds"] == 300.0

        cleared = client.delete("/api/v1/cache")
        assert cleared.json() == {"cleared": 1}
        assert len(service.cache) == 0

        client.get("/api/pncp/v1/modalidades")
        assert upstream.call_count == 2


class TestErrorHandlers:

    def test_access_layer_exception_is_rendered(self, upstream):
        from shared.errors import InvalidRequestError

        app = create_app(config=make_test_config(), transport=upstream.transport())

        @app.get("/boom")
        async def boom():
            raise InvalidRequestError("bad input", details={"field": "pagina"})

        with TestClient(app) as test_client:
            response = test_client.get("/boom", headers={"X-Request-ID": "req-9"})

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "INVALID_REQUEST"
        assert body["details"] == {"field": "pagina"}
        assert body["request_id"] == "req-9"

    def test_unhandled_exception_uses_envelope(self, upstream):
        app = create_app(config=make_test_config(), transport=upstream.transport())

        @app.get("/crash")
        async def crash():
            raise RuntimeError("kaboom")

        with TestClient(app, raise_server_exceptions=False) as test_client:
            response = test_client.get("/crash")

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Internal server error"}
