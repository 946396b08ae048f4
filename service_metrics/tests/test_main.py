"""
Unit tests for the metric server HTTP surface.
"""

import json

import pytest
from fastapi.testclient import TestClient

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_metrics.app.main import MetricsServer, create_app
from service_metrics.app.repositories import InMemoryRepository, PostgreSQLRepository
from shared.config import ServerConfig
from shared.signing import sign


def make_server(tmp_path, key: str = "", store_interval: str = "300s", repository=None) -> MetricsServer:
    config = ServerConfig(
        store_file=str(tmp_path / "metrics.json"),
        store_interval=store_interval,
        restore=False,
        key=key
    )
    return MetricsServer(config, repository=repository)


class TestMetricsServer:
    """Test cases for MetricsServer."""

    @pytest.fixture
    def server(self, tmp_path):
        return make_server(tmp_path)

    @pytest.fixture
    def client(self, server):
        """Test client with the server lifespan running."""
        with TestClient(server.app) as client:
            yield client

    def test_create_app(self, tmp_path):
        """create_app builds a FastAPI application."""
        app = create_app(ServerConfig(store_file=str(tmp_path / "m.json"), restore=False))
        assert app.title == "Metrics Service"

    def test_default_backend_is_inmemory(self, server):
        assert isinstance(server.repository, InMemoryRepository)

    def test_dsn_selects_postgres(self, tmp_path):
        config = ServerConfig(database_dsn="postgres://localhost/metrics", restore=False)
        assert isinstance(MetricsServer(config).repository, PostgreSQLRepository)

    def test_scheduler_started_with_positive_interval(self, server):
        with TestClient(server.app):
            assert server.scheduler is not None
            assert server.scheduler.running is True
        assert server.scheduler is None

    def test_no_scheduler_in_write_through_mode(self, tmp_path):
        server = make_server(tmp_path, store_interval="0")
        with TestClient(server.app):
            assert server.scheduler is None

    def test_update_plain_gauge(self, client):
        response = client.post("/update/gauge/Alloc/3459")
        assert response.status_code == 200

        response = client.get("/value/gauge/Alloc")
        assert response.status_code == 200
        assert response.text == "3459"

    def test_update_plain_counter_accumulates(self, client):
        client.post("/update/counter/PollCount/1")
        client.post("/update/counter/PollCount/1")

        assert client.get("/value/counter/PollCount").text == "2"

    @pytest.mark.parametrize("path", ["/update/gauge/Alloc/none", "/update/counter/PollCount/1.5"])
    def test_update_plain_bad_value(self, client, path):
        response = client.post(path)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_update_plain_unknown_kind(self, client):
        response = client.post("/update/unknown/metric/10")

        assert response.status_code == 501
        assert response.json()["code"] == "UNSUPPORTED_KIND"

    def test_update_json(self, client):
        response = client.post("/update", json={"id": "Alloc", "type": "gauge", "value": 12.5})
        assert response.status_code == 200
        assert response.json() == {}

        response = client.post("/value", json={"id": "Alloc", "type": "gauge"})
        assert response.status_code == 200
        assert response.json() == {"id": "Alloc", "type": "gauge", "value": 12.5}

    def test_update_json_trailing_slash(self, client):
        response = client.post("/update/", json={"id": "PollCount", "type": "counter", "delta": 3})
        assert response.status_code == 200

        response = client.post("/value/", json={"id": "PollCount", "type": "counter"})
        assert response.json() == {"id": "PollCount", "type": "counter", "delta": 3}

    def test_update_json_non_numeric_value(self, client):
        response = client.post("/update", content=b'{"id":"Alloc","type":"gauge","value":"none"}')

        assert response.status_code == 400

    @pytest.mark.parametrize("content", [
        b'{"id":"Alloc","type":"gauge","value":"10"}',
        b'{"id":"P1","type":"counter","delta":true}',
        b'{"id":"P2","type":"counter","delta":1180591620717411303424}',
    ])
    def test_update_json_ill_typed_value(self, client, content):
        """Values outside the wire types are rejected before storage."""
        response = client.post("/update", content=content)

        assert response.status_code == 400
        assert client.get("/").text.count(" = ") == 0

    def test_update_plain_counter_outside_int64(self, client):
        response = client.post("/update/counter/P4/99999999999999999999999")

        assert response.status_code == 400
        assert client.get("/value/counter/P4").status_code == 404

    @pytest.mark.parametrize("body, status", [
        ({"id": "", "type": "gauge", "value": 1.0}, 400),
        ({"id": "   ", "type": "gauge", "value": 1.0}, 400),
        ({"id": "Alloc", "type": "gauge"}, 400),
        ({"id": "PollCount", "type": "counter", "value": 1.0}, 400),
        ({"id": "Alloc", "type": "histogram", "value": 1.0}, 501),
    ])
    def test_update_json_rejected(self, client, body, status):
        response = client.post("/update", json=body)

        assert response.status_code == status
        assert client.get("/").text.count(" = ") == 0

    def test_update_json_malformed(self, client):
        response = client.post("/update", content=b"{broken")

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_update_batch(self, client):
        response = client.post("/updates", json=[
            {"id": "PollCount", "type": "counter", "delta": 1},
            {"id": "RandomValue", "type": "gauge", "value": 321.435},
            {"id": "PollCount", "type": "counter", "delta": 4},
        ])

        assert response.status_code == 200
        assert client.get("/value/counter/PollCount").text == "5"
        assert client.get("/value/gauge/RandomValue").text == "321.435"

    @pytest.mark.parametrize("bad_item, status", [
        ({"id": "Broken", "type": "gauge"}, 400),
        ({"id": "", "type": "gauge", "value": 1.0}, 400),
        ({"id": "Broken", "type": "histogram", "value": 1.0}, 501),
    ])
    def test_update_batch_is_atomic(self, client, bad_item, status):
        client.post("/update/counter/PollCount/1")

        response = client.post("/updates/", json=[
            {"id": "PollCount", "type": "counter", "delta": 10},
            {"id": "Alloc", "type": "gauge", "value": 1.0},
            bad_item,
        ])

        assert response.status_code == status
        assert client.get("/value/counter/PollCount").text == "1"
        assert client.get("/value/gauge/Alloc").status_code == 404

    def test_update_batch_not_an_array(self, client):
        response = client.post("/updates", json={"id": "Alloc", "type": "gauge", "value": 1.0})

        assert response.status_code == 400

    def test_value_unknown_metric(self, client):
        assert client.post("/value", json={"id": "missing", "type": "gauge"}).status_code == 404
        assert client.get("/value/gauge/missing").status_code == 404

    def test_value_kind_mismatch(self, client):
        client.post("/update/gauge/Alloc/1")

        assert client.get("/value/counter/Alloc").status_code == 404
        assert client.post("/value", json={"id": "Alloc", "type": "counter"}).status_code == 404

    def test_kind_change_overwrites_tag(self, client):
        """The stored kind follows the latest update for the same name."""
        client.post("/update/counter/Mixed/5")
        client.post("/update/gauge/Mixed/2.5")

        assert client.get("/value/gauge/Mixed").text == "2.5"
        assert client.get("/value/counter/Mixed").status_code == 404

    def test_index_lists_metrics_sorted(self, client):
        client.post("/update/gauge/Zeta/1.5")
        client.post("/update/counter/Alpha/3")

        response = client.get("/")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert response.text.index("Alpha = 3") < response.text.index("Zeta = 1.5")

    def test_ping(self, client):
        response = client.get("/ping")

        assert response.status_code == 200

    def test_ping_without_database_connection(self, tmp_path):
        """An unconnected SQL backend makes ping fail with 500."""
        repository = PostgreSQLRepository("postgres://unreachable/metrics")
        client = TestClient(make_server(tmp_path, repository=repository).app)

        response = client.get("/ping")

        assert response.status_code == 500
        assert response.json()["message"] == "no database connection"

    def test_storage_failure_is_500(self, tmp_path):
        """Write-through flush failures surface verbatim as 500."""
        config = ServerConfig(
            store_file=str(tmp_path / "no-such-dir" / "metrics.json"),
            store_interval="0",
            restore=False
        )
        with TestClient(MetricsServer(config).app) as client:
            response = client.post("/update/gauge/Alloc/1")

            assert response.status_code == 500
            body = response.json()
            assert body["code"] == "STORAGE_ERROR"
            assert "save snapshot" in body["message"]
            # The in-memory change is not rolled back
            assert client.get("/value/gauge/Alloc").text == "1"

    def test_write_through_persists(self, tmp_path):
        server = make_server(tmp_path, store_interval="0")
        with TestClient(server.app) as client:
            client.post("/update/counter/PollCount/2")

        with open(tmp_path / "metrics.json") as f:
            assert json.load(f) == {"PollCount": {"delta": 2, "type": "counter"}}

    def test_restore_on_start(self, tmp_path):
        store_file = tmp_path / "metrics.json"
        store_file.write_text(json.dumps({"Alloc": {"value": 7.5, "type": "gauge"}}))
        config = ServerConfig(store_file=str(store_file), restore=True)

        with TestClient(MetricsServer(config).app) as client:
            assert client.get("/value/gauge/Alloc").text == "7.5"

    def test_restore_failure_is_not_fatal(self, tmp_path):
        config = ServerConfig(store_file=str(tmp_path / "absent.json"), restore=True)

        with TestClient(MetricsServer(config).app) as client:
            assert client.get("/ping").status_code == 200
            assert client.get("/value/gauge/Alloc").status_code == 404

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "metrics"
        assert data["dependencies"] == {"repository": "ok"}

    def test_prometheus_metrics(self, client):
        client.post("/update/gauge/Alloc/1")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text

    def test_request_id_propagated(self, client):
        response = client.post("/update/unknown/metric/1", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
        assert response.json()["request_id"] == "req-123"


class TestSignedMetricsServer:
    """Test cases for a server configured with a signing key."""

    @pytest.fixture
    def client(self, tmp_path):
        with TestClient(make_server(tmp_path, key="secret").app) as client:
            yield client

    def test_signed_update_accepted(self, client):
        body = {"id": "Alloc", "type": "gauge", "value": 1.5,
                "hash": sign("Alloc", "gauge", 1.5, "secret")}

        assert client.post("/update", json=body).status_code == 200

    def test_unsigned_update_rejected(self, client):
        response = client.post("/update", json={"id": "Alloc", "type": "gauge", "value": 1.5})

        assert response.status_code == 400
        assert response.json()["code"] == "AUTHENTICATION_ERROR"

    def test_bad_signature_rejected(self, client):
        body = {"id": "Alloc", "type": "gauge", "value": 2.5,
                "hash": sign("Alloc", "gauge", 1.5, "secret")}

        response = client.post("/update", json=body)

        assert response.status_code == 400
        assert response.json()["code"] == "AUTHENTICATION_ERROR"
        assert client.get("/value/gauge/Alloc").status_code == 404

    def test_non_hex_signature_rejected(self, client):
        body = {"id": "Alloc", "type": "gauge", "value": 1.5, "hash": "zz-not-hex"}

        assert client.post("/update", json=body).json()["code"] == "AUTHENTICATION_ERROR"

    def test_batch_with_one_bad_signature_rejected(self, client):
        response = client.post("/updates", json=[
            {"id": "PollCount", "type": "counter", "delta": 1,
             "hash": sign("PollCount", "counter", 1, "secret")},
            {"id": "Alloc", "type": "gauge", "value": 1.0, "hash": "00" * 32},
        ])

        assert response.status_code == 400
        assert client.get("/value/counter/PollCount").status_code == 404

    def test_value_response_signed(self, client):
        client.post("/update/counter/PollCount/4")

        data = client.post("/value", json={"id": "PollCount", "type": "counter"}).json()

        assert data["delta"] == 4
        assert data["hash"] == sign("PollCount", "counter", 4, "secret")

    def test_plain_updates_are_not_signed(self, client):
        assert client.post("/update/gauge/Alloc/1").status_code == 200
