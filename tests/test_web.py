"""
Tests for the HTTP API.
"""

import pytest
from fastapi.testclient import TestClient

from call_decision.core.config import ConfigManager
from call_decision.taxonomy.store import TaxonomyStore
from call_decision.web.app import create_app, limiter
from tests.factories import TranscriptFactory


@pytest.fixture
def client(isolated_env, engine, taxonomy_store):
    """API client over a rules-only engine."""
    limiter.reset()
    config = ConfigManager()
    config.engine.use_oracle = False
    app = create_app(config=config, engine=engine, taxonomy_store=taxonomy_store)
    with TestClient(app) as test_client:
        yield test_client
    limiter.reset()


class TestHealth:
    """Test health endpoints."""

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_detailed(self, client, taxonomy):
        components = client.get("/api/health/detailed").json()["components"]

        assert components["taxonomy"]["entries"] == len(taxonomy)
        assert components["oracle"]["status"] == "disabled"
        assert components["oracle"]["gemini"] is False


class TestClassify:
    """Test the classification endpoint."""

    def test_classify(self, client):
        response = client.post(
            "/api/calls/classify",
            json={"call_id": "conv-api", "transcript": TranscriptFactory.multi_incident_call()},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["callId"] == "conv-api"
        assert body["incidenciaPrincipal"]["motivo"] == "Cambio nº de cuenta"
        assert body["multipleGestiones"] is True
        assert body["totalGestiones"] == 1 + len(body["incidenciasSecundarias"])
        assert "senales" not in body

    def test_include_signals(self, client):
        response = client.post(
            "/api/calls/classify",
            json={"transcript": TranscriptFactory.claims_call(), "include_signals": True},
        )
        assert response.status_code == 200
        assert response.json()["senales"]

    def test_malformed_transcript(self, client):
        response = client.post(
            "/api/calls/classify",
            json={"transcript": [{"speaker": "narrador", "message": "Hola"}]},
        )

        assert response.status_code == 422
        assert "unrecognized speaker role" in response.json()["detail"]

    def test_missing_transcript(self, client):
        assert client.post("/api/calls/classify", json={"call_id": "x"}).status_code == 422


class TestTaxonomy:
    """Test taxonomy endpoints."""

    def test_list(self, client, taxonomy):
        body = client.get("/api/taxonomy").json()

        assert body["count"] == len(taxonomy)
        assert {"tipo", "motivo", "humanOnly", "tipoCreacion"} <= set(body["entries"][0])

    def test_filter_by_tipo(self, client):
        body = client.get("/api/taxonomy", params={"tipo": "Solicitud duplicado póliza"}).json()

        assert body["count"] == 3
        assert {e["motivo"] for e in body["entries"]} == {
            "Duplicado Tarjeta",
            "Email",
            "Información recibos declaración renta",
        }

    def test_reload(self, client, taxonomy):
        response = client.post("/api/taxonomy/reload")

        assert response.status_code == 200
        assert response.json()["entries"] == len(taxonomy)

    def test_reload_failure(self, isolated_env, engine, taxonomy):
        broken = isolated_env / "taxonomia_rota.yaml"
        broken.write_text("entries: [\n", encoding="utf-8")
        config = ConfigManager()
        config.engine.use_oracle = False
        app = create_app(config=config, engine=engine, taxonomy_store=TaxonomyStore(broken, taxonomy))

        limiter.reset()
        with TestClient(app) as broken_client:
            response = broken_client.post("/api/taxonomy/reload")

            assert response.status_code == 400
            assert response.json()["detail"] == "Taxonomy reload failed; current taxonomy kept"
            assert "taxonomia_rota" not in response.text
            assert broken_client.get("/api/taxonomy").json()["count"] == len(taxonomy)
        limiter.reset()

    def test_reload_ignores_body_path(self, client, isolated_env, taxonomy):
        other = isolated_env / "otra.yaml"
        other.write_text("entries: [\n", encoding="utf-8")

        response = client.post("/api/taxonomy/reload", json={"path": str(other)})

        assert response.status_code == 200
        assert response.json()["entries"] == len(taxonomy)
        assert response.json()["source"] != str(other)
