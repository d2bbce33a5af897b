"""HTTP tests for the FastAPI application."""

import pytest
from fastapi.testclient import TestClient

from callmap.models import Symbol


def _symbols():
    return [
        Symbol("pkg.Main", "pkg/main.go", 5, ["pkg.Helper"]),
        Symbol("pkg.Helper", "pkg/helper.go", 3, []),
    ]


@pytest.fixture
def cache(snapshot_factory):
    from callmap.server.snapshot import SnapshotCache

    return SnapshotCache(lambda: snapshot_factory(_symbols()))


@pytest.fixture
def client(cache):
    from callmap.server.app import create_app

    cache.reload()
    return TestClient(create_app(cache))


class TestEndpoints:
    def test_relations(self, client):
        response = client.get("/api/relations", params={"page": 1, "pageSize": 5})
        assert response.status_code == 200
        body = response.json()
        assert body["pageSize"] == 5
        assert [r["name"] for r in body["roots"]] == ["pkg.Main"]
        assert body["roots"][0]["called"] == [
            {"name": "pkg.Helper", "line": 3, "filePath": "pkg/helper.go"}
        ]
        assert {r["name"] for r in body["data"]} == {"pkg.Main", "pkg.Helper"}

    def test_malformed_parameters_use_defaults(self, client):
        body = client.get("/api/relations?page=abc&pageSize=-1").json()
        assert body["page"] == 1
        assert body["pageSize"] == 10

    def test_include_internals_flag(self, client):
        body = client.get("/api/relations?includeInternals=true").json()
        assert body["includeInternals"] is True

    def test_search(self, client):
        body = client.get("/api/search", params={"q": "helper"}).json()
        assert body["query"] == "helper"
        assert [m["name"] for m in body["matchingFunctions"]] == ["pkg.Helper"]

    def test_search_without_query_is_400(self, client):
        response = client.get("/api/search")
        assert response.status_code == 400
        assert response.json()["status"] == "error"

    def test_reload(self, client):
        response = client.post("/api/reload")
        assert response.status_code == 200
        assert response.json()["status"] == "reloaded"

    def test_status_and_health(self, client):
        assert client.get("/api/status").json()["state"] == "ready"
        assert client.get("/health").json()["status"] == "healthy"

    def test_cors_headers(self, client):
        response = client.get("/api/relations", headers={"Origin": "http://localhost:3000"})
        assert response.headers["access-control-allow-origin"] == "*"


class TestErrors:
    def test_not_loaded_is_503(self, cache):
        from callmap.server.app import create_app

        client = TestClient(create_app(cache))
        assert client.get("/api/relations").status_code == 503
        assert client.get("/api/search?q=x").status_code == 503

    def test_failed_reload_is_500_and_keeps_serving(self, snapshot_factory):
        from callmap.server.app import create_app
        from callmap.server.snapshot import SnapshotCache

        state = {"fail": False}

        def loader():
            if state["fail"]:
                raise RuntimeError("broken tree")
            return snapshot_factory(_symbols())

        cache = SnapshotCache(loader)
        cache.reload()
        client = TestClient(create_app(cache))
        state["fail"] = True

        response = client.post("/api/reload")
        assert response.status_code == 500
        assert "broken tree" in response.json()["message"]
        assert client.get("/api/relations").status_code == 200
