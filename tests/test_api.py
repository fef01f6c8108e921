import inspect

import pytest
from conftest import MockProvider, make_usage
from fastapi.routing import APIRoute
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry

from keytally.api import create_app
from keytally.cache import SecretCache
from keytally.errors import UpstreamStatusError
from keytally.fetcher import UsageFetcher
from keytally.metrics import MetricsUpdater
from keytally.models import Credential
from keytally.runner import BoundedRunner
from keytally.sessions import SessionManager
from keytally.snapshot import SnapshotBuilder
from keytally.store import InMemoryCredentialStore


def _app(
    store: "InMemoryCredentialStore",
    provider: "MockProvider | None" = None,
    **kwargs: "object",
):
    builder = SnapshotBuilder(
        store,
        UsageFetcher(provider or MockProvider()),
        BoundedRunner(4),
        clock=lambda: 1_700_000_000_000,
    )
    return create_app(store, builder, **kwargs)


@pytest.fixture()
def store(credentials: "list[Credential]") -> "InMemoryCredentialStore":
    return InMemoryCredentialStore(credentials)


class TestDataRoute:
    def test_returns_snapshot(self, store: "InMemoryCredentialStore") -> "None":
        provider = MockProvider(
            {
                "sk-aaaa-1111-bbbb": make_usage(100, 150),
                "sk-cccc-2222-dddd": UpstreamStatusError(401),
            }
        )
        client = TestClient(_app(store, provider))

        resp = client.get("/api/data")

        assert resp.status_code == 200
        body = resp.json()
        assert body["update_time"] == 1_700_000_000_000
        assert body["total_count"] == 3
        assert body["totals"] == {
            "total_allowance": 200,
            "total_used": 200,
            "total_remaining_clamped": 50,
        }
        assert [item["id"] for item in body["data"]] == ["key-1", "key-2", "key-3"]
        assert body["data"][0]["remaining"] == -50
        assert body["data"][1]["error"] == "UpstreamHttpError"

    def test_warms_secret_cache(self, store: "InMemoryCredentialStore") -> "None":
        cache = SecretCache()
        cache.set("key-gone", "fk-deleted-since")
        client = TestClient(_app(store, secret_cache=cache))

        client.get("/api/data")

        assert cache.get("key-1") == "sk-aaaa-1111-bbbb"
        assert cache.get("key-3") == "sk-eeee-3333-ffff"
        assert len(cache) == 4

    def test_empty_store(self) -> "None":
        client = TestClient(_app(InMemoryCredentialStore()))

        resp = client.get("/api/data")

        assert resp.status_code == 404
        assert "No API keys found" in resp.json()["error"]


class TestKeyRoutes:
    def test_list_keys_is_masked(self, store: "InMemoryCredentialStore") -> "None":
        client = TestClient(_app(store))

        resp = client.get("/api/keys")

        assert resp.status_code == 200
        assert resp.json()[0] == {
            "id": "key-1",
            "name": "one",
            "created_at": 0,
            "masked": "sk-a...bbbb",
        }

    def test_add_key(self) -> "None":
        store = InMemoryCredentialStore()
        client = TestClient(_app(store))

        resp = client.post("/api/keys", json={"key": "fk-new-secret", "name": "n"})

        assert resp.status_code == 200
        key_id = resp.json()["id"]
        assert store.get_by_id(key_id).secret == "fk-new-secret"

    def test_add_key_requires_key(self) -> "None":
        client = TestClient(_app(InMemoryCredentialStore()))
        resp = client.post("/api/keys", json={"name": "n"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Key is required"}

    def test_import_keys(self, store: "InMemoryCredentialStore") -> "None":
        client = TestClient(_app(store))

        resp = client.post(
            "/api/keys/import",
            json={"keys": ["fk-1", "sk-aaaa-1111-bbbb", "", "fk-2"]},
        )

        assert resp.json() == {"success": 2, "failed": 0, "duplicates": 1}
        assert len(store.list_all()) == 5

    def test_import_requires_list(self, store: "InMemoryCredentialStore") -> "None":
        client = TestClient(_app(store))
        resp = client.post("/api/keys/import", json={"keys": "fk-1"})
        assert resp.status_code == 400

    def test_full_key_goes_through_cache(
        self,
        store: "InMemoryCredentialStore",
    ) -> "None":
        cache = SecretCache()
        client = TestClient(_app(store, secret_cache=cache))

        resp = client.get("/api/keys/key-2/full")

        assert resp.json() == {"id": "key-2", "key": "sk-cccc-2222-dddd"}
        assert cache.get("key-2") == "sk-cccc-2222-dddd"

    def test_full_key_unknown(self, store: "InMemoryCredentialStore") -> "None":
        client = TestClient(_app(store))
        resp = client.get("/api/keys/missing/full")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Key not found"}

    def test_delete_key_drops_cache_entry(
        self,
        store: "InMemoryCredentialStore",
    ) -> "None":
        cache = SecretCache()
        cache.set("key-1", "sk-aaaa-1111-bbbb")
        client = TestClient(_app(store, secret_cache=cache))

        resp = client.delete("/api/keys/key-1")

        assert resp.json() == {"success": True}
        assert [c.id for c in store.list_all()] == ["key-2", "key-3"]
        assert cache.get("key-1") is None

    def test_delete_rejects_reserved_id(
        self,
        store: "InMemoryCredentialStore",
    ) -> "None":
        store.put(Credential(id="batch-delete", secret="fk-odd-id"))
        client = TestClient(_app(store))

        resp = client.delete("/api/keys/batch-delete")

        assert resp.status_code == 400
        assert resp.json() == {"error": "Key ID required"}
        assert store.get_by_id("batch-delete").secret == "fk-odd-id"

    def test_batch_delete(self, store: "InMemoryCredentialStore") -> "None":
        client = TestClient(_app(store))

        resp = client.post("/api/keys/batch-delete", json={"ids": ["key-1", "key-3"]})

        assert resp.json() == {"success": 2, "failed": 0}
        assert [c.id for c in store.list_all()] == ["key-2"]

    def test_batch_delete_requires_ids(
        self,
        store: "InMemoryCredentialStore",
    ) -> "None":
        client = TestClient(_app(store))
        resp = client.post("/api/keys/batch-delete", json={"ids": []})
        assert resp.status_code == 400


class TestAuthentication:
    def test_routes_require_session(self, store: "InMemoryCredentialStore") -> "None":
        client = TestClient(
            _app(store, sessions=SessionManager("hunter2")),
            base_url="https://testserver",
        )

        assert client.get("/api/keys").status_code == 401
        assert client.get("/api/data").json() == {"error": "Unauthorized"}

    def test_wrong_password(self, store: "InMemoryCredentialStore") -> "None":
        client = TestClient(
            _app(store, sessions=SessionManager("hunter2")),
            base_url="https://testserver",
        )
        resp = client.post("/api/login", json={"password": "nope"})
        assert resp.status_code == 401
        assert resp.json() == {"error": "Invalid password"}

    def test_login_grants_access(self, store: "InMemoryCredentialStore") -> "None":
        client = TestClient(
            _app(store, sessions=SessionManager("hunter2")),
            base_url="https://testserver",
        )

        resp = client.post("/api/login", json={"password": "hunter2"})

        assert resp.status_code == 200
        assert "session" in resp.cookies
        assert client.get("/api/keys").status_code == 200


class TestMetricsRoute:
    def test_exposes_metrics(
        self,
        store: "InMemoryCredentialStore",
        registry: "CollectorRegistry",
    ) -> "None":
        metrics = MetricsUpdater(registry=registry)
        client = TestClient(_app(store, metrics=metrics))

        client.get("/api/data")
        resp = client.get("/metrics/")

        assert resp.status_code == 200
        assert "keytally_credentials" in resp.text


class TestHandlerKinds:
    def test_only_data_route_runs_on_event_loop(
        self,
        store: "InMemoryCredentialStore",
    ) -> "None":
        app = _app(store)
        coroutines = {
            route.path
            for route in app.routes
            if isinstance(route, APIRoute)
            and inspect.iscoroutinefunction(route.endpoint)
        }
        assert coroutines == {"/api/data"}
