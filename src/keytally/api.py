"""
HTTP API for the dashboard.

- POST   /api/login               exchange the admin password for a session cookie
- GET    /api/data                aggregated usage snapshot
- GET    /api/keys                stored keys, masked
- POST   /api/keys                add one key
- POST   /api/keys/import         import many keys, skipping duplicates
- GET    /api/keys/{id}/full      full key (served through the secret cache)
- POST   /api/keys/batch-delete   delete many keys
- DELETE /api/keys/{id}           delete one key
- GET    /metrics                 Prometheus exposition

Only /api/data is a coroutine. The other handlers touch the credential
store, whose writes block on file I/O, so they are plain functions that
FastAPI runs in its threadpool.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from pydantic import BaseModel, Field

from keytally.cache import SecretCache
from keytally.errors import CredentialNotFoundError, NoCredentialsError
from keytally.masking import mask_secret
from keytally.metrics import MetricsUpdater
from keytally.models import Snapshot
from keytally.provider.base import UsageProvider
from keytally.sessions import SessionManager
from keytally.snapshot import SnapshotBuilder
from keytally.store import InMemoryCredentialStore

logger = structlog.get_logger()

SESSION_COOKIE = "session"

# path segment that is a route of its own, never a key id
_RESERVED_KEY_ID = "batch-delete"


class LoginRequest(BaseModel):
    password: "str" = ""


class AddKeyRequest(BaseModel):
    key: "str" = ""
    name: "str | None" = None


class ImportRequest(BaseModel):
    keys: "list[str]"


class BatchDeleteRequest(BaseModel):
    ids: "list[str]" = Field(min_length=1)


def _store(request: "Request") -> "InMemoryCredentialStore":
    return request.app.state.store


def _cache(request: "Request") -> "SecretCache":
    return request.app.state.secret_cache


def require_session(request: "Request") -> "None":
    """
    rejects the request with 401 unless it carries a valid
    session cookie. Always passes when no admin password is set.
    """
    sessions: "SessionManager" = request.app.state.sessions
    if not sessions.validate(request.cookies.get(SESSION_COOKIE)):
        raise HTTPException(status_code=401, detail="Unauthorized")


def _warm_cache(
    cache: "SecretCache",
    store: "InMemoryCredentialStore",
    snapshot: "Snapshot",
) -> "None":
    """
    refreshes the cached full secrets for every key in the snapshot,
    so the copy actions that follow a dashboard load skip the store.
    """
    cache.evict()
    shown = {r.id for r in snapshot.per_credential}
    cache.set_many((c.id, c.secret) for c in store.list_all() if c.id in shown)


def create_app(
    store: "InMemoryCredentialStore",
    builder: "SnapshotBuilder",
    sessions: "SessionManager | None" = None,
    secret_cache: "SecretCache | None" = None,
    metrics: "MetricsUpdater | None" = None,
    provider: "UsageProvider | None" = None,
) -> "FastAPI":
    """
    builds the FastAPI app around already constructed collaborators.
    The provider, when given, is closed on application shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: "FastAPI"):
        yield
        if provider is not None:
            await provider.close()
            logger.info("provider_closed", provider=provider.name)

    app = FastAPI(title="keytally", lifespan=lifespan)
    app.state.store = store
    app.state.builder = builder
    app.state.sessions = sessions if sessions is not None else SessionManager()
    app.state.secret_cache = (
        secret_cache if secret_cache is not None else SecretCache()
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    if metrics is not None:
        app.mount("/metrics", make_asgi_app(registry=metrics.registry))

    @app.exception_handler(HTTPException)
    async def _http_error(
        request: "Request", exc: "HTTPException"
    ) -> "JSONResponse":
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(
        request: "Request", exc: "RequestValidationError"
    ) -> "JSONResponse":
        return JSONResponse({"error": "Invalid request body"}, status_code=400)

    @app.exception_handler(CredentialNotFoundError)
    async def _not_found(
        request: "Request", exc: "CredentialNotFoundError"
    ) -> "JSONResponse":
        return JSONResponse({"error": "Key not found"}, status_code=404)

    @app.post("/api/login")
    def login(body: "LoginRequest", request: "Request") -> "JSONResponse":
        session_manager: "SessionManager" = request.app.state.sessions
        if not session_manager.check_password(body.password):
            logger.warning("login_failed")
            raise HTTPException(status_code=401, detail="Invalid password")

        response = JSONResponse({"success": True})
        response.set_cookie(
            SESSION_COOKIE,
            session_manager.create(),
            max_age=session_manager.ttl_seconds,
            path="/",
            httponly=True,
            secure=True,
            samesite="lax",
        )
        return response

    @app.get("/api/data", dependencies=[Depends(require_session)])
    async def get_data(request: "Request") -> "JSONResponse":
        try:
            snapshot = await request.app.state.builder.build()
        except NoCredentialsError as exc:
            return JSONResponse({"error": str(exc)}, status_code=404)

        _warm_cache(_cache(request), _store(request), snapshot)
        return JSONResponse(snapshot.to_dict())

    @app.get("/api/keys", dependencies=[Depends(require_session)])
    def list_keys(
        store: "InMemoryCredentialStore" = Depends(_store),
    ) -> "list[dict]":
        return [
            {
                "id": c.id,
                "name": c.display_name,
                "created_at": c.created_at,
                "masked": mask_secret(c.secret),
            }
            for c in store.list_all()
        ]

    @app.post("/api/keys", dependencies=[Depends(require_session)])
    def add_key(
        body: "AddKeyRequest",
        store: "InMemoryCredentialStore" = Depends(_store),
    ) -> "dict":
        if not body.key.strip():
            raise HTTPException(status_code=400, detail="Key is required")
        credential = store.add_secret(body.key, body.name)
        return {"success": True, "id": credential.id}

    @app.post("/api/keys/import", dependencies=[Depends(require_session)])
    def import_keys(
        body: "ImportRequest",
        store: "InMemoryCredentialStore" = Depends(_store),
    ) -> "dict":
        result = store.batch_import(body.keys)
        return {
            "success": result.success,
            "failed": result.failed,
            "duplicates": result.duplicates,
        }

    @app.get("/api/keys/{credential_id}/full", dependencies=[Depends(require_session)])
    def get_full_key(
        credential_id: "str",
        store: "InMemoryCredentialStore" = Depends(_store),
        cache: "SecretCache" = Depends(_cache),
    ) -> "dict":
        secret = cache.get(credential_id)
        if secret is None:
            secret = store.get_by_id(credential_id).secret
            cache.set(credential_id, secret)
        return {"id": credential_id, "key": secret}

    @app.post("/api/keys/batch-delete", dependencies=[Depends(require_session)])
    def batch_delete_keys(
        body: "BatchDeleteRequest",
        store: "InMemoryCredentialStore" = Depends(_store),
        cache: "SecretCache" = Depends(_cache),
    ) -> "dict":
        result = store.batch_delete(body.ids)
        for credential_id in body.ids:
            cache.discard(credential_id)
        logger.info("credentials_deleted", success=result.success, failed=result.failed)
        return {"success": result.success, "failed": result.failed}

    @app.delete("/api/keys/{credential_id}", dependencies=[Depends(require_session)])
    def delete_key(
        credential_id: "str",
        store: "InMemoryCredentialStore" = Depends(_store),
        cache: "SecretCache" = Depends(_cache),
    ) -> "dict":
        if credential_id == _RESERVED_KEY_ID:
            raise HTTPException(status_code=400, detail="Key ID required")
        store.delete(credential_id)
        cache.discard(credential_id)
        return {"success": True}

    return app
