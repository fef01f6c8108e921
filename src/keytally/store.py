import json
import os
import tempfile
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterable, Protocol

import structlog

from keytally.errors import CredentialNotFoundError
from keytally.masking import mask_secret
from keytally.models import Credential

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class ImportResult:
    success: "int" = 0
    failed: "int" = 0
    duplicates: "int" = 0


@dataclass(frozen=True, slots=True)
class DeleteResult:
    success: "int" = 0
    failed: "int" = 0


class CredentialStore(Protocol):
    """
    CredentialStore is the contract the aggregation core reads
    credentials through. put/delete only serve the management routes.
    """

    def list_all(self) -> "list[Credential]": ...

    def get_by_id(self, credential_id: "str") -> "Credential": ...

    def put(self, credential: "Credential") -> "None": ...

    def delete(self, credential_id: "str") -> "None": ...


def _now_ms() -> "int":
    return int(time.time() * 1000)


class InMemoryCredentialStore:
    """
    InMemoryCredentialStore: Is a thread-safe credential store
    keeping entries in insertion order.

    Besides the plain accessors it offers the bulk operations used by
    the management API: adding a secret under a generated id, importing
    many secrets while skipping duplicates, and deleting many ids.
    """

    def __init__(self, credentials: "Iterable[Credential]" = ()) -> "None":
        self._lock: "threading.RLock" = threading.RLock()
        self._entries: "dict[str, Credential]" = {c.id: c for c in credentials}
        self._sequence = 0

    def list_all(self) -> "list[Credential]":
        with self._lock:
            return list(self._entries.values())

    def get_by_id(self, credential_id: "str") -> "Credential":
        with self._lock:
            try:
                return self._entries[credential_id]
            except KeyError:
                raise CredentialNotFoundError(credential_id) from None

    def put(self, credential: "Credential") -> "None":
        with self._lock:
            previous = dict(self._entries)
            self._entries[credential.id] = credential
            self._persist_or_restore(previous)

    def delete(self, credential_id: "str") -> "None":
        """
        removes the credential; deleting an unknown id is a no-op.
        """
        with self._lock:
            if credential_id not in self._entries:
                return
            previous = dict(self._entries)
            del self._entries[credential_id]
            self._persist_or_restore(previous)

    def _persist_or_restore(self, previous: "dict[str, Credential]") -> "None":
        """
        persists the current entries, putting back the previous ones
        if the write fails so memory never drifts from storage.
        """
        try:
            self._persist()
        except BaseException:
            self._entries = previous
            raise

    def _persist(self) -> "None":
        """
        hook for subclasses that write entries to durable storage.
        Called with the lock held after every mutation.
        """

    def _next_id(self) -> "str":
        self._sequence += 1
        return f"key-{_now_ms()}-{self._sequence}"

    def add_secret(self, secret: "str", name: "str | None" = None) -> "Credential":
        """
        stores a secret under a freshly generated id.
        """
        secret = secret.strip()
        if not secret:
            raise ValueError("secret must not be empty")

        with self._lock:
            credential_id = self._next_id()
            credential = Credential(
                id=credential_id,
                secret=secret,
                display_name=name or f"Key {credential_id}",
                created_at=_now_ms(),
            )
            self.put(credential)
        logger.info("credential_added", credential_id=credential_id)
        return credential

    def batch_import(self, secrets: "Iterable[str]") -> "ImportResult":
        """
        imports secrets one per entry. Blank entries are ignored and
        secrets already stored (or repeated within the batch) are
        counted as duplicates.
        """
        success = failed = duplicates = 0

        with self._lock:
            known = {c.secret for c in self._entries.values()}
            for raw in secrets:
                secret = raw.strip()
                if not secret:
                    continue
                if secret in known:
                    duplicates += 1
                    logger.debug("credential_import_duplicate", key=mask_secret(secret))
                    continue
                try:
                    self.add_secret(secret)
                except (OSError, ValueError):
                    logger.exception(
                        "credential_import_failed", key=mask_secret(secret)
                    )
                    failed += 1
                    continue
                known.add(secret)
                success += 1

        logger.info(
            "credentials_imported",
            success=success,
            failed=failed,
            duplicates=duplicates,
        )
        return ImportResult(success=success, failed=failed, duplicates=duplicates)

    def batch_delete(self, credential_ids: "Iterable[str]") -> "DeleteResult":
        success = failed = 0
        for credential_id in credential_ids:
            try:
                self.delete(credential_id)
            except OSError:
                logger.exception("credential_delete_failed", credential_id=credential_id)
                failed += 1
                continue
            success += 1
        return DeleteResult(success=success, failed=failed)


class JsonFileCredentialStore(InMemoryCredentialStore):
    """
    JsonFileCredentialStore keeps the in-memory store mirrored to a JSON
    file. Every mutation rewrites the file through a temporary file and
    an atomic rename, so a crash never leaves a half-written store.
    """

    def __init__(self, path: "str | os.PathLike[str]") -> "None":
        self._path = Path(path)
        super().__init__(self._load())
        logger.info(
            "credential_store_loaded",
            path=str(self._path),
            count=len(self._entries),
        )

    def _load(self) -> "list[Credential]":
        if not self._path.exists():
            return []

        raw = json.loads(self._path.read_text(encoding="utf-8"))
        return [
            Credential(
                id=entry["id"],
                secret=entry["secret"],
                display_name=entry.get("display_name"),
                created_at=entry.get("created_at", 0),
            )
            for entry in raw.get("credentials", [])
        ]

    def _persist(self) -> "None":
        data = {"credentials": [asdict(c) for c in self._entries.values()]}
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
            os.replace(tmp_name, self._path)
        except BaseException:
            os.unlink(tmp_name)
            raise
