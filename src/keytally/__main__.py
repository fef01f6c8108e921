import asyncio
import json
import sys
from pathlib import Path

import structlog
import uvicorn

from keytally.api import create_app
from keytally.cli import parse_args
from keytally.config import Config
from keytally.errors import NoCredentialsError
from keytally.fetcher import UsageFetcher
from keytally.logging import setup_logging
from keytally.metrics import MetricsUpdater
from keytally.provider.factory import FactoryUsageProvider
from keytally.runner import BoundedRunner
from keytally.sessions import SessionManager
from keytally.snapshot import SnapshotBuilder
from keytally.store import JsonFileCredentialStore

logger = structlog.get_logger()


def _parse_listen_address(addr: "str") -> "tuple[str, int]":
    """
    parses listen address in format ':8000' or '0.0.0.0:8000'.
    """
    if addr.startswith(":"):
        return ("0.0.0.0", int(addr[1:]))

    host, port = addr.rsplit(":", 1)
    return (host, int(port))


def _build_snapshot_builder(
    config: "Config",
    store: "JsonFileCredentialStore",
    provider: "FactoryUsageProvider",
    metrics: "MetricsUpdater | None" = None,
) -> "SnapshotBuilder":
    fetcher = UsageFetcher(provider, metrics=metrics)
    runner = BoundedRunner(config.concurrency)
    return SnapshotBuilder(store, fetcher, runner, metrics=metrics)


def _serve(config: "Config", store: "JsonFileCredentialStore") -> "None":
    metrics = MetricsUpdater()
    provider = FactoryUsageProvider(config.upstream_url, timeout=config.fetch_timeout)
    app = create_app(
        store,
        _build_snapshot_builder(config, store, provider, metrics),
        sessions=SessionManager(config.admin_password),
        metrics=metrics,
        provider=provider,
    )

    host, port = _parse_listen_address(config.listen_address)
    logger.info(
        "server_starting",
        host=host,
        port=port,
        auth_enabled=config.auth_enabled,
        credentials=len(store.list_all()),
    )
    uvicorn.run(app, host=host, port=port, access_log=False, log_config=None)


async def _print_snapshot(config: "Config", store: "JsonFileCredentialStore") -> "int":
    provider = FactoryUsageProvider(config.upstream_url, timeout=config.fetch_timeout)
    try:
        snapshot = await _build_snapshot_builder(config, store, provider).build()
    except NoCredentialsError as exc:
        logger.error("snapshot_failed", error=str(exc))
        return 1
    finally:
        await provider.close()

    json.dump(snapshot.to_dict(), sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0


def _import(config: "Config", store: "JsonFileCredentialStore") -> "int":
    lines = Path(config.import_file).read_text(encoding="utf-8").splitlines()
    result = store.batch_import(lines)
    print(
        f"imported {result.success}, duplicates {result.duplicates}, "
        f"failed {result.failed}"
    )
    return 1 if result.failed else 0


def main() -> "None":
    config = parse_args()
    setup_logging(config.log_level, config.log_format)
    store = JsonFileCredentialStore(config.store_path)

    if config.command == "snapshot":
        raise SystemExit(asyncio.run(_print_snapshot(config, store)))
    if config.command == "import":
        raise SystemExit(_import(config, store))

    _serve(config, store)


if __name__ == "__main__":
    main()
