import time
from typing import Callable

import structlog

from keytally.aggregator import aggregate, credentials_with_balance
from keytally.errors import NoCredentialsError
from keytally.fetcher import UsageFetcher
from keytally.masking import mask_secret
from keytally.metrics import MetricsUpdater
from keytally.models import Credential, ErrorKind, Snapshot, UsageErr, UsageResult
from keytally.runner import BoundedRunner, TaskError
from keytally.store import CredentialStore

logger = structlog.get_logger()


def _epoch_ms() -> "int":
    return int(time.time() * 1000)


class SnapshotBuilder:
    """
    SnapshotBuilder is responsible for producing one aggregated
    snapshot across every stored credential. It reads the store once,
    fans out one usage fetch per credential through the bounded runner
    and folds the successful results into totals.

    Nothing is cached: each build() call hits the upstream again.
    """

    def __init__(
        self,
        store: "CredentialStore",
        fetcher: "UsageFetcher",
        runner: "BoundedRunner[UsageResult]",
        metrics: "MetricsUpdater | None" = None,
        clock: "Callable[[], int]" = _epoch_ms,
    ) -> "None":
        self._store = store
        self._fetcher = fetcher
        self._runner = runner
        self._metrics = metrics
        self._clock = clock

    async def build(self) -> "Snapshot":
        credentials = self._store.list_all()
        if not credentials:
            raise NoCredentialsError()

        logger.info(
            "snapshot_start",
            credentials=len(credentials),
            concurrency=self._runner.concurrency,
        )

        outcomes = await self._runner.run(
            [self._fetch_task(credential) for credential in credentials]
        )
        results = tuple(
            self._as_result(credential, outcome)
            for credential, outcome in zip(credentials, outcomes)
        )

        snapshot = Snapshot(
            update_time=self._clock(),
            total_count=len(credentials),
            totals=aggregate(results),
            per_credential=results,
        )

        if self._metrics is not None:
            self._metrics.update_snapshot(snapshot)

        logger.info(
            "snapshot_built",
            total_count=snapshot.total_count,
            errors=len(snapshot.error_results),
            with_balance=len(credentials_with_balance(results)),
            total_remaining=snapshot.totals.total_remaining_clamped,
        )
        return snapshot

    def _fetch_task(self, credential: "Credential"):
        async def _task() -> "UsageResult":
            return await self._fetcher.fetch(credential)

        return _task

    @staticmethod
    def _as_result(
        credential: "Credential",
        outcome: "UsageResult | TaskError",
    ) -> "UsageResult":
        # the fetcher reports its own failures, so a TaskError here
        # means something outside it broke
        if isinstance(outcome, TaskError):
            return UsageErr(
                credential.id,
                mask_secret(credential.secret),
                ErrorKind.INTERNAL_ERROR,
                outcome.error,
            )
        return outcome
