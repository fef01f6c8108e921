from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

from keytally.models import ErrorKind, Snapshot


class MetricsUpdater:
    """
    applies fetch outcomes and snapshot totals to Prometheus metrics.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._registry: "CollectorRegistry" = registry
        self._fetch_duration: "Histogram" = Histogram(
            "keytally_fetch_duration_seconds",
            "Duration of single credential usage fetches",
            registry=registry,
        )
        self._fetch_errors: "Counter" = Counter(
            "keytally_fetch_errors_total",
            "Total number of failed usage fetches by error kind",
            ["kind"],
            registry=registry,
        )
        self._credentials: "Gauge" = Gauge(
            "keytally_credentials",
            "Number of credentials in the last snapshot by outcome",
            ["outcome"],
            registry=registry,
        )
        self._totals: "dict[str, Gauge]" = {
            name: Gauge(
                f"keytally_snapshot_{name}",
                f"Aggregated {name.replace('_', ' ')} of the last snapshot",
                registry=registry,
            )
            for name in ("total_allowance", "total_used", "total_remaining")
        }
        self._last_snapshot: "Gauge" = Gauge(
            "keytally_last_snapshot_timestamp_seconds",
            "Unix timestamp of the last built snapshot",
            registry=registry,
        )

    @property
    def registry(self) -> "CollectorRegistry":
        return self._registry

    def observe_fetch(
        self,
        duration_seconds: "float",
        error_kind: "ErrorKind | None" = None,
    ) -> "None":
        self._fetch_duration.observe(duration_seconds)
        if error_kind is not None:
            self._fetch_errors.labels(kind=error_kind.value).inc()

    def update_snapshot(self, snapshot: "Snapshot") -> "None":
        """
        publishes the totals and outcome counts of a snapshot.
        """
        errors = len(snapshot.error_results)
        self._credentials.labels(outcome="ok").set(snapshot.total_count - errors)
        self._credentials.labels(outcome="error").set(errors)

        totals = snapshot.totals
        self._totals["total_allowance"].set(totals.total_allowance)
        self._totals["total_used"].set(totals.total_used)
        self._totals["total_remaining"].set(totals.total_remaining_clamped)
        self._last_snapshot.set(snapshot.update_time / 1000)
