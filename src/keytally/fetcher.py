import time

import httpx
import structlog

from keytally.errors import UpstreamStatusError
from keytally.masking import mask_secret
from keytally.metrics import MetricsUpdater
from keytally.models import Credential, ErrorKind, UsageErr, UsageOk, UsageResult
from keytally.provider.base import Malformed, UsageProvider

logger = structlog.get_logger()


def _clamp_ratio(ratio: "float") -> "float":
    return min(max(ratio, 0.0), 1.0)


class UsageFetcher:
    """
    UsageFetcher turns one credential into one UsageResult. It never
    raises for per-credential problems: an empty secret, transport
    failures, non-success statuses and malformed payloads all come back
    as UsageErr.
    """

    def __init__(
        self,
        provider: "UsageProvider",
        metrics: "MetricsUpdater | None" = None,
    ) -> "None":
        self._provider = provider
        self._metrics = metrics

    async def fetch(self, credential: "Credential") -> "UsageResult":
        started = time.monotonic()
        result = await self._fetch(credential)

        if self._metrics is not None:
            self._metrics.observe_fetch(
                time.monotonic() - started,
                result.error_kind if isinstance(result, UsageErr) else None,
            )

        if isinstance(result, UsageErr):
            logger.warning(
                "usage_fetch_failed",
                credential_id=result.id,
                key=result.masked_secret,
                kind=result.error_kind.value,
                detail=result.error_detail,
            )
        return result

    async def _fetch(self, credential: "Credential") -> "UsageResult":
        masked = mask_secret(credential.secret)

        if not credential.secret:
            return UsageErr(
                credential.id, masked, ErrorKind.INVALID_CREDENTIAL, "empty secret"
            )

        try:
            payload = await self._provider.fetch_usage(credential.secret)
        except UpstreamStatusError as exc:
            detail = f"HTTP {exc.status_code}"
            if exc.body:
                detail = f"{detail}: {exc.body}"
            return UsageErr(
                credential.id, masked, ErrorKind.UPSTREAM_HTTP_ERROR, detail
            )
        except httpx.RequestError as exc:
            return UsageErr(
                credential.id,
                masked,
                ErrorKind.TRANSPORT_ERROR,
                f"{type(exc).__name__}: {exc}",
            )

        if isinstance(payload, Malformed):
            return UsageErr(
                credential.id, masked, ErrorKind.MALFORMED_RESPONSE, payload.reason
            )

        if payload.used_ratio is not None:
            ratio = payload.used_ratio
        elif payload.total_allowance == 0:
            ratio = 0.0
        else:
            ratio = payload.used / payload.total_allowance

        return UsageOk(
            id=credential.id,
            masked_secret=masked,
            start_date=payload.start_date,
            end_date=payload.end_date,
            total_allowance=payload.total_allowance,
            used=payload.used,
            used_ratio=_clamp_ratio(ratio),
        )
