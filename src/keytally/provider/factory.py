import math
from datetime import datetime, timezone

import httpx
import structlog

from keytally.errors import UpstreamStatusError
from keytally.provider.base import Malformed, ParsedUsage, UsagePayload

logger = structlog.get_logger()

FACTORY_USAGE_URL = "https://app.factory.ai/api/organization/members/chat-usage"

# the usage endpoint rejects clients without a browser user agent
_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/141.0.0.0 Safari/537.36"
)

# how much of an error body ends up in the error detail
_BODY_EXCERPT_CHARS = 200


def _is_number(value: "object") -> "bool":
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _format_date(timestamp_ms: "object") -> "str | None":
    """
    converts an epoch-millis timestamp to an ISO date in UTC.
    """
    if not _is_number(timestamp_ms):
        return None
    try:
        moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    return moment.date().isoformat()


def parse_usage_payload(payload: "object") -> "UsagePayload":
    """
    validates a chat-usage payload of the shape

        {"usage": {"startDate": ms, "endDate": ms,
                   "standard": {"orgTotalTokensUsed": n,
                                "totalAllowance": n,
                                "usedRatio": r}}}

    and returns ParsedUsage, or Malformed naming the first problem.
    usedRatio is optional; everything else is required.
    """
    if not isinstance(payload, dict):
        return Malformed("payload is not an object")

    usage = payload.get("usage")
    if not isinstance(usage, dict):
        return Malformed("missing usage")

    standard = usage.get("standard")
    if not isinstance(standard, dict):
        return Malformed("missing usage.standard")

    used = standard.get("orgTotalTokensUsed")
    allowance = standard.get("totalAllowance")
    if not _is_number(used) or used < 0:
        return Malformed("invalid usage.standard.orgTotalTokensUsed")
    if not _is_number(allowance) or allowance < 0:
        return Malformed("invalid usage.standard.totalAllowance")

    start_date = _format_date(usage.get("startDate"))
    end_date = _format_date(usage.get("endDate"))
    if start_date is None or end_date is None:
        return Malformed("invalid usage period")

    ratio = standard.get("usedRatio")
    return ParsedUsage(
        start_date=start_date,
        end_date=end_date,
        total_allowance=allowance,
        used=used,
        used_ratio=float(ratio) if _is_number(ratio) else None,
    )


class FactoryUsageProvider:
    """
    FactoryUsageProvider implements the UsageProvider protocol for the
    Factory chat-usage endpoint. One shared httpx client serves all
    credentials; the secret travels per request as a bearer token.
    """

    def __init__(
        self,
        url: "str" = FACTORY_USAGE_URL,
        timeout: "float" = 10.0,
        transport: "httpx.AsyncBaseTransport | None" = None,
    ) -> "None":
        self._url = url
        self._client: "httpx.AsyncClient" = httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": _USER_AGENT},
            transport=transport,
        )

    @property
    def name(self) -> "str":
        return "factory"

    async def close(self) -> "None":
        """
        closes the underlying HTTP client.
        """
        await self._client.aclose()

    async def fetch_usage(self, secret: "str") -> "UsagePayload":
        resp = await self._client.get(
            self._url,
            headers={"Authorization": f"Bearer {secret}"},
        )

        if not resp.is_success:
            raise UpstreamStatusError(
                resp.status_code, resp.text[:_BODY_EXCERPT_CHARS]
            )

        try:
            payload = resp.json()
        except ValueError:
            return Malformed("response body is not JSON")

        return parse_usage_payload(payload)
