from dataclasses import dataclass
from typing import Protocol, Union


@dataclass(frozen=True, slots=True)
class ParsedUsage:
    """
    ParsedUsage is an upstream usage payload that passed validation.
    Dates are ISO (YYYY-MM-DD) in UTC.
    """

    start_date: "str"
    end_date: "str"
    total_allowance: "int | float"
    used: "int | float"
    # ratio as reported upstream, None when absent
    used_ratio: "float | None" = None


@dataclass(frozen=True, slots=True)
class Malformed:
    """
    Malformed marks a successful upstream response whose payload
    is missing or has unusable usage fields.
    """

    reason: "str"


UsagePayload = Union[ParsedUsage, Malformed]


class UsageProvider(Protocol):
    """
    UsageProvider stands as the protocol an upstream usage API
    must satisfy.

    fetch_usage authenticates with the given secret and returns the
    validated payload. Non-success statuses raise UpstreamStatusError
    and network failures raise httpx.RequestError.
    """

    @property
    def name(self) -> "str": ...

    async def fetch_usage(self, secret: "str") -> "UsagePayload": ...

    async def close(self) -> "None": ...
