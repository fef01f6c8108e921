import enum
from dataclasses import dataclass, field
from typing import Union


class ErrorKind(str, enum.Enum):
    """
    ErrorKind classifies why usage for a single credential
    could not be produced.
    """

    INVALID_CREDENTIAL = "InvalidCredential"
    TRANSPORT_ERROR = "TransportError"
    UPSTREAM_HTTP_ERROR = "UpstreamHttpError"
    MALFORMED_RESPONSE = "MalformedResponse"
    # raised by something other than the fetcher itself
    INTERNAL_ERROR = "InternalError"


@dataclass(frozen=True, slots=True)
class Credential:
    """
    Credential is a stored secret identifying one upstream
    account to poll for usage.
    """

    id: "str"
    secret: "str" = field(repr=False)
    display_name: "str | None" = None
    # epoch millis
    created_at: "int" = 0


@dataclass(frozen=True, slots=True)
class UsageOk:
    id: "str"
    masked_secret: "str"
    # ISO dates (YYYY-MM-DD) in UTC
    start_date: "str"
    end_date: "str"
    total_allowance: "int | float"
    used: "int | float"
    used_ratio: "float"

    @property
    def remaining(self) -> "int | float":
        """
        remaining allowance, negative when the credential is over-used.
        """
        return self.total_allowance - self.used

    def to_dict(self) -> "dict[str, object]":
        return {
            "id": self.id,
            "key": self.masked_secret,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "total_allowance": self.total_allowance,
            "used": self.used,
            "used_ratio": self.used_ratio,
            "remaining": self.remaining,
        }


@dataclass(frozen=True, slots=True)
class UsageErr:
    id: "str"
    masked_secret: "str"
    error_kind: "ErrorKind"
    error_detail: "str" = ""

    def to_dict(self) -> "dict[str, object]":
        return {
            "id": self.id,
            "key": self.masked_secret,
            "error": self.error_kind.value,
            "error_detail": self.error_detail,
        }


UsageResult = Union[UsageOk, UsageErr]


@dataclass(frozen=True, slots=True)
class Totals:
    total_allowance: "int | float" = 0
    total_used: "int | float" = 0
    # per-credential remaining floored at zero before summing
    total_remaining_clamped: "int | float" = 0

    def to_dict(self) -> "dict[str, object]":
        return {
            "total_allowance": self.total_allowance,
            "total_used": self.total_used,
            "total_remaining_clamped": self.total_remaining_clamped,
        }


@dataclass(frozen=True, slots=True)
class Snapshot:
    """
    Snapshot is one immutable, point-in-time aggregation
    across all stored credentials. per_credential keeps the
    order in which the store listed the credentials.
    """

    # UTC epoch millis
    update_time: "int"
    total_count: "int"
    totals: "Totals"
    per_credential: "tuple[UsageResult, ...]"

    @property
    def ok_results(self) -> "list[UsageOk]":
        return [r for r in self.per_credential if isinstance(r, UsageOk)]

    @property
    def error_results(self) -> "list[UsageErr]":
        return [r for r in self.per_credential if isinstance(r, UsageErr)]

    def to_dict(self) -> "dict[str, object]":
        return {
            "update_time": self.update_time,
            "total_count": self.total_count,
            "totals": self.totals.to_dict(),
            "data": [r.to_dict() for r in self.per_credential],
        }
