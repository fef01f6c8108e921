import pytest
from prometheus_client import CollectorRegistry

from keytally.models import Credential
from keytally.provider.base import ParsedUsage, UsagePayload


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


def make_usage(allowance: "int" = 100, used: "int" = 50, **kwargs) -> "ParsedUsage":
    defaults: "dict[str, object]" = {
        "start_date": "2025-01-01",
        "end_date": "2025-01-31",
        "total_allowance": allowance,
        "used": used,
        "used_ratio": None,
    }
    defaults.update(kwargs)
    return ParsedUsage(**defaults)


class MockProvider:
    """
    A mock provider returning a pre-configured payload (or raising a
    pre-configured exception) per secret, recording every call.
    """

    def __init__(
        self,
        responses: "dict[str, UsagePayload | Exception] | None" = None,
    ) -> "None":
        self._responses = responses or {}
        self.calls: "list[str]" = []
        self.closed = False

    @property
    def name(self) -> "str":
        return "mock"

    async def fetch_usage(self, secret: "str") -> "UsagePayload":
        self.calls.append(secret)
        response = self._responses.get(secret, make_usage())
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self) -> "None":
        self.closed = True


@pytest.fixture()
def credentials() -> "list[Credential]":
    return [
        Credential(id="key-1", secret="sk-aaaa-1111-bbbb", display_name="one"),
        Credential(id="key-2", secret="sk-cccc-2222-dddd", display_name="two"),
        Credential(id="key-3", secret="sk-eeee-3333-ffff", display_name="three"),
    ]
