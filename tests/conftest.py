"""Shared fakes: recorded sleeps, scripted HTTP sessions and chain adapters."""

from typing import Any, Dict, List

import pytest

from chain_sweeper.endpoint_rotator import EndpointRotator
from chain_sweeper.errors import RemoteCallError
from chain_sweeper.network_adapter import HIVE


class RecordingSleep:
    """Awaitable sleep that records requested delays instead of waiting."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeResponse:
    def __init__(self, status: int = 200, body: Any = None, reason: str = "OK"):
        self.status = status
        self.reason = reason
        self._body = body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self, content_type=None):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeSession:
    """aiohttp.ClientSession stand-in answering from a per-URL script."""

    def __init__(self, script: Dict[str, List[Any]]):
        self.script = {url: list(items) for url, items in script.items()}
        self.requests: List[Dict[str, Any]] = []
        self.closed = False

    def post(self, url: str, json=None):
        self.requests.append({"url": url, "json": json})
        item = self.script[url].pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self):
        self.closed = True


class FakeAdapter:
    """ChainAdapter stand-in with scripted account lookups and recorded broadcasts."""

    def __init__(self, accounts=None, profile=HIVE, submit_errors=None):
        self.profile = profile
        self.accounts = list(accounts or [])
        self.submit_errors = dict(submit_errors or {})
        self.submitted: List[Any] = []
        self.rotations = 0
        self.rotator = EndpointRotator(["https://a.example", "https://b.example"])

    @property
    def tag(self):
        return self.profile.tag

    def rotate(self, err=None, attempt=None):
        self.rotations += 1
        return self.rotator.rotate(err, attempt)

    async def get_account(self, name):
        item = self.accounts.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def submit(self, account, key, operation):
        error = self.submit_errors.get(len(self.submitted))
        if error is not None:
            raise error
        self.submitted.append(operation)
        return {"id": f"tx{len(self.submitted)}"}


def http_error(status: int) -> RemoteCallError:
    return RemoteCallError(f"status code {status}", status=status, reason="Service Unavailable")


def hive_account(hive: str = "0.000", hbd: str = "0.000") -> Dict[str, str]:
    return {"name": "alice", "balance": f"{hive} HIVE", "hbd_balance": f"{hbd} HBD"}


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def no_jitter():
    return lambda: 0.0
