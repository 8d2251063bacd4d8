"""Unit tests for the token-ledger client and its service failover."""

from decimal import Decimal

import pytest

from chain_sweeper.errors import MalformedResponseError, RemoteCallError
from chain_sweeper.retry_executor import RetryPolicy
from chain_sweeper.token_ledger import TokenLedgerClient, parse_token_balances

from .conftest import FakeResponse, FakeSession


PRIMARY = "https://engine-one.example/contracts"
BACKUP = "https://engine-two.example/contracts"

BALANCES = [
    {"account": "alice", "symbol": "BEE", "balance": "10", "stake": "5", "pendingUnstake": "0"},
    {"account": "alice", "symbol": "LEO", "balance": "0.5", "stake": "0"},
]


def test_parse_token_balances_defaults_missing_fields():
    balances = parse_token_balances(BALANCES)

    assert [b.symbol for b in balances] == ["BEE", "LEO"]
    assert balances[0].stake == Decimal("5")
    assert balances[1].pending_unstake == Decimal("0")


def test_parse_null_result_is_empty():
    assert parse_token_balances(None) == []


@pytest.mark.parametrize("result", [{"symbol": "BEE"}, [{"balance": "1"}], ["BEE"]])
def test_parse_rejects_malformed_records(result):
    with pytest.raises(MalformedResponseError):
        parse_token_balances(result)


def test_parse_rejects_non_numeric_amount():
    with pytest.raises(MalformedResponseError):
        parse_token_balances([{"symbol": "BEE", "balance": "lots"}])


@pytest.mark.asyncio
async def test_fetch_sends_find_query(sleep):
    session = FakeSession({PRIMARY: [FakeResponse(body={"result": BALANCES})]})
    ledger = TokenLedgerClient([PRIMARY], session, sleep=sleep)

    balances = await ledger.fetch_balances("alice")

    assert len(balances) == 2
    params = session.requests[0]["json"]["params"]
    assert session.requests[0]["json"]["method"] == "find"
    assert params == {
        "contract": "tokens",
        "table": "balances",
        "query": {"account": "alice"},
        "limit": 1000,
    }


@pytest.mark.asyncio
async def test_fails_over_when_primary_exhausts_retries(sleep):
    session = FakeSession({
        PRIMARY: [FakeResponse(status=503, reason="Service Unavailable")] * 2,
        BACKUP: [FakeResponse(body={"result": BALANCES[:1]})],
    })
    ledger = TokenLedgerClient([PRIMARY, BACKUP], session, RetryPolicy(max_attempts=2), sleep=sleep)

    balances = await ledger.fetch_balances("alice")

    assert [b.symbol for b in balances] == ["BEE"]
    assert [r["url"] for r in session.requests] == [PRIMARY, PRIMARY, BACKUP]
    assert ledger.rotator.current == BACKUP


@pytest.mark.asyncio
async def test_rotation_persists_between_calls(sleep):
    session = FakeSession({
        PRIMARY: [ConnectionResetError()],
        BACKUP: [FakeResponse(body={"result": []}), FakeResponse(body={"result": []})],
    })
    ledger = TokenLedgerClient([PRIMARY, BACKUP], session, RetryPolicy(max_attempts=1), sleep=sleep)

    await ledger.fetch_balances("alice")
    await ledger.fetch_balances("alice")

    assert [r["url"] for r in session.requests] == [PRIMARY, BACKUP, BACKUP]


@pytest.mark.asyncio
async def test_all_endpoints_down_raises_last_error(sleep):
    session = FakeSession({
        PRIMARY: [FakeResponse(status=502, reason="Bad Gateway")],
        BACKUP: [FakeResponse(status=504, reason="Gateway Timeout")],
    })
    ledger = TokenLedgerClient([PRIMARY, BACKUP], session, RetryPolicy(max_attempts=1), sleep=sleep)

    with pytest.raises(RemoteCallError) as exc_info:
        await ledger.fetch_balances("alice")

    assert exc_info.value.status == 504


@pytest.mark.asyncio
async def test_terminal_error_does_not_fail_over(sleep):
    session = FakeSession({
        PRIMARY: [FakeResponse(status=400, reason="Bad Request")],
        BACKUP: [FakeResponse(body={"result": []})],
    })
    ledger = TokenLedgerClient([PRIMARY, BACKUP], session, sleep=sleep)

    with pytest.raises(RemoteCallError):
        await ledger.fetch_balances("alice")

    assert [r["url"] for r in session.requests] == [PRIMARY]
    assert sleep.calls == []


@pytest.mark.asyncio
async def test_error_body_surfaces(sleep):
    session = FakeSession({PRIMARY: [FakeResponse(body={"error": {"message": "invalid params"}})]})
    ledger = TokenLedgerClient([PRIMARY], session, sleep=sleep)

    with pytest.raises(RemoteCallError):
        await ledger.fetch_balances("alice")


def test_default_endpoint_used_when_none_configured():
    ledger = TokenLedgerClient([], FakeSession({}))

    assert ledger.rotator.current == "https://api.hive-engine.com/rpc/contracts"
