from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from wagerbook.core.config import Settings
from wagerbook.domain import Choice, EventKind, RawLogEvent

ACCOUNT = "0x" + "ab" * 20
OTHER_ACCOUNT = "0x" + "cd" * 20
ONE_ETHER = 10**18


def placed_event(
    correlation_id: int,
    *,
    amount_wei: int = ONE_ETHER // 10,
    choice: Choice = Choice.EVEN,
    block: int = 1,
    log_index: int = 0,
    account: str = ACCOUNT,
    timestamp: int | None = None,
) -> RawLogEvent:
    return RawLogEvent(
        event_kind=EventKind.PLACED,
        correlation_id=correlation_id,
        account_address=account,
        block_number=block,
        log_index=log_index,
        block_timestamp=timestamp if timestamp is not None else 1_700_000_000 + block,
        amount_wei=amount_wei,
        choice=choice,
    )


def resolved_event(
    correlation_id: int,
    *,
    win: bool = True,
    payout_wei: int = 0,
    block: int = 2,
    log_index: int = 0,
    account: str = ACCOUNT,
) -> RawLogEvent:
    return RawLogEvent(
        event_kind=EventKind.RESOLVED,
        correlation_id=correlation_id,
        account_address=account,
        block_number=block,
        log_index=log_index,
        block_timestamp=1_700_000_000 + block,
        win=win,
        payout_wei=payout_wei,
    )


class FakeEventSource:
    """In-memory event source with optional gates and injected failures."""

    def __init__(
        self,
        placed: list[RawLogEvent] | None = None,
        resolved: list[RawLogEvent] | None = None,
        *,
        balance: int | None = 0,
        head: int = 1_000,
    ) -> None:
        self.placed = list(placed or [])
        self.resolved = list(resolved or [])
        self.balance = balance
        self.head = head
        self.calls: list[tuple[EventKind, str | None, Any, Any]] = []
        self.failures: list[Exception] = []
        self.gates: dict[str, asyncio.Event] = {}

    async def fetch_events(self, contract_id, event_kind, account_filter, from_block=0, to_block="latest"):
        self.calls.append((event_kind, account_filter, from_block, to_block))
        gate = self.gates.get((account_filter or "").lower())
        if gate is not None:
            await gate.wait()
        if self.failures:
            raise self.failures.pop(0)
        events = self.placed if event_kind is EventKind.PLACED else self.resolved
        upper = to_block if isinstance(to_block, int) else float("inf")
        return [
            event
            for event in events
            if (account_filter is None or event.account_address.lower() == account_filter.lower())
            and from_block <= event.block_number <= upper
        ]

    async def block_timestamp(self, block_number: int) -> int:
        return 1_700_000_000 + block_number

    async def latest_block_number(self) -> int:
        return self.head

    async def token_balance(self, contract_id: str, account: str) -> int:
        return self.balance


class WalletRejection(Exception):
    def __init__(self, message: str = "User rejected the request.", code: int = 4001) -> None:
        super().__init__(message)
        self.code = code


class FakeWallet:
    """EIP-1193 style wallet double."""

    def __init__(
        self,
        accounts: list[str] | None = None,
        *,
        chain_id: int | str = "0x5",
        can_sign: bool = True,
        reject: bool = False,
        receipt_status: str = "0x1",
    ) -> None:
        self.accounts = [ACCOUNT] if accounts is None else accounts
        self._chain_id = chain_id
        self.can_sign = can_sign
        self.reject = reject
        self.receipt_status = receipt_status
        self.sent: list[dict[str, Any]] = []

    async def request_accounts(self) -> list[str]:
        if self.reject:
            raise WalletRejection()
        return list(self.accounts)

    async def chain_id(self) -> int | str:
        return self._chain_id

    async def send_transaction(self, transaction):
        if self.reject:
            raise WalletRejection()
        self.sent.append(dict(transaction))
        return "0x" + "12" * 32

    async def wait_for_receipt(self, tx_hash: str):
        return {"transactionHash": tx_hash, "status": self.receipt_status, "blockNumber": "0x2a"}


@pytest.fixture
def make_placed():
    return placed_event


@pytest.fixture
def make_resolved():
    return resolved_event


@pytest.fixture
def account() -> str:
    return ACCOUNT


@pytest.fixture
def other_account() -> str:
    return OTHER_ACCOUNT


@pytest.fixture
def fake_source() -> FakeEventSource:
    return FakeEventSource()


@pytest.fixture
def fake_wallet() -> FakeWallet:
    return FakeWallet()


@pytest.fixture
def test_settings(monkeypatch) -> Settings:
    settings = Settings(
        rpc_url="http://rpc.test",
        source_retry_attempts=3,
        source_retry_backoff_seconds=[0.001],
        log_from_block=0,
    )
    monkeypatch.setattr("wagerbook.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("wagerbook.core.config.settings", settings)
    return settings


@pytest.fixture
def wallet_factory():
    return FakeWallet
