"""Typed domain representations shared by ingestion, reconciliation and publication."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class EventKind(str, Enum):
    PLACED = "placed"
    RESOLVED = "resolved"


class Choice(int, Enum):
    """Wager side as encoded by the casino contract (`uint8`)."""

    EVEN = 0
    ODD = 1


class BetState(str, Enum):
    PENDING = "Pending"
    WON = "Won"
    LOST = "Lost"


@dataclass(frozen=True, slots=True)
class Session:
    """Wallet connection observed by the session manager at one generation."""

    account_address: str | None = None
    chain_id: int | None = None
    can_sign: bool = False
    generation: int = 0

    @property
    def is_connected(self) -> bool:
        return self.account_address is not None

    @property
    def key(self) -> tuple[int | None, str] | None:
        """Identity used to keep each account's published view separate."""

        if self.account_address is None:
            return None
        return (self.chain_id, self.account_address.lower())


@dataclass(frozen=True, slots=True)
class RawLogEvent:
    """Decoded `BetPlaced` or `BetResolved` log entry."""

    event_kind: EventKind
    correlation_id: int
    account_address: str
    block_number: int
    log_index: int
    block_timestamp: int = 0
    amount_wei: int = 0
    choice: Choice | None = None
    win: bool | None = None
    payout_wei: int | None = None

    @property
    def position(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)


@dataclass(frozen=True, slots=True)
class LogPosition:
    block_number: int
    log_index: int
    timestamp: int | None = None

    @property
    def key(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)

    @classmethod
    def of(cls, event: RawLogEvent) -> "LogPosition":
        return cls(event.block_number, event.log_index, event.block_timestamp)


@dataclass(frozen=True, slots=True)
class BetRecord:
    """One wager as reconstructed from the placed/resolved log streams."""

    correlation_id: int
    account_address: str
    amount_wei: int
    choice: Choice | None
    state: BetState
    payout_wei: int = 0
    placed_at: LogPosition | None = None
    resolved_at: LogPosition | None = None
    orphan: bool = False

    @property
    def is_resolved(self) -> bool:
        return self.state is not BetState.PENDING


@dataclass(frozen=True, slots=True)
class OrphanResolution:
    """A resolution observed without its placement in the current fetch window."""

    correlation_id: int
    account_address: str
    resolved_at: LogPosition


@dataclass(frozen=True, slots=True)
class LedgerSnapshot:
    """Immutable result of one reconciliation pass for one account."""

    account_address: str | None
    generation: int
    records: tuple[BetRecord, ...] = ()
    ignored_placements: int = 0
    ignored_resolutions: int = 0

    def __len__(self) -> int:
        return len(self.records)

    @property
    def orphans(self) -> tuple[OrphanResolution, ...]:
        return tuple(
            OrphanResolution(record.correlation_id, record.account_address, record.resolved_at)
            for record in self.records
            if record.orphan and record.resolved_at is not None
        )

    @property
    def pending(self) -> tuple[BetRecord, ...]:
        return tuple(record for record in self.records if record.state is BetState.PENDING)

    def get(self, correlation_id: int) -> BetRecord | None:
        for record in self.records:
            if record.correlation_id == correlation_id:
                return record
        return None


@dataclass(frozen=True, slots=True)
class StatsSnapshot:
    total_bets: int
    wins: int
    losses: int
    pending: int
    total_payout_wei: int
    win_rate_percent: float


@dataclass(frozen=True, slots=True)
class GainSnapshot:
    latest_resolved: BetRecord | None = None
    token_balance_wei: int | None = None


@dataclass(frozen=True, slots=True)
class LedgerView:
    """Ledger, stats and gain published together for one account."""

    session_key: tuple[int | None, str] | None
    generation: int
    ledger: LedgerSnapshot
    stats: StatsSnapshot
    gain: GainSnapshot
    orphan_ids: tuple[int, ...] = ()
    error: str | None = None
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
