from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, localcontext
from typing import Any

from pydantic import BaseModel, Field, field_validator

from wagerbook.domain import BetRecord, BetState, Choice, GainSnapshot, LedgerView, StatsSnapshot

WEI_PER_ETHER = 10**18


def format_ether(wei: int) -> str:
    """Render a wei amount the way ethers' ``formatEther`` does (``"0.5"``, ``"1.0"``)."""

    sign = "-" if wei < 0 else ""
    whole, fraction = divmod(abs(wei), WEI_PER_ETHER)
    decimals = f"{fraction:018d}".rstrip("0") or "0"
    return f"{sign}{whole}.{decimals}"


def parse_ether(value: str | Decimal | int) -> int:
    """Convert an ether amount to wei exactly; reject sub-wei precision."""

    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"'{value}' is not a valid ether amount") from exc
    if not amount.is_finite():
        raise ValueError(f"'{value}' is not a valid ether amount")
    digits, exponent = amount.as_tuple()[1:]
    with localcontext() as ctx:
        ctx.prec = len(digits) + abs(exponent) + 19
        wei = amount * WEI_PER_ETHER
    if wei != wei.to_integral_value():
        raise ValueError(f"'{value}' has more than 18 decimal places")
    return int(wei)


def _choice_label(choice: Choice | None) -> str | None:
    if choice is None:
        return None
    return "Even" if choice is Choice.EVEN else "Odd"


class BetRow(BaseModel):
    id: str
    amount: str
    choice: str | None = None
    status: BetState
    payout: str
    timestamp: datetime | None = None
    block_number: int | None = None
    orphan: bool = False

    @classmethod
    def from_record(cls, record: BetRecord) -> "BetRow":
        placed = record.placed_at
        anchor = placed or record.resolved_at
        timestamp = None
        if placed is not None and placed.timestamp is not None:
            timestamp = datetime.fromtimestamp(placed.timestamp, tz=timezone.utc)
        return cls(
            id=str(record.correlation_id),
            amount=format_ether(record.amount_wei),
            choice=_choice_label(record.choice),
            status=record.state,
            payout=format_ether(record.payout_wei),
            timestamp=timestamp,
            block_number=anchor.block_number if anchor else None,
            orphan=record.orphan,
        )


class StatsSummary(BaseModel):
    total_bets: int
    wins: int
    losses: int
    pending: int
    total_won: str
    ratio: float = Field(description="Win rate in percent, one decimal place")

    @classmethod
    def from_snapshot(cls, stats: StatsSnapshot) -> "StatsSummary":
        return cls(
            total_bets=stats.total_bets,
            wins=stats.wins,
            losses=stats.losses,
            pending=stats.pending,
            total_won=format_ether(stats.total_payout_wei),
            ratio=stats.win_rate_percent,
        )


class GainSummary(BaseModel):
    token_balance: str | None = None
    last_bet: BetRow | None = None

    @classmethod
    def from_snapshot(cls, gain: GainSnapshot) -> "GainSummary":
        return cls(
            token_balance=(
                format_ether(gain.token_balance_wei) if gain.token_balance_wei is not None else None
            ),
            last_bet=BetRow.from_record(gain.latest_resolved) if gain.latest_resolved else None,
        )


class LedgerViewSummary(BaseModel):
    account: str | None
    generation: int
    bets: list[BetRow] = Field(default_factory=list)
    stats: StatsSummary
    gain: GainSummary
    orphan_ids: list[str] = Field(default_factory=list)
    error: str | None = None
    published_at: datetime

    @field_validator("orphan_ids", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> list[str]:
        if value is None:
            return []
        return [str(item) for item in value]

    @classmethod
    def from_view(cls, view: LedgerView) -> "LedgerViewSummary":
        return cls(
            account=view.ledger.account_address,
            generation=view.generation,
            bets=[BetRow.from_record(record) for record in view.ledger.records],
            stats=StatsSummary.from_snapshot(view.stats),
            gain=GainSummary.from_snapshot(view.gain),
            orphan_ids=list(view.orphan_ids),
            error=view.error,
            published_at=view.published_at,
        )


class SubmissionReceipt(BaseModel):
    tx_hash: str
    amount_wei: int
    choice: Choice
    block_number: int | None = None
    explorer_url: str | None = None
