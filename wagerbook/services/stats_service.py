"""Summary analytics derived from a reconciled ledger snapshot."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from wagerbook.domain import BetState, GainSnapshot, LedgerSnapshot, StatsSnapshot

_ONE_DECIMAL = Decimal("0.1")


def win_rate_percent(wins: int, total_bets: int) -> float:
    """Return ``100 * wins / total_bets`` rounded half-up to one decimal place."""

    if total_bets <= 0:
        return 0.0
    ratio = Decimal(100 * wins) / Decimal(total_bets)
    return float(ratio.quantize(_ONE_DECIMAL, rounding=ROUND_HALF_UP))


def aggregate(snapshot: LedgerSnapshot) -> StatsSnapshot:
    wins = losses = pending = 0
    total_payout_wei = 0
    for record in snapshot.records:
        if record.state is BetState.WON:
            wins += 1
            total_payout_wei += record.payout_wei
        elif record.state is BetState.LOST:
            losses += 1
        else:
            pending += 1

    total_bets = len(snapshot.records)
    return StatsSnapshot(
        total_bets=total_bets,
        wins=wins,
        losses=losses,
        pending=pending,
        total_payout_wei=total_payout_wei,
        win_rate_percent=win_rate_percent(wins, total_bets),
    )


def extract_latest(
    snapshot: LedgerSnapshot, *, token_balance_wei: int | None = None
) -> GainSnapshot:
    """Pick the resolved record with the greatest ``(block_number, log_index)``."""

    resolved = [
        record
        for record in snapshot.records
        if record.is_resolved and record.resolved_at is not None
    ]
    latest = max(resolved, key=lambda record: record.resolved_at.key, default=None)
    return GainSnapshot(latest_resolved=latest, token_balance_wei=token_balance_wei)
