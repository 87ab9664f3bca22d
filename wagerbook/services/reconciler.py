"""Merge the placed/resolved log streams into an immutable ledger snapshot.

The reconciler is a pure function of its inputs: every refresh re-runs it from
the raw events, so nothing is carried between calls and the output depends only
on the two event sequences (never on their arrival order).
"""

from __future__ import annotations

from typing import Iterable

from wagerbook.domain import (
    BetRecord,
    BetState,
    LedgerSnapshot,
    LogPosition,
    RawLogEvent,
)

RecordKey = tuple[str, int]


def _record_key(event: RawLogEvent) -> RecordKey:
    return (event.account_address.lower(), event.correlation_id)


def _sort_position(record: BetRecord) -> tuple[int, int]:
    anchor = record.placed_at or record.resolved_at
    return anchor.key if anchor is not None else (0, 0)


def _earliest_placements(placed_events: Iterable[RawLogEvent]) -> tuple[dict[RecordKey, RawLogEvent], int]:
    kept: dict[RecordKey, RawLogEvent] = {}
    duplicates = 0
    for event in placed_events:
        key = _record_key(event)
        current = kept.get(key)
        if current is None:
            kept[key] = event
            continue
        duplicates += 1
        if event.position < current.position:
            kept[key] = event
    return kept, duplicates


def _pending_record(event: RawLogEvent) -> BetRecord:
    return BetRecord(
        correlation_id=event.correlation_id,
        account_address=event.account_address,
        amount_wei=event.amount_wei,
        choice=event.choice,
        state=BetState.PENDING,
        payout_wei=0,
        placed_at=LogPosition.of(event),
    )


def _resolution_fields(event: RawLogEvent) -> dict[str, object]:
    won = bool(event.win)
    return {
        "state": BetState.WON if won else BetState.LOST,
        "payout_wei": (event.payout_wei or 0) if won else 0,
        "resolved_at": LogPosition.of(event),
    }


def reconcile(
    placed_events: Iterable[RawLogEvent],
    resolved_events: Iterable[RawLogEvent],
    *,
    account_address: str | None = None,
    generation: int = 0,
) -> LedgerSnapshot:
    """Build a :class:`LedgerSnapshot` from raw placed and resolved events.

    - Duplicate placements keep the earliest ``(block_number, log_index)``.
    - Resolutions apply in log order; the first one wins and later ones are
      ignored, so a record never leaves ``Won``/``Lost``.
    - A resolution without a placement becomes an orphan record with a zero
      amount instead of being dropped.
    """

    placements, ignored_placements = _earliest_placements(placed_events)
    records: dict[RecordKey, BetRecord] = {
        key: _pending_record(event) for key, event in placements.items()
    }

    ignored_resolutions = 0
    for event in sorted(resolved_events, key=lambda item: item.position):
        key = _record_key(event)
        record = records.get(key)
        if record is None:
            records[key] = BetRecord(
                correlation_id=event.correlation_id,
                account_address=event.account_address,
                amount_wei=0,
                choice=None,
                orphan=True,
                **_resolution_fields(event),
            )
            continue
        if record.is_resolved:
            ignored_resolutions += 1
            continue
        records[key] = BetRecord(
            correlation_id=record.correlation_id,
            account_address=record.account_address,
            amount_wei=record.amount_wei,
            choice=record.choice,
            placed_at=record.placed_at,
            orphan=record.orphan,
            **_resolution_fields(event),
        )

    ordered = sorted(
        records.values(),
        key=lambda record: (_sort_position(record), record.account_address.lower(), record.correlation_id),
    )
    return LedgerSnapshot(
        account_address=account_address,
        generation=generation,
        records=tuple(ordered),
        ignored_placements=ignored_placements,
        ignored_resolutions=ignored_resolutions,
    )
