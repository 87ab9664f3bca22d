"""Domain models representing reconciled wager data."""

from .models import (
    BetRecord,
    BetState,
    Choice,
    EventKind,
    GainSnapshot,
    LedgerSnapshot,
    LedgerView,
    LogPosition,
    OrphanResolution,
    RawLogEvent,
    Session,
    StatsSnapshot,
)

__all__ = [
    "BetRecord",
    "BetState",
    "Choice",
    "EventKind",
    "GainSnapshot",
    "LedgerSnapshot",
    "LedgerView",
    "LogPosition",
    "OrphanResolution",
    "RawLogEvent",
    "Session",
    "StatsSnapshot",
]
