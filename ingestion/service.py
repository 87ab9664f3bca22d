from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Protocol, TypeVar

from loguru import logger

from wagerbook.core.config import Settings
from wagerbook.domain import EventKind, RawLogEvent
from wagerbook.errors import SourceError

from .client import BlockTag

T = TypeVar("T")


class EventSource(Protocol):
    """Read-only log source consumed by the refresh coordinator."""

    async def fetch_events(
        self,
        contract_id: str,
        event_kind: EventKind,
        account_filter: str | None,
        from_block: BlockTag = 0,
        to_block: BlockTag = "latest",
    ) -> list[RawLogEvent]:
        """Return decoded events for one contract/topic/account filter."""

    async def block_timestamp(self, block_number: int) -> int:
        """Return the timestamp of ``block_number``."""

    async def latest_block_number(self) -> int:
        """Return the current chain head."""

    async def token_balance(self, contract_id: str, account: str) -> int:
        """Return an ERC-20 balance in base units."""


@dataclass(slots=True, frozen=True)
class BlockWindow:
    from_block: int
    to_block: BlockTag = "latest"


@dataclass(slots=True)
class BetStreams:
    placed: list[RawLogEvent]
    resolved: list[RawLogEvent]
    placed_window: BlockWindow
    resolved_window: BlockWindow
    token_balance_wei: int | None = None
    full_from_block: int = 0

    @property
    def placement_window_narrowed(self) -> bool:
        return self.placed_window.from_block > self.full_from_block


async def plan_windows(source: EventSource, settings: Settings) -> tuple[BlockWindow, BlockWindow]:
    """Resolve the placement and resolution block windows from the lookback settings."""

    full = BlockWindow(settings.log_from_block)
    lookbacks = (settings.placement_lookback_blocks, settings.resolution_lookback_blocks)
    if all(value is None for value in lookbacks):
        return full, full

    head = await source.latest_block_number()

    def _window(lookback: int | None) -> BlockWindow:
        if lookback is None:
            return BlockWindow(settings.log_from_block, head)
        return BlockWindow(max(settings.log_from_block, head - lookback + 1), head)

    return _window(lookbacks[0]), _window(lookbacks[1])


async def _gather_or_cancel(*operations: Awaitable[T]) -> list[T]:
    """Like ``asyncio.gather`` but cancels the remaining operations once one fails."""

    tasks = [asyncio.ensure_future(operation) for operation in operations]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        raise


async def _token_balance(source: EventSource, contract_id: str | None, account: str) -> int | None:
    if contract_id is None:
        return None
    try:
        return await source.token_balance(contract_id, account)
    except SourceError as exc:
        logger.warning("Token balance lookup failed for {}: {}", account, exc)
        return None


async def fetch_bet_streams(
    source: EventSource,
    account: str,
    *,
    settings: Settings,
    include_balance: bool = True,
) -> BetStreams:
    """Fetch the placed and resolved streams (and token balance) concurrently.

    A failed balance lookup only drops the balance; a failed stream fetch
    cancels its sibling and propagates.
    """

    placed_window, resolved_window = await plan_windows(source, settings)
    contract = settings.casino_contract
    balance_contract = settings.token_contract if include_balance else None

    placed, resolved, balance = await _gather_or_cancel(
        source.fetch_events(
            contract, EventKind.PLACED, account, placed_window.from_block, placed_window.to_block
        ),
        source.fetch_events(
            contract, EventKind.RESOLVED, account, resolved_window.from_block, resolved_window.to_block
        ),
        _token_balance(source, balance_contract, account),
    )
    logger.info(
        "Fetched {} placed and {} resolved events for {}",
        len(placed),
        len(resolved),
        account,
    )
    return BetStreams(
        placed=placed,
        resolved=resolved,
        placed_window=placed_window,
        resolved_window=resolved_window,
        token_balance_wei=balance,
        full_from_block=settings.log_from_block,
    )


async def refetch_placements(
    source: EventSource, account: str, *, settings: Settings, to_block: BlockTag = "latest"
) -> list[RawLogEvent]:
    """Fetch placements over the full configured range."""

    return await source.fetch_events(
        settings.casino_contract, EventKind.PLACED, account, settings.log_from_block, to_block
    )
