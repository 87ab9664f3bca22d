"""Decide when the ledger is rebuilt and publish only results that are still current."""

from __future__ import annotations

import asyncio
import dataclasses
import itertools
from datetime import datetime, timezone
from typing import Awaitable, Callable, TypeVar

from loguru import logger

from ingestion.service import BetStreams, EventSource, fetch_bet_streams, refetch_placements
from wagerbook.core.config import Settings, get_settings
from wagerbook.domain import GainSnapshot, LedgerSnapshot, LedgerView, Session
from wagerbook.errors import SourceError, SourceUnavailable

from .reconciler import reconcile
from .session_manager import SessionManager
from .stats_service import aggregate, extract_latest

T = TypeVar("T")
ViewListener = Callable[[LedgerView], None]
SessionKey = tuple[int | None, str]


class RefreshCoordinator:
    """Re-run reconciliation on session changes and explicit refresh signals.

    Every refresh captures the session generation when it starts. Its result is
    applied only if that generation is still current when the fetches finish,
    so a slow fetch for a previous account can never overwrite the view of the
    account connected now.
    """

    def __init__(
        self,
        source: EventSource,
        sessions: SessionManager,
        *,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._source = source
        self._sessions = sessions
        self.settings = settings or get_settings()
        self._sleep = sleep
        self._views: dict[SessionKey, LedgerView] = {}
        self._published_tickets: dict[SessionKey, int] = {}
        self._tickets = itertools.count(1)
        self._inflight: dict[asyncio.Task, int] = {}
        self._listeners: list[ViewListener] = []
        self._unsubscribe: Callable[[], None] | None = None

    # ------------------------------------------------------------------
    # Wiring

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._sessions.subscribe(self._on_session_change)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def subscribe(self, listener: ViewListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def current_view(self) -> LedgerView | None:
        return self.view_for(self._sessions.current_session())

    def view_for(self, session: Session) -> LedgerView | None:
        key = session.key
        return self._views.get(key) if key is not None else None

    # ------------------------------------------------------------------
    # Triggers

    def trigger(self, session: Session) -> asyncio.Task:
        """Schedule :meth:`on_trigger` on the running loop."""

        if self.settings.cancel_superseded_refreshes:
            self._cancel_superseded(session.generation)
        task = asyncio.get_running_loop().create_task(self.on_trigger(session))
        self._inflight[task] = session.generation
        task.add_done_callback(self._task_done)
        return task

    def request_refresh(self) -> asyncio.Task | None:
        """External refresh signal, e.g. after a confirmed bet submission."""

        session = self._sessions.current_session()
        if not session.is_connected:
            logger.debug("Refresh requested without a connected session; ignoring")
            return None
        return self.trigger(session)

    async def wait_idle(self) -> None:
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def _on_session_change(self, session: Session) -> None:
        if session.is_connected:
            self.trigger(session)
            return
        self._cancel_superseded(session.generation)
        self._views.clear()
        self._published_tickets.clear()
        logger.info("Cleared published ledger views at generation {}", session.generation)

    def _cancel_superseded(self, generation: int) -> None:
        for task, task_generation in list(self._inflight.items()):
            if task_generation < generation and not task.done():
                logger.debug("Cancelling refresh for superseded generation {}", task_generation)
                task.cancel()

    def _task_done(self, task: asyncio.Task) -> None:
        self._inflight.pop(task, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error("Ledger refresh task failed unexpectedly")

    # ------------------------------------------------------------------
    # Refresh

    def _is_current(self, generation: int) -> bool:
        return self._sessions.current_session().generation == generation

    async def _with_retry(self, operation: Callable[[], Awaitable[T]], generation: int) -> T:
        attempts = self.settings.source_retry_attempts
        schedule = self.settings.source_retry_backoff_schedule
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except SourceUnavailable as exc:
                if attempt >= attempts or not self._is_current(generation):
                    raise
                delay = schedule[min(attempt - 1, len(schedule) - 1)]
                logger.warning(
                    "Event source unavailable (attempt {}/{}): {}; retrying in {}s",
                    attempt,
                    attempts,
                    exc,
                    delay,
                )
                await self._sleep(delay)
        raise SourceUnavailable("Event source retries exhausted")

    async def on_trigger(self, session: Session) -> LedgerView | None:
        """Fetch, reconcile and publish the ledger for ``session``.

        Returns the published view, or ``None`` when the result was discarded
        as stale or superseded.
        """

        key = session.key
        if key is None or session.account_address is None:
            return None
        generation = session.generation
        ticket = next(self._tickets)
        account = session.account_address
        include_balance = self.settings.token_contract is not None

        try:
            streams = await self._with_retry(
                lambda: fetch_bet_streams(
                    self._source, account, settings=self.settings, include_balance=include_balance
                ),
                generation,
            )
            if not self._is_current(generation):
                logger.info("Discarding stale ledger fetch for generation {}", generation)
                return None
            snapshot = reconcile(
                streams.placed, streams.resolved, account_address=account, generation=generation
            )
            if snapshot.orphans and self.settings.widen_on_orphans and streams.placement_window_narrowed:
                snapshot = await self._widen_placements(streams, account, generation)
                if not self._is_current(generation):
                    logger.info("Discarding stale ledger fetch for generation {}", generation)
                    return None
        except SourceError as exc:
            if not self._is_current(generation):
                logger.info("Ignoring failure of stale refresh for generation {}: {}", generation, exc)
                return None
            logger.error("Ledger refresh failed for {}: {}", account, exc)
            return self._publish(key, ticket, self._error_view(key, generation, exc))

        view = self._build_view(key, snapshot, streams.token_balance_wei)
        return self._publish(key, ticket, view)

    async def _widen_placements(
        self, streams: BetStreams, account: str, generation: int
    ) -> LedgerSnapshot:
        logger.warning(
            "Orphan resolutions with placement window from block {}; refetching placements",
            streams.placed_window.from_block,
        )
        placed = await self._with_retry(
            lambda: refetch_placements(
                self._source, account, settings=self.settings, to_block=streams.placed_window.to_block
            ),
            generation,
        )
        return reconcile(placed, streams.resolved, account_address=account, generation=generation)

    def _build_view(
        self, key: SessionKey, snapshot: LedgerSnapshot, token_balance_wei: int | None
    ) -> LedgerView:
        orphans = snapshot.orphans
        if orphans:
            logger.warning(
                "{} orphan resolution(s) for {}: {}",
                len(orphans),
                snapshot.account_address,
                [orphan.correlation_id for orphan in orphans],
            )
        return LedgerView(
            session_key=key,
            generation=snapshot.generation,
            ledger=snapshot,
            stats=aggregate(snapshot),
            gain=extract_latest(snapshot, token_balance_wei=token_balance_wei),
            orphan_ids=tuple(orphan.correlation_id for orphan in orphans),
        )

    def _error_view(self, key: SessionKey, generation: int, exc: Exception) -> LedgerView:
        message = f"{type(exc).__name__}: {exc}"
        previous = self._views.get(key)
        if previous is not None:
            return dataclasses.replace(
                previous, error=message, published_at=datetime.now(timezone.utc)
            )
        empty = LedgerSnapshot(account_address=key[1], generation=generation)
        return LedgerView(
            session_key=key,
            generation=generation,
            ledger=empty,
            stats=aggregate(empty),
            gain=GainSnapshot(),
            error=message,
        )

    def _publish(self, key: SessionKey, ticket: int, view: LedgerView) -> LedgerView | None:
        if ticket < self._published_tickets.get(key, 0):
            logger.info("Discarding refresh superseded by a newer result for {}", key[1])
            return None
        self._views[key] = view
        self._published_tickets[key] = ticket
        logger.info(
            "Published ledger for {} generation={} bets={} error={}",
            key[1],
            view.generation,
            view.stats.total_bets,
            view.error,
        )
        for listener in list(self._listeners):
            try:
                listener(view)
            except Exception:
                logger.exception("Ledger view listener failed")
        return view
