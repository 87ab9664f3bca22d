"""Wallet session lifecycle and generation tracking."""

from __future__ import annotations

import itertools
from enum import Enum
from typing import Any, Callable, Mapping, Protocol

from loguru import logger

from wagerbook.domain import Session
from wagerbook.errors import NoWalletAvailable, UserRejected

# EIP-1193 "User Rejected Request"
USER_REJECTED_CODE = 4001

SessionListener = Callable[[Session], None]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class WalletProvider(Protocol):
    """Injected wallet (EIP-1193 style) used for connection and signing."""

    can_sign: bool

    async def request_accounts(self) -> list[str]:
        """Ask the user to expose accounts; raise with ``code=4001`` when declined."""

    async def chain_id(self) -> int | str:
        """Return the connected chain id."""

    async def send_transaction(self, transaction: Mapping[str, Any]) -> str:
        """Sign and broadcast ``transaction``, returning its hash."""

    async def wait_for_receipt(self, tx_hash: str) -> Mapping[str, Any]:
        """Block until ``tx_hash`` is mined and return its receipt."""


def _is_user_rejection(exc: BaseException) -> bool:
    code = getattr(exc, "code", None)
    return code == USER_REJECTED_CODE or isinstance(exc, UserRejected)


def _parse_chain_id(value: int | str) -> int:
    if isinstance(value, int):
        return value
    text = value.strip()
    return int(text, 16) if text.lower().startswith("0x") else int(text)


class SessionManager:
    """Own the current :class:`Session` and announce every generation change."""

    def __init__(self, provider: WalletProvider | None = None) -> None:
        self._provider = provider
        self._session = Session()
        self._state = ConnectionState.DISCONNECTED
        self._generations = itertools.count(1)
        self._listeners: list[SessionListener] = []

    @property
    def provider(self) -> WalletProvider | None:
        return self._provider

    @property
    def state(self) -> ConnectionState:
        return self._state

    def current_session(self) -> Session:
        return self._session

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def connect(self) -> Session:
        provider = self._provider
        if provider is None or not getattr(provider, "can_sign", False):
            raise NoWalletAvailable("No wallet with signing capability is available")

        previous_state = self._state
        self._state = ConnectionState.CONNECTING
        try:
            accounts = await provider.request_accounts()
            chain_id = _parse_chain_id(await provider.chain_id())
        except Exception as exc:
            self._state = previous_state
            if _is_user_rejection(exc):
                raise UserRejected("Wallet connection request was declined") from exc
            raise

        if not accounts:
            self._state = previous_state
            raise UserRejected("Wallet did not expose any account")

        logger.info("Wallet connected account={} chain={}", accounts[0], chain_id)
        return self._advance(accounts[0], chain_id)

    def accounts_changed(self, accounts: list[str]) -> Session:
        if self._state is not ConnectionState.CONNECTED:
            logger.debug("Ignoring accountsChanged while {}", self._state.value)
            return self._session
        if not accounts:
            return self.disconnect(reason="wallet exposed no accounts")
        account = accounts[0]
        current = self._session.account_address or ""
        if account.lower() == current.lower():
            return self._session
        logger.info("Wallet account changed {} -> {}", current, account)
        return self._advance(account, self._session.chain_id)

    def chain_changed(self, chain_id: int | str) -> Session:
        if self._state is not ConnectionState.CONNECTED:
            logger.debug("Ignoring chainChanged while {}", self._state.value)
            return self._session
        parsed = _parse_chain_id(chain_id)
        if parsed == self._session.chain_id:
            return self._session
        logger.info("Wallet chain changed {} -> {}", self._session.chain_id, parsed)
        return self._advance(self._session.account_address, parsed)

    def disconnect(self, *, reason: str | None = None) -> Session:
        if self._state is ConnectionState.DISCONNECTED and not self._session.is_connected:
            return self._session
        logger.info("Wallet disconnected ({})", reason or "requested")
        self._state = ConnectionState.DISCONNECTED
        self._session = Session(generation=next(self._generations))
        self._notify()
        return self._session

    def provider_failed(self, exc: BaseException) -> Session:
        logger.error("Wallet provider failed: {}", exc)
        return self.disconnect(reason=f"provider error: {exc}")

    def _advance(self, account: str | None, chain_id: int | None) -> Session:
        self._session = Session(
            account_address=account,
            chain_id=chain_id,
            can_sign=bool(getattr(self._provider, "can_sign", False)),
            generation=next(self._generations),
        )
        self._state = ConnectionState.CONNECTED
        self._notify()
        return self._session

    def _notify(self) -> None:
        session = self._session
        for listener in list(self._listeners):
            try:
                listener(session)
            except Exception:
                logger.exception("Session listener failed for generation {}", session.generation)
