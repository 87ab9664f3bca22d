from __future__ import annotations

import asyncio

import pytest

from wagerbook.errors import NoWalletAvailable, UserRejected
from wagerbook.services.session_manager import ConnectionState, SessionManager


def test_connect_creates_session(fake_wallet, account):
    manager = SessionManager(fake_wallet)

    session = asyncio.run(manager.connect())

    assert manager.state is ConnectionState.CONNECTED
    assert session.account_address == account
    assert session.chain_id == 5
    assert session.can_sign
    assert session.generation == 1
    assert manager.current_session() is session


def test_connect_without_wallet_raises():
    manager = SessionManager(None)

    with pytest.raises(NoWalletAvailable):
        asyncio.run(manager.connect())
    assert manager.state is ConnectionState.DISCONNECTED


def test_connect_without_signer_raises(wallet_factory):
    manager = SessionManager(wallet_factory(can_sign=False))

    with pytest.raises(NoWalletAvailable):
        asyncio.run(manager.connect())


def test_rejected_connect_keeps_prior_session(fake_wallet):
    manager = SessionManager(fake_wallet)
    session = asyncio.run(manager.connect())

    fake_wallet.reject = True
    with pytest.raises(UserRejected):
        asyncio.run(manager.connect())

    assert manager.state is ConnectionState.CONNECTED
    assert manager.current_session() is session


def test_empty_account_list_is_rejection(wallet_factory):
    manager = SessionManager(wallet_factory(accounts=[]))

    with pytest.raises(UserRejected):
        asyncio.run(manager.connect())
    assert manager.state is ConnectionState.DISCONNECTED
    assert not manager.current_session().is_connected


def test_account_and_chain_changes_advance_generation(fake_wallet, other_account):
    manager = SessionManager(fake_wallet)
    seen = []
    manager.subscribe(seen.append)
    asyncio.run(manager.connect())

    switched = manager.accounts_changed([other_account])
    rechained = manager.chain_changed("0x1")

    assert switched.account_address == other_account
    assert switched.generation == 2
    assert rechained.chain_id == 1
    assert rechained.account_address == other_account
    assert rechained.generation == 3
    assert [session.generation for session in seen] == [1, 2, 3]


def test_same_account_or_chain_is_not_a_change(fake_wallet, account):
    manager = SessionManager(fake_wallet)
    session = asyncio.run(manager.connect())

    assert manager.accounts_changed([account.upper().replace("0X", "0x")]) is session
    assert manager.chain_changed(5) is session


def test_changes_before_connect_are_ignored(fake_wallet, other_account):
    manager = SessionManager(fake_wallet)

    session = manager.accounts_changed([other_account])

    assert not session.is_connected
    assert session.generation == 0


def test_disconnect_resets_session_with_fresh_generation(fake_wallet):
    manager = SessionManager(fake_wallet)
    asyncio.run(manager.connect())

    session = manager.disconnect()

    assert manager.state is ConnectionState.DISCONNECTED
    assert not session.is_connected
    assert session.generation == 2
    assert manager.disconnect() is session


def test_empty_accounts_event_disconnects(fake_wallet):
    manager = SessionManager(fake_wallet)
    asyncio.run(manager.connect())

    manager.accounts_changed([])

    assert manager.state is ConnectionState.DISCONNECTED


def test_provider_failure_disconnects(fake_wallet):
    manager = SessionManager(fake_wallet)
    asyncio.run(manager.connect())

    manager.provider_failed(RuntimeError("provider crashed"))

    assert manager.state is ConnectionState.DISCONNECTED
    assert not manager.current_session().is_connected


def test_unsubscribe_stops_notifications(fake_wallet, other_account):
    manager = SessionManager(fake_wallet)
    seen = []
    unsubscribe = manager.subscribe(seen.append)
    asyncio.run(manager.connect())
    unsubscribe()

    manager.accounts_changed([other_account])

    assert len(seen) == 1


def test_failing_listener_does_not_block_others(fake_wallet):
    manager = SessionManager(fake_wallet)
    seen = []

    def broken(session):
        raise RuntimeError("listener bug")

    manager.subscribe(broken)
    manager.subscribe(seen.append)
    asyncio.run(manager.connect())

    assert len(seen) == 1
