"""Wager placement boundary: send ``placeBet`` and trigger a ledger refresh once mined."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping

from loguru import logger

from ingestion.abi import encode_place_bet
from ingestion.normalize import parse_quantity
from wagerbook.core.config import Settings, get_settings
from wagerbook.domain import Choice
from wagerbook.errors import MalformedLog, NoWalletAvailable, SubmissionFailed, UserRejected
from wagerbook.schemas import SubmissionReceipt, parse_ether

from .refresh_coordinator import RefreshCoordinator
from .session_manager import SessionManager, USER_REJECTED_CODE


def _receipt_succeeded(receipt: Mapping[str, Any]) -> bool:
    status = receipt.get("status")
    if status is None:
        return False
    try:
        return parse_quantity(status, "status") == 1
    except MalformedLog:
        return False


class BetSubmitter:
    def __init__(
        self,
        sessions: SessionManager,
        coordinator: RefreshCoordinator | None = None,
        *,
        settings: Settings | None = None,
    ) -> None:
        self._sessions = sessions
        self._coordinator = coordinator
        self.settings = settings or get_settings()

    def validate_amount(self, amount_ether: str | Decimal) -> int:
        amount_wei = parse_ether(amount_ether)
        minimum = parse_ether(self.settings.min_bet_ether)
        maximum = parse_ether(self.settings.max_bet_ether)
        if not minimum <= amount_wei <= maximum:
            raise ValueError(
                f"Bet amount must be between {self.settings.min_bet_ether} and "
                f"{self.settings.max_bet_ether} ETH"
            )
        return amount_wei

    async def place_bet(self, amount_ether: str | Decimal, choice: Choice | int) -> SubmissionReceipt:
        session = self._sessions.current_session()
        provider = self._sessions.provider
        if provider is None or not session.is_connected or not session.can_sign:
            raise NoWalletAvailable("Connect a wallet that can sign before placing a bet")

        bet_choice = Choice(choice)
        amount_wei = self.validate_amount(amount_ether)
        transaction = {
            "from": session.account_address,
            "to": self.settings.contract_address(self.settings.casino_contract),
            "value": hex(amount_wei),
            "data": encode_place_bet(bet_choice.value),
        }

        logger.info(
            "Submitting placeBet choice={} amount_wei={} from {}",
            bet_choice.name,
            amount_wei,
            session.account_address,
        )
        try:
            tx_hash = await provider.send_transaction(transaction)
            receipt = await provider.wait_for_receipt(tx_hash)
        except Exception as exc:
            if getattr(exc, "code", None) == USER_REJECTED_CODE:
                raise UserRejected("Transaction was declined in the wallet") from exc
            raise SubmissionFailed(str(exc) or "Transaction failed") from exc

        if not _receipt_succeeded(receipt):
            raise SubmissionFailed(f"Transaction {tx_hash} reverted")

        block_number = receipt.get("blockNumber")
        logger.info("placeBet confirmed tx={} block={}", tx_hash, block_number)
        if self._coordinator is not None:
            self._coordinator.request_refresh()

        return SubmissionReceipt(
            tx_hash=tx_hash,
            amount_wei=amount_wei,
            choice=bet_choice,
            block_number=parse_quantity(block_number, "blockNumber") if block_number is not None else None,
            explorer_url=self.settings.explorer_tx_url.format(tx_hash),
        )
