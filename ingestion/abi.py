"""Event and call shapes of the casino and house token contracts."""

from __future__ import annotations

from web3 import Web3

from wagerbook.domain import EventKind


BET_PLACED_SIGNATURE = "BetPlaced(address,uint256,uint256,uint8)"
BET_RESOLVED_SIGNATURE = "BetResolved(address,uint256,bool,uint256)"
PLACE_BET_SIGNATURE = "placeBet(uint8)"
BALANCE_OF_SIGNATURE = "balanceOf(address)"

WORD_HEX_LENGTH = 64

# Non-indexed words in the log data section, in ABI order.
PLACED_DATA_FIELDS = ("request_id", "amount", "choice")
RESOLVED_DATA_FIELDS = ("request_id", "win", "payout")


def event_topic(signature: str) -> str:
    return Web3.to_hex(Web3.keccak(text=signature))


def function_selector(signature: str) -> str:
    return Web3.to_hex(Web3.keccak(text=signature)[:4])


EVENT_SIGNATURES = {
    EventKind.PLACED: BET_PLACED_SIGNATURE,
    EventKind.RESOLVED: BET_RESOLVED_SIGNATURE,
}
EVENT_TOPICS = {kind: event_topic(signature) for kind, signature in EVENT_SIGNATURES.items()}
EVENT_DATA_FIELDS = {
    EventKind.PLACED: PLACED_DATA_FIELDS,
    EventKind.RESOLVED: RESOLVED_DATA_FIELDS,
}

PLACE_BET_SELECTOR = function_selector(PLACE_BET_SIGNATURE)
BALANCE_OF_SELECTOR = function_selector(BALANCE_OF_SIGNATURE)


def _address_body(address: str) -> str:
    body = address[2:] if address.lower().startswith("0x") else address
    if len(body) != 40:
        raise ValueError(f"'{address}' is not a 20-byte hex address")
    int(body, 16)
    return body.lower()


def encode_uint(value: int) -> str:
    if value < 0:
        raise ValueError("ABI uint values must be non-negative")
    return format(value, "x").rjust(WORD_HEX_LENGTH, "0")


def encode_address(address: str) -> str:
    return _address_body(address).rjust(WORD_HEX_LENGTH, "0")


def address_topic(address: str) -> str:
    """Left-pad an address to the 32-byte form used for indexed topics."""

    return "0x" + encode_address(address)


def encode_place_bet(choice: int) -> str:
    return PLACE_BET_SELECTOR + encode_uint(choice)


def encode_balance_of(account: str) -> str:
    return BALANCE_OF_SELECTOR + encode_address(account)


__all__ = [
    "BALANCE_OF_SELECTOR",
    "EVENT_DATA_FIELDS",
    "EVENT_SIGNATURES",
    "EVENT_TOPICS",
    "PLACE_BET_SELECTOR",
    "WORD_HEX_LENGTH",
    "address_topic",
    "encode_address",
    "encode_balance_of",
    "encode_place_bet",
    "encode_uint",
    "event_topic",
    "function_selector",
]
