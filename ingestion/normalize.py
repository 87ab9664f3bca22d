from __future__ import annotations

from typing import Any, Iterable

from loguru import logger

from wagerbook.domain import Choice, EventKind, RawLogEvent
from wagerbook.errors import MalformedLog

from .abi import EVENT_DATA_FIELDS, EVENT_TOPICS, WORD_HEX_LENGTH


def _strip_hex(value: str) -> str:
    return value[2:] if value[:2].lower() == "0x" else value


def parse_quantity(value: Any, field_name: str) -> int:
    """Decode a JSON-RPC quantity (hex string or int) into a non-negative int."""

    if isinstance(value, bool):
        raise MalformedLog(f"{field_name} must be a quantity, got bool")
    if isinstance(value, int):
        if value < 0:
            raise MalformedLog(f"{field_name} must be non-negative")
        return value
    if isinstance(value, str) and value.strip():
        body = _strip_hex(value.strip())
        if not body:
            return 0
        try:
            return int(body, 16)
        except ValueError as exc:
            raise MalformedLog(f"{field_name} is not valid hex: {value!r}") from exc
    raise MalformedLog(f"{field_name} is missing or not a quantity: {value!r}")


def _split_words(data: Any, expected: int) -> list[int]:
    if not isinstance(data, str):
        raise MalformedLog("log data must be a hex string")
    body = _strip_hex(data)
    if len(body) < expected * WORD_HEX_LENGTH:
        raise MalformedLog(
            f"log data holds {len(body) // WORD_HEX_LENGTH} words, expected {expected}"
        )
    words: list[int] = []
    for index in range(expected):
        chunk = body[index * WORD_HEX_LENGTH : (index + 1) * WORD_HEX_LENGTH]
        try:
            words.append(int(chunk, 16))
        except ValueError as exc:
            raise MalformedLog(f"log data word {index} is not valid hex") from exc
    return words


def _topic_address(topic: Any) -> str:
    if not isinstance(topic, str):
        raise MalformedLog("indexed player topic must be a hex string")
    body = _strip_hex(topic)
    if len(body) != WORD_HEX_LENGTH:
        raise MalformedLog(f"indexed player topic has unexpected length {len(body)}")
    try:
        int(body, 16)
    except ValueError as exc:
        raise MalformedLog("indexed player topic is not valid hex") from exc
    return "0x" + body[-40:].lower()


def _as_bool(word: int, field_name: str) -> bool:
    if word not in (0, 1):
        raise MalformedLog(f"{field_name} must encode a bool, got {word}")
    return bool(word)


def _as_choice(word: int) -> Choice:
    try:
        return Choice(word)
    except ValueError as exc:
        raise MalformedLog(f"choice must be 0 (even) or 1 (odd), got {word}") from exc


def _decode(entry: Any, event_kind: EventKind, block_timestamp: int) -> RawLogEvent:
    if not isinstance(entry, dict):
        raise MalformedLog("log entry must be an object")

    topics = entry.get("topics")
    if not isinstance(topics, list) or len(topics) < 2:
        raise MalformedLog("log entry is missing its indexed topics")
    topic0 = topics[0].lower() if isinstance(topics[0], str) else None
    if topic0 != EVENT_TOPICS[event_kind]:
        raise MalformedLog(f"log topic {topics[0]!r} does not match {event_kind.value} event")

    account = _topic_address(topics[1])
    fields = EVENT_DATA_FIELDS[event_kind]
    words = dict(zip(fields, _split_words(entry.get("data"), len(fields))))
    block_number = parse_quantity(entry.get("blockNumber"), "blockNumber")
    log_index = parse_quantity(entry.get("logIndex"), "logIndex")

    if event_kind is EventKind.PLACED:
        return RawLogEvent(
            event_kind=event_kind,
            correlation_id=words["request_id"],
            account_address=account,
            block_number=block_number,
            log_index=log_index,
            block_timestamp=block_timestamp,
            amount_wei=words["amount"],
            choice=_as_choice(words["choice"]),
        )
    return RawLogEvent(
        event_kind=event_kind,
        correlation_id=words["request_id"],
        account_address=account,
        block_number=block_number,
        log_index=log_index,
        block_timestamp=block_timestamp,
        win=_as_bool(words["win"], "win"),
        payout_wei=words["payout"],
    )


def normalize_log(
    entry: Any, event_kind: EventKind, *, block_timestamp: int = 0
) -> RawLogEvent:
    """Decode one `eth_getLogs` entry into a :class:`RawLogEvent`."""

    try:
        return _decode(entry, event_kind, block_timestamp)
    except MalformedLog as exc:
        if exc.entry is None:
            exc.entry = entry
        raise


def normalize_logs(entries: Iterable[Any], event_kind: EventKind) -> list[RawLogEvent]:
    events: list[RawLogEvent] = []
    for entry in entries:
        if isinstance(entry, dict) and entry.get("removed") is True:
            logger.debug("Skipping removed {} log {}", event_kind.value, entry.get("transactionHash"))
            continue
        events.append(normalize_log(entry, event_kind))
    return events
