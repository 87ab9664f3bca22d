from __future__ import annotations

import asyncio
import dataclasses
import itertools
from typing import Any, Iterable

import httpx
from loguru import logger

from wagerbook.core.config import Settings, get_settings
from wagerbook.domain import EventKind, RawLogEvent
from wagerbook.errors import MalformedLog, SourceError, SourceUnavailable

from .abi import EVENT_TOPICS, address_topic, encode_balance_of
from .normalize import normalize_logs, parse_quantity


BlockTag = int | str

_NAMED_BLOCK_TAGS = {"latest", "earliest", "pending", "safe", "finalized"}


def _block_tag(value: BlockTag) -> str:
    if isinstance(value, int):
        if value < 0:
            raise ValueError("block numbers must be non-negative")
        return hex(value)
    if value in _NAMED_BLOCK_TAGS:
        return value
    raise ValueError(f"Unsupported block tag '{value}'")


class EventSourceClient:
    """Thin JSON-RPC wrapper for the casino's historical log stream."""

    def __init__(
        self,
        *,
        rpc_url: str | None = None,
        timeout: float | None = None,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.rpc_url = rpc_url or str(self.settings.rpc_url)
        self.timeout = timeout or self.settings.rpc_timeout_seconds
        self.client = httpx.AsyncClient(timeout=self.timeout, transport=transport)
        self._request_ids = itertools.count(1)
        self._block_timestamps: dict[int, int] = {}

    async def _call(self, method: str, params: list[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": method,
            "params": params,
        }
        try:
            response = await self.client.post(self.rpc_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise SourceUnavailable(f"{method} request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise SourceUnavailable(f"{method} returned a non-JSON body") from exc

        if not isinstance(body, dict):
            raise SourceUnavailable(f"{method} returned an unexpected payload")
        error = body.get("error")
        if error:
            raise SourceUnavailable(f"{method} returned provider error: {error}")
        if "result" not in body:
            raise SourceUnavailable(f"{method} response is missing a result")
        return body["result"]

    async def fetch_events(
        self,
        contract_id: str,
        event_kind: EventKind,
        account_filter: str | None,
        from_block: BlockTag = 0,
        to_block: BlockTag = "latest",
    ) -> list[RawLogEvent]:
        """Return decoded events of ``event_kind`` emitted for ``account_filter``."""

        try:
            topics: list[str] = [EVENT_TOPICS[event_kind]]
            if account_filter:
                topics.append(address_topic(account_filter))
            log_filter = {
                "address": self.settings.contract_address(contract_id),
                "fromBlock": _block_tag(from_block),
                "toBlock": _block_tag(to_block),
                "topics": topics,
            }
        except (KeyError, ValueError) as exc:
            raise SourceError(f"Invalid eth_getLogs query: {exc}") from exc
        logger.info("RPC eth_getLogs {} filter={}", event_kind.value, log_filter)
        result = await self._call("eth_getLogs", [log_filter])
        if not isinstance(result, list):
            raise MalformedLog("eth_getLogs result is not a list", entry=result)

        events = normalize_logs(result, event_kind)
        timestamps = await self._timestamps_for(event.block_number for event in events)
        return [
            dataclasses.replace(event, block_timestamp=timestamps[event.block_number])
            for event in events
        ]

    async def block_timestamp(self, block_number: int) -> int:
        cached = self._block_timestamps.get(block_number)
        if cached is not None:
            return cached
        block = await self._call("eth_getBlockByNumber", [_block_tag(block_number), False])
        if not isinstance(block, dict):
            raise MalformedLog(f"block {block_number} was not returned by the provider", entry=block)
        timestamp = parse_quantity(block.get("timestamp"), "timestamp")
        self._block_timestamps[block_number] = timestamp
        return timestamp

    async def _timestamps_for(self, block_numbers: Iterable[int]) -> dict[int, int]:
        unique = sorted(set(block_numbers))
        values = await asyncio.gather(*(self.block_timestamp(number) for number in unique))
        return dict(zip(unique, values))

    async def latest_block_number(self) -> int:
        result = await self._call("eth_blockNumber", [])
        return parse_quantity(result, "blockNumber")

    async def token_balance(self, contract_id: str, account: str) -> int:
        try:
            call = {
                "to": self.settings.contract_address(contract_id),
                "data": encode_balance_of(account),
            }
        except (KeyError, ValueError) as exc:
            raise SourceError(f"Invalid balanceOf call: {exc}") from exc
        result = await self._call("eth_call", [call, "latest"])
        return parse_quantity(result, "balanceOf")

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "EventSourceClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
