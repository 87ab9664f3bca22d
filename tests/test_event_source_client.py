from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from ingestion.abi import EVENT_TOPICS, address_topic, encode_uint
from ingestion.client import EventSourceClient
from wagerbook.domain import Choice, EventKind
from wagerbook.errors import MalformedLog, SourceError, SourceUnavailable


def _log(kind: EventKind, account: str, *words: int, block: int, index: int = 0) -> dict:
    return {
        "topics": [EVENT_TOPICS[kind], address_topic(account)],
        "data": "0x" + "".join(encode_uint(word) for word in words),
        "blockNumber": hex(block),
        "logIndex": hex(index),
    }


class RpcRecorder:
    def __init__(self, results: dict[str, object]) -> None:
        self.results = results
        self.requests: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.requests.append(payload)
        method = payload["method"]
        result = self.results[method]
        if callable(result):
            result = result(payload["params"])
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": result})

    def methods(self) -> list[str]:
        return [payload["method"] for payload in self.requests]


def _client(handler, settings) -> EventSourceClient:
    return EventSourceClient(settings=settings, transport=httpx.MockTransport(handler))


def test_fetch_events_builds_filter_and_fills_timestamps(test_settings, account):
    recorder = RpcRecorder(
        {
            "eth_getLogs": [
                _log(EventKind.PLACED, account, 7, 5 * 10**17, 0, block=10, index=1),
                _log(EventKind.PLACED, account, 8, 10**17, 1, block=10, index=4),
                _log(EventKind.PLACED, account, 9, 10**17, 1, block=12),
            ],
            "eth_getBlockByNumber": lambda params: {"timestamp": hex(1_000 + int(params[0], 16))},
        }
    )

    async def run():
        async with _client(recorder, test_settings) as client:
            return await client.fetch_events("casino", EventKind.PLACED, account, 5, "latest")

    events = asyncio.run(run())

    assert [event.correlation_id for event in events] == [7, 8, 9]
    assert events[0].choice is Choice.EVEN
    assert [event.block_timestamp for event in events] == [1_010, 1_010, 1_012]

    log_filter = recorder.requests[0]["params"][0]
    assert log_filter["address"] == test_settings.contract_addresses["casino"]
    assert log_filter["fromBlock"] == "0x5"
    assert log_filter["toBlock"] == "latest"
    assert log_filter["topics"] == [EVENT_TOPICS[EventKind.PLACED], address_topic(account)]
    # one lookup per distinct block
    assert recorder.methods().count("eth_getBlockByNumber") == 2


def test_block_timestamp_is_cached(test_settings):
    recorder = RpcRecorder({"eth_getBlockByNumber": {"timestamp": "0x64"}})

    async def run():
        async with _client(recorder, test_settings) as client:
            first = await client.block_timestamp(3)
            second = await client.block_timestamp(3)
            return first, second

    assert asyncio.run(run()) == (100, 100)
    assert recorder.methods() == ["eth_getBlockByNumber"]


def test_latest_block_and_token_balance(test_settings, account):
    recorder = RpcRecorder({"eth_blockNumber": "0x3e8", "eth_call": hex(25 * 10**18)})

    async def run():
        async with _client(recorder, test_settings) as client:
            return await client.latest_block_number(), await client.token_balance("token", account)

    head, balance = asyncio.run(run())

    assert head == 1_000
    assert balance == 25 * 10**18
    call = recorder.requests[1]["params"][0]
    assert call["to"] == test_settings.contract_addresses["token"]
    assert call["data"].startswith("0x70a08231")
    assert call["data"].endswith(account[2:])


def test_provider_error_raises_source_unavailable(test_settings, account):
    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": payload["id"], "error": {"code": -32005, "message": "limit exceeded"}},
        )

    async def run():
        async with _client(handler, test_settings) as client:
            await client.fetch_events("casino", EventKind.RESOLVED, account)

    with pytest.raises(SourceUnavailable, match="limit exceeded"):
        asyncio.run(run())


def test_http_failure_raises_source_unavailable(test_settings, account):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="upstream down")

    async def run():
        async with _client(handler, test_settings) as client:
            await client.fetch_events("casino", EventKind.PLACED, account)

    with pytest.raises(SourceUnavailable):
        asyncio.run(run())


def test_transport_error_raises_source_unavailable(test_settings, account):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def run():
        async with _client(handler, test_settings) as client:
            await client.latest_block_number()

    with pytest.raises(SourceUnavailable):
        asyncio.run(run())


def test_undecodable_log_raises_malformed(test_settings, account):
    broken = _log(EventKind.PLACED, account, 7, 1, 0, block=3)
    broken["data"] = "0x1234"
    recorder = RpcRecorder({"eth_getLogs": [broken]})

    async def run():
        async with _client(recorder, test_settings) as client:
            await client.fetch_events("casino", EventKind.PLACED, account)

    with pytest.raises(MalformedLog):
        asyncio.run(run())


def test_missing_block_raises_malformed(test_settings):
    recorder = RpcRecorder({"eth_getBlockByNumber": None})

    async def run():
        async with _client(recorder, test_settings) as client:
            await client.block_timestamp(99)

    with pytest.raises(MalformedLog):
        asyncio.run(run())


def test_unknown_contract_name_is_rejected(test_settings, account):
    recorder = RpcRecorder({})

    async def run():
        async with _client(recorder, test_settings) as client:
            await client.fetch_events("roulette", EventKind.PLACED, account)

    with pytest.raises(SourceError, match="roulette"):
        asyncio.run(run())
    assert recorder.requests == []


def test_invalid_account_is_reported_as_source_error(test_settings):
    recorder = RpcRecorder({})

    async def run():
        async with _client(recorder, test_settings) as client:
            await client.fetch_events("casino", EventKind.PLACED, "0xnot-an-address")

    with pytest.raises(SourceError, match="20-byte"):
        asyncio.run(run())
    assert recorder.requests == []


def test_invalid_balance_call_is_reported_as_source_error(test_settings):
    recorder = RpcRecorder({})

    async def run():
        async with _client(recorder, test_settings) as client:
            await client.token_balance("token", "0x1234")

    with pytest.raises(SourceError):
        asyncio.run(run())
    assert recorder.requests == []
