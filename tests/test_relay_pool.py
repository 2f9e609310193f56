"""Tests for the websocket relay pool against an in-process aiohttp relay."""

import asyncio
import json
from contextlib import asynccontextmanager

import pytest
from aiohttp import WSMsgType, web
from aiohttp import test_utils

from common.constants import EVENT_KIND_CHUNK, EVENT_KIND_INDEX
from conftest import PUBKEY_HEX, make_event
from relay.events import build_filter, matches_filter
from relay.pool import RelayPool


class StubRelay:
    """
    Minimal relay: answers REQ with stored events matching the filter.

    Attributes:
        received: Every message the relay got, parsed
        send_eose: When False the relay never signals end of stored events
        bad_sub_ids: Also send frames whose subscription id is not a string
    """

    def __init__(self, events, send_eose=True, notice=None, bad_sub_ids=False):
        self.events = events
        self.send_eose = send_eose
        self.notice = notice
        self.bad_sub_ids = bad_sub_ids
        self.received = []

    async def handler(self, request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        if self.notice:
            await ws.send_str(json.dumps(["NOTICE", self.notice]))
        async for msg in ws:
            if msg.type != WSMsgType.TEXT:
                continue
            message = json.loads(msg.data)
            self.received.append(message)
            if message[0] == "REQ":
                sub_id, filter_ = message[1], message[2]
                await ws.send_str("not json")
                if self.bad_sub_ids:
                    await ws.send_str(json.dumps(["EVENT", [sub_id], {}]))
                    await ws.send_str(json.dumps(["EOSE", {"id": sub_id}]))
                for event in self.events:
                    # forwards foreign-author events too, like a misbehaving relay
                    if matches_filter(event, filter_) or event.pubkey != PUBKEY_HEX:
                        await ws.send_str(json.dumps(["EVENT", sub_id, event.model_dump()]))
                await ws.send_str(json.dumps(["EVENT", sub_id, {"id": "broken"}]))
                if self.send_eose:
                    await ws.send_str(json.dumps(["EOSE", sub_id]))
        return ws


@asynccontextmanager
async def running_relay(relay):
    app = web.Application()
    app.router.add_get("/", relay.handler)
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        yield str(server.make_url("/")).replace("http://", "ws://")
    finally:
        await server.close()


class TestRelayPool:

    @pytest.mark.asyncio
    async def test_query_sync_collects_until_eose(self):
        wanted = make_event(EVENT_KIND_INDEX, "{}", [["d", "nostrsave-index"]])
        other_kind = make_event(EVENT_KIND_CHUNK, "x")
        relay = StubRelay([wanted, other_kind])

        async with running_relay(relay) as url:
            async with RelayPool() as pool:
                events = await pool.query_sync(
                    [url], build_filter(EVENT_KIND_INDEX, PUBKEY_HEX, d_tag="nostrsave-index"), timeout=5
                )

        assert [e.id for e in events] == [wanted.id]

    @pytest.mark.asyncio
    async def test_events_from_other_authors_are_dropped(self):
        forged = make_event(EVENT_KIND_INDEX, "{}", pubkey="ab" * 32)
        relay = StubRelay([forged])

        async with running_relay(relay) as url:
            async with RelayPool() as pool:
                events = await pool.query_sync([url], build_filter(EVENT_KIND_INDEX, PUBKEY_HEX), timeout=5)

        assert events == []

    @pytest.mark.asyncio
    async def test_duplicate_events_across_relays_are_merged(self):
        event = make_event(EVENT_KIND_INDEX, "{}")
        first, second = StubRelay([event]), StubRelay([event])

        async with running_relay(first) as url_one, running_relay(second) as url_two:
            async with RelayPool() as pool:
                events = await pool.query_sync(
                    [url_one, url_two], build_filter(EVENT_KIND_INDEX, PUBKEY_HEX), timeout=5
                )

        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_unreachable_relay_is_skipped(self):
        event = make_event(EVENT_KIND_INDEX, "{}")
        relay = StubRelay([event], notice="welcome")

        async with running_relay(relay) as url:
            async with RelayPool(connect_timeout=1) as pool:
                events = await pool.query_sync(
                    [url, "ws://127.0.0.1:1"], build_filter(EVENT_KIND_INDEX, PUBKEY_HEX), timeout=5
                )

        assert [e.id for e in events] == [event.id]

    @pytest.mark.asyncio
    async def test_max_wait_ends_subscription_without_eose(self):
        event = make_event(EVENT_KIND_INDEX, "{}")
        relay = StubRelay([event], send_eose=False)

        async with running_relay(relay) as url:
            async with RelayPool() as pool:
                loop = asyncio.get_running_loop()
                started = loop.time()
                subscription = pool.subscribe_many_eose(
                    [url], build_filter(EVENT_KIND_INDEX, PUBKEY_HEX), max_wait=0.3
                )
                received = [e async for e in subscription]
                elapsed = loop.time() - started

        assert [e.id for e in received] == [event.id]
        assert elapsed < 3

    @pytest.mark.asyncio
    async def test_early_stop_sends_close(self):
        events = [make_event(EVENT_KIND_INDEX, "{}") for _ in range(3)]
        relay = StubRelay(events, send_eose=False)

        async with running_relay(relay) as url:
            async with RelayPool() as pool:
                subscription = pool.subscribe_many_eose(
                    [url], build_filter(EVENT_KIND_INDEX, PUBKEY_HEX), max_wait=5
                )
                async with subscription:
                    async for _ in subscription:
                        break
                for _ in range(50):
                    if any(m[0] == "CLOSE" for m in relay.received):
                        break
                    await asyncio.sleep(0.02)

        assert ["CLOSE", subscription.id] in relay.received

    @pytest.mark.asyncio
    async def test_non_string_subscription_ids_are_ignored(self):
        event = make_event(EVENT_KIND_INDEX, "{}")
        relay = StubRelay([event], bad_sub_ids=True)

        async with running_relay(relay) as url:
            async with RelayPool() as pool:
                events = await pool.query_sync([url], build_filter(EVENT_KIND_INDEX, PUBKEY_HEX), timeout=5)

        assert [e.id for e in events] == [event.id]
