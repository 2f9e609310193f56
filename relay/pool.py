"""Websocket relay pool: multiplexed subscriptions over one connection per relay."""

import asyncio
import json
import logging
import uuid
from typing import Dict, List, Optional

import aiohttp
from pydantic import ValidationError

from common.constants import QUERY_TIMEOUT_SECONDS, RELAY_CONNECT_TIMEOUT_SECONDS
from common.exceptions import RelayError
from relay.events import Filter, NostrEvent, matches_filter

logger = logging.getLogger(__name__)


def normalize_relay_url(url: str) -> str:
    return url.strip().rstrip("/")


class RelayConnection:
    """
    Single websocket to one relay.

    A reader task routes EVENT/EOSE/CLOSED messages to the queue registered
    for their subscription id.
    """

    def __init__(self, url: str, session: aiohttp.ClientSession, connect_timeout: float):
        self.url = url
        self._session = session
        self._connect_timeout = connect_timeout
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._listeners: Dict[str, asyncio.Queue] = {}
        self._connect_lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self) -> None:
        """
        Open the websocket if it is not open yet.

        Raises:
            RelayError: If the relay cannot be reached in time
        """
        async with self._connect_lock:
            if self.connected:
                return
            try:
                self._ws = await asyncio.wait_for(
                    self._session.ws_connect(self.url, heartbeat=30),
                    timeout=self._connect_timeout
                )
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                raise RelayError(f"Cannot connect to relay {self.url}: {e}") from e

            self._reader_task = asyncio.create_task(self._read_loop())
            logger.debug(f"Connected to relay {self.url}")

    async def _read_loop(self) -> None:
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning(f"Websocket error from {self.url}: {self._ws.exception()}")
                    break
        finally:
            for queue in self._listeners.values():
                queue.put_nowait(("closed", self.url, "connection closed"))
            self._listeners.clear()
            logger.debug(f"Reader for {self.url} stopped")

    def _dispatch(self, raw: str) -> None:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug(f"Ignoring non-JSON message from {self.url}")
            return

        if not isinstance(message, list) or not message:
            return

        msg_type = message[0]
        if msg_type == "NOTICE":
            logger.info(f"NOTICE from {self.url}: {message[1] if len(message) > 1 else ''}")
            return

        if len(message) < 2 or not isinstance(message[1], str):
            return
        queue = self._listeners.get(message[1])
        if queue is None:
            return

        if msg_type == "EVENT" and len(message) >= 3:
            queue.put_nowait(("event", self.url, message[2]))
        elif msg_type == "EOSE":
            queue.put_nowait(("eose", self.url, None))
        elif msg_type == "CLOSED":
            self._listeners.pop(message[1], None)
            queue.put_nowait(("closed", self.url, message[2] if len(message) > 2 else ""))

    async def subscribe(self, sub_id: str, filter_: Filter, queue: asyncio.Queue) -> None:
        self._listeners[sub_id] = queue
        await self._ws.send_str(json.dumps(["REQ", sub_id, filter_]))

    async def unsubscribe(self, sub_id: str) -> None:
        if self._listeners.pop(sub_id, None) is None or not self.connected:
            return
        try:
            await self._ws.send_str(json.dumps(["CLOSE", sub_id]))
        except (aiohttp.ClientError, ConnectionResetError) as e:
            logger.debug(f"Failed to send CLOSE to {self.url}: {e}")

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
        if self._reader_task is not None:
            await self._reader_task
            self._reader_task = None


class Subscription:
    """
    Events matching one filter across several relays, as an async iterator.

    Iteration ends once every relay has sent EOSE (or CLOSED, or failed to
    connect) or max_wait seconds have passed. Leaving an ``async with`` block
    or calling aclose() sends CLOSE to every relay still subscribed.
    """

    def __init__(self, pool: 'RelayPool', relays: List[str], filter_: Filter, max_wait: float):
        self.id = uuid.uuid4().hex[:16]
        self.filter = filter_
        self._pool = pool
        self._relays = list(dict.fromkeys(normalize_relay_url(r) for r in relays))
        self._max_wait = max_wait
        self._queue: asyncio.Queue = asyncio.Queue()
        self._pending: set[str] = set()
        self._subscribed: List[RelayConnection] = []
        self._deadline: Optional[float] = None
        self._started = False
        self._closed = False

    async def _start(self) -> None:
        self._started = True
        loop = asyncio.get_running_loop()
        self._deadline = loop.time() + self._max_wait

        results = await asyncio.gather(
            *(self._pool.ensure_relay(url) for url in self._relays),
            return_exceptions=True
        )
        for url, result in zip(self._relays, results):
            if isinstance(result, BaseException):
                logger.warning(f"Skipping relay {url}: {result}")
                continue
            try:
                await result.subscribe(self.id, self.filter, self._queue)
            except (aiohttp.ClientError, ConnectionResetError) as e:
                logger.warning(f"Failed to subscribe on {url}: {e}")
                continue
            self._subscribed.append(result)
            self._pending.add(url)

    def __aiter__(self) -> 'Subscription':
        return self

    async def __anext__(self) -> NostrEvent:
        if not self._started:
            await self._start()

        loop = asyncio.get_running_loop()
        while not self._closed and self._pending:
            remaining = self._deadline - loop.time()
            if remaining <= 0:
                break
            try:
                kind, url, payload = await asyncio.wait_for(self._queue.get(), timeout=remaining)
            except asyncio.TimeoutError:
                logger.debug(
                    f"Subscription {self.id} hit max wait of {self._max_wait}s "
                    f"with {len(self._pending)} relay(s) pending"
                )
                break

            if kind == "event":
                try:
                    event = NostrEvent.model_validate(payload)
                except ValidationError:
                    logger.debug(f"Dropping malformed event from {url}")
                    continue
                if not matches_filter(event, self.filter):
                    logger.debug(f"Dropping event {event.id[:8]} from {url} that does not match filter")
                    continue
                return event

            if kind == "closed" and payload:
                logger.debug(f"Relay {url} closed subscription {self.id}: {payload}")
            self._pending.discard(url)

        await self.aclose()
        raise StopAsyncIteration

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        for connection in self._subscribed:
            await connection.unsubscribe(self.id)

    async def __aenter__(self) -> 'Subscription':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


class RelayPool:
    """
    Pool of relay connections shared by all queries.

    Connections are opened lazily on first use and kept until close().
    """

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        connect_timeout: float = RELAY_CONNECT_TIMEOUT_SECONDS
    ):
        self._session = session
        self._owns_session = session is None
        self._connect_timeout = connect_timeout
        self._connections: Dict[str, RelayConnection] = {}

    async def ensure_relay(self, url: str) -> RelayConnection:
        url = normalize_relay_url(url)
        if self._session is None:
            self._session = aiohttp.ClientSession()

        connection = self._connections.get(url)
        if connection is None:
            connection = RelayConnection(url, self._session, self._connect_timeout)
            self._connections[url] = connection
        await connection.connect()
        return connection

    def subscribe_many_eose(
        self,
        relays: List[str],
        filter_: Filter,
        max_wait: float = QUERY_TIMEOUT_SECONDS
    ) -> Subscription:
        """
        Stream stored events matching filter_ from every relay.

        Args:
            relays: Relay websocket URLs
            filter_: REQ filter
            max_wait: Seconds after which the subscription ends regardless of EOSE

        Returns:
            Subscription to iterate with ``async for``
        """
        return Subscription(self, relays, filter_, max_wait)

    async def query_sync(
        self,
        relays: List[str],
        filter_: Filter,
        timeout: float = QUERY_TIMEOUT_SECONDS
    ) -> List[NostrEvent]:
        """
        Collect all stored events matching filter_, de-duplicated by id.

        Unreachable relays contribute nothing; this never raises for relay failures.
        """
        events: Dict[str, NostrEvent] = {}
        async with self.subscribe_many_eose(relays, filter_, max_wait=timeout) as subscription:
            async for event in subscription:
                events.setdefault(event.id, event)
        logger.debug(f"query_sync collected {len(events)} event(s) from {len(relays)} relay(s)")
        return list(events.values())

    async def close(self) -> None:
        """Close every relay connection and the HTTP session if the pool created it."""
        connections = list(self._connections.values())
        self._connections.clear()
        for connection in connections:
            await connection.close()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> 'RelayPool':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
