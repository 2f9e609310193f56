"""Shared pytest fixtures for all tests."""

import asyncio
import base64
import hashlib
import json
import uuid
from typing import List, Optional

import pytest

from common.constants import (
    CURRENT_INDEX_D_TAG,
    ENCRYPTION_NIP44,
    EVENT_KIND_CHUNK,
    EVENT_KIND_INDEX,
    EVENT_KIND_MANIFEST,
)
from relay.events import NostrEvent, matches_filter
from security import nip44

SECRET_KEY_HEX = "0000000000000000000000000000000000000000000000000000000000000001"
PUBKEY_HEX = "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
OTHER_SECRET_KEY_HEX = "0000000000000000000000000000000000000000000000000000000000000002"
OTHER_PUBKEY_HEX = "c6047f9441ed7d6d3045406e95c07cd85c778e4b8cef3ca7abac09b95c709ee5"


def make_event(
    kind: int,
    content: str = "",
    tags: Optional[List[List[str]]] = None,
    pubkey: str = PUBKEY_HEX,
    created_at: int = 1700000000,
    event_id: Optional[str] = None
) -> NostrEvent:
    """Build an unsigned event; ids are random unless given."""
    return NostrEvent(
        id=event_id or uuid.uuid4().hex + uuid.uuid4().hex,
        pubkey=pubkey,
        created_at=created_at,
        kind=kind,
        tags=tags or [],
        content=content,
        sig="",
    )


def make_index_event(payload: dict, d_tag: str = CURRENT_INDEX_D_TAG, **kwargs) -> NostrEvent:
    return make_event(EVENT_KIND_INDEX, json.dumps(payload), [["d", d_tag]], **kwargs)


def make_manifest_event(payload: dict, file_hash: str, tag: str = "x", **kwargs) -> NostrEvent:
    return make_event(EVENT_KIND_MANIFEST, json.dumps(payload), [[tag, file_hash]], **kwargs)


def make_chunk_event(
    file_hash: str,
    index: int,
    content: str = "",
    with_chunk_tag: bool = True,
    encryption: Optional[str] = None,
    **kwargs
) -> NostrEvent:
    tags = [["d", f"{file_hash}:{index}"], ["x", file_hash]]
    if with_chunk_tag:
        tags.append(["chunk", str(index)])
    if encryption:
        tags.append(["encryption", encryption])
    return make_event(EVENT_KIND_CHUNK, content, tags, **kwargs)


class FakeSubscription:
    """Async iterator over scripted events, recording whether it was closed."""

    def __init__(self, events: List[NostrEvent]):
        self._events = list(events)
        self.closed = False
        self.yielded = 0

    @property
    def remaining(self) -> int:
        return len(self._events)

    def __aiter__(self):
        return self

    async def __anext__(self) -> NostrEvent:
        await asyncio.sleep(0)
        if self.closed or not self._events:
            raise StopAsyncIteration
        self.yielded += 1
        return self._events.pop(0)

    async def aclose(self) -> None:
        self.closed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()


class FakeRelayPool:
    """
    In-memory stand-in for RelayPool.

    Events are delivered in list order to any filter they match, so a list
    with repeated entries simulates several relays returning the same event.
    """

    def __init__(self, events: Optional[List[NostrEvent]] = None):
        self.events: List[NostrEvent] = list(events or [])
        self.subscriptions: List[tuple] = []
        self.queries: List[dict] = []

    def add(self, *events: NostrEvent) -> None:
        self.events.extend(events)

    def subscribe_many_eose(self, relays, filter_, max_wait=None) -> FakeSubscription:
        subscription = FakeSubscription([e for e in self.events if matches_filter(e, filter_)])
        self.subscriptions.append((filter_, subscription))
        return subscription

    async def query_sync(self, relays, filter_, timeout=None) -> List[NostrEvent]:
        self.queries.append(filter_)
        await asyncio.sleep(0)
        found = {}
        for event in self.events:
            if matches_filter(event, filter_):
                found.setdefault(event.id, event)
        return list(found.values())


def encrypt_chunk(data: bytes, secret_key_hex: str = SECRET_KEY_HEX, pubkey: str = PUBKEY_HEX) -> str:
    """Self-encrypt base64 of data the way uploaders store binary chunks."""
    conversation_key = nip44.get_conversation_key(bytes.fromhex(secret_key_hex), pubkey)
    return nip44.encrypt(base64.b64encode(data).decode("ascii"), conversation_key)


def build_stored_file(
    data: bytes,
    chunk_size: int,
    encrypted: bool = True,
    file_name: str = "report.bin"
):
    """
    Build manifest payload and chunk events for data.

    Returns:
        (file_hash, manifest payload dict, list of chunk events)
    """
    file_hash = hashlib.sha256(data).hexdigest()
    pieces = [data[i:i + chunk_size] for i in range(0, len(data), chunk_size)]
    chunk_events = []
    for index, piece in enumerate(pieces):
        if encrypted:
            content = encrypt_chunk(piece)
            encryption = ENCRYPTION_NIP44
        else:
            content = base64.b64encode(piece).decode("ascii")
            encryption = None
        chunk_events.append(make_chunk_event(file_hash, index, content, encryption=encryption))

    manifest = {
        "version": 2,
        "file_name": file_name,
        "file_hash": file_hash,
        "file_size": len(data),
        "chunk_size": chunk_size,
        "total_chunks": len(pieces),
        "encryption": ENCRYPTION_NIP44 if encrypted else "none",
        "relays": [],
        "chunks": [{"index": i, "event_id": e.id} for i, e in enumerate(chunk_events)],
    }
    return file_hash, manifest, chunk_events


@pytest.fixture
def secret_key():
    """Secret key 1 as a zeroable buffer."""
    return bytearray.fromhex(SECRET_KEY_HEX)


@pytest.fixture
def fake_pool():
    return FakeRelayPool()


@pytest.fixture
def file_hash():
    return hashlib.sha256(b"fixture file").hexdigest()


@pytest.fixture
def temp_config_dir(tmp_path):
    """
    Create temporary config directory.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to temporary .nostrsave directory
    """
    config_dir = tmp_path / '.nostrsave'
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def temp_config(temp_config_dir):
    """Config instance backed by a temp file, downloading into the temp dir."""
    from cli.config import Config

    config = Config(temp_config_dir / 'config.json')
    config.data['download_dir'] = str(temp_config_dir.parent / 'downloads')
    return config
