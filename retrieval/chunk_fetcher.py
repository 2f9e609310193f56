"""
Chunk retrieval across relays.

Chunks are fetched in two phases: first by the event ids listed in the
manifest (in batches), then, if chunks are still missing, by the file's x
tag. Each phase stops as soon as every chunk index has been collected and is
bounded by a max wait when relays never send EOSE.
"""

import logging
import re
from typing import Callable, Dict, Iterable, List, Optional

from common.constants import (
    CHUNK_FETCH_MAX_WAIT_SECONDS,
    CHUNK_ID_BATCH_SIZE,
    ENCRYPTION_NONE,
    EVENT_KIND_CHUNK,
)
from common.types import ChunkEvent
from relay.events import Filter, NostrEvent, build_filter
from retrieval.schemas import ChunkInfo

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
IndexStrategy = Callable[[NostrEvent, Dict[str, int]], Optional[int]]

_LEADING_INT_RE = re.compile(r"^\s*(\d+)")


def _parse_index(value: Optional[str]) -> Optional[int]:
    """Leading decimal digits of value, or None."""
    if not value:
        return None
    match = _LEADING_INT_RE.match(value)
    return int(match.group(1)) if match else None


def index_from_chunk_tag(event: NostrEvent, index_by_event_id: Dict[str, int]) -> Optional[int]:
    return _parse_index(event.get_tag("chunk"))


def index_from_d_tag(event: NostrEvent, index_by_event_id: Dict[str, int]) -> Optional[int]:
    d_tag = event.get_tag("d")
    if not d_tag:
        return None
    return _parse_index(d_tag.split(":")[-1])


def index_from_manifest(event: NostrEvent, index_by_event_id: Dict[str, int]) -> Optional[int]:
    return index_by_event_id.get(event.id)


INDEX_STRATEGIES: List[IndexStrategy] = [
    index_from_chunk_tag,
    index_from_d_tag,
    index_from_manifest,
]


def resolve_chunk_index(
    event: NostrEvent,
    index_by_event_id: Optional[Dict[str, int]] = None,
    strategies: Iterable[IndexStrategy] = INDEX_STRATEGIES
) -> Optional[int]:
    """First index any strategy yields for event, or None if it cannot be placed."""
    index_by_event_id = index_by_event_id or {}
    for strategy in strategies:
        index = strategy(event, index_by_event_id)
        if index is not None:
            return index
    return None


def _batches(items: List[str], size: int) -> Iterable[List[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class ChunkFetcher:
    """
    Collects the chunk events of one file into chunks_by_index.

    chunks_by_index may be shared with a cache entry; chunks already present
    count towards completion and are never replaced.
    """

    def __init__(
        self,
        pool,
        relays: List[str],
        pubkey: str,
        file_hash: str,
        total_chunks: int,
        chunk_infos: Optional[List[ChunkInfo]] = None,
        on_progress: Optional[ProgressCallback] = None,
        chunks_by_index: Optional[Dict[int, ChunkEvent]] = None,
        batch_size: int = CHUNK_ID_BATCH_SIZE,
        max_wait: float = CHUNK_FETCH_MAX_WAIT_SECONDS
    ):
        self.pool = pool
        self.relays = relays
        self.pubkey = pubkey
        self.file_hash = file_hash
        self.total_chunks = total_chunks
        self.on_progress = on_progress
        self.chunks_by_index = chunks_by_index if chunks_by_index is not None else {}
        self.batch_size = batch_size
        self.max_wait = max_wait

        self.index_by_event_id: Dict[str, int] = {}
        for info in chunk_infos or []:
            if info.event_id:
                self.index_by_event_id[info.event_id] = info.index

        self.seen_event_ids: set[str] = set()
        self.unplaceable_records = 0

    def is_complete(self) -> bool:
        return len(self.chunks_by_index) >= self.total_chunks

    def sorted_chunks(self) -> List[ChunkEvent]:
        return sorted(self.chunks_by_index.values(), key=lambda chunk: chunk.index)

    def handle_event(self, event: NostrEvent) -> None:
        """Place one incoming chunk event; duplicates and unplaceable events are ignored."""
        if event.id in self.seen_event_ids:
            return
        self.seen_event_ids.add(event.id)

        index = resolve_chunk_index(event, self.index_by_event_id)
        if index is None or index >= self.total_chunks:
            self.unplaceable_records += 1
            logger.debug(f"Discarding chunk event {event.id[:8]} without a usable index (got {index})")
            return

        if index in self.chunks_by_index:
            return

        self.chunks_by_index[index] = ChunkEvent(
            index=index,
            content=event.content,
            encryption=event.get_tag("encryption") or ENCRYPTION_NONE
        )
        if self.on_progress:
            self.on_progress(len(self.chunks_by_index), self.total_chunks)

    async def _drain(self, filter_: Filter) -> None:
        """Feed one subscription into handle_event until done or complete."""
        subscription = self.pool.subscribe_many_eose(self.relays, filter_, max_wait=self.max_wait)
        async with subscription:
            async for event in subscription:
                self.handle_event(event)
                if self.is_complete():
                    logger.debug("All chunks collected, closing subscription")
                    break

    async def fetch(self) -> List[ChunkEvent]:
        """
        Run both phases and return the collected chunks sorted by index.

        The result may be shorter than total_chunks; callers must check.
        """
        logger.info(
            f"Fetching chunks for {self.file_hash[:16]} "
            f"[total={self.total_chunks}, known_ids={len(self.index_by_event_id)}, "
            f"cached={len(self.chunks_by_index)}]"
        )

        if self.chunks_by_index and self.on_progress:
            self.on_progress(len(self.chunks_by_index), self.total_chunks)

        if not self.is_complete() and self.index_by_event_id:
            missing_ids = [
                event_id for event_id, index in self.index_by_event_id.items()
                if index not in self.chunks_by_index
            ]
            for batch in _batches(missing_ids, self.batch_size):
                filter_ = build_filter(EVENT_KIND_CHUNK, self.pubkey, ids=batch)
                logger.debug(f"Fetching batch of {len(batch)} chunk id(s)")
                await self._drain(filter_)
                if self.is_complete():
                    break

        if not self.is_complete():
            logger.debug(
                f"Falling back to x tag query, {len(self.chunks_by_index)}/{self.total_chunks} collected"
            )
            await self._drain(build_filter(EVENT_KIND_CHUNK, self.pubkey, x_tag=self.file_hash))

        if self.unplaceable_records:
            logger.warning(
                f"Discarded {self.unplaceable_records} chunk event(s) without a usable index "
                f"for {self.file_hash[:16]}"
            )

        chunks = self.sorted_chunks()
        logger.info(f"Collected {len(chunks)}/{self.total_chunks} chunks for {self.file_hash[:16]}")
        return chunks
