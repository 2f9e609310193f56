"""
Process-wide chunk cache keyed by (owner, file hash).

Concurrent requests for the same key share one in-flight retrieval; every
chunk found is merged into the entry's map as it arrives, so a retry after a
short fetch only asks relays for what is still missing.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from common.constants import CHUNK_FETCH_MAX_WAIT_SECONDS, CHUNK_ID_BATCH_SIZE
from common.types import ChunkEvent
from retrieval.chunk_fetcher import ChunkFetcher, ProgressCallback
from retrieval.schemas import ChunkInfo

logger = logging.getLogger(__name__)


@dataclass
class ChunkCacheEntry:
    """
    Cached chunks for one file.

    Attributes:
        chunks_by_index: Chunks collected so far; only ever grows
        in_flight: Retrieval currently running for this key, if any
        listeners: Progress callbacks of every caller waiting on this key
    """
    chunks_by_index: Dict[int, ChunkEvent] = field(default_factory=dict)
    in_flight: Optional[asyncio.Task] = None
    listeners: List[ProgressCallback] = field(default_factory=list)

    def sorted_chunks(self) -> List[ChunkEvent]:
        return sorted(self.chunks_by_index.values(), key=lambda chunk: chunk.index)

    def notify(self, fetched: int, total: int) -> None:
        for listener in list(self.listeners):
            listener(fetched, total)


class ChunkCache:
    """
    Chunk cache service; construct one per session and pass it around.

    At most one network retrieval runs per key at any time.
    """

    def __init__(
        self,
        batch_size: int = CHUNK_ID_BATCH_SIZE,
        max_wait: float = CHUNK_FETCH_MAX_WAIT_SECONDS
    ):
        self._entries: Dict[str, ChunkCacheEntry] = {}
        self.batch_size = batch_size
        self.max_wait = max_wait
        self.fetches_started = 0

    @staticmethod
    def make_cache_key(pubkey: str, file_hash: str) -> str:
        return f"{pubkey}:{file_hash}"

    def __len__(self) -> int:
        return len(self._entries)

    def get_cached_chunks(self, pubkey: str, file_hash: str) -> List[ChunkEvent]:
        """Chunks cached so far for a file, sorted by index; empty if unknown."""
        entry = self._entries.get(self.make_cache_key(pubkey, file_hash))
        return entry.sorted_chunks() if entry else []

    def is_in_flight(self, pubkey: str, file_hash: str) -> bool:
        entry = self._entries.get(self.make_cache_key(pubkey, file_hash))
        return entry is not None and entry.in_flight is not None

    async def _run(self, entry: ChunkCacheEntry, fetcher: ChunkFetcher) -> List[ChunkEvent]:
        try:
            return await fetcher.fetch()
        finally:
            entry.in_flight = None

    async def fetch_chunks(
        self,
        pool,
        relays: List[str],
        pubkey: str,
        file_hash: str,
        total_chunks: int,
        chunk_infos: Optional[List[ChunkInfo]] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> List[ChunkEvent]:
        """
        Return the chunks of a file, fetching only what is not cached yet.

        Args:
            pool: Relay pool providing subscribe_many_eose
            relays: Relay URLs to query
            pubkey: Owner hex public key
            file_hash: File content hash
            total_chunks: Number of chunks the manifest declares
            chunk_infos: Manifest chunk index to event id mapping
            on_progress: Called with (fetched, total) as chunks arrive

        Returns:
            Chunks sorted by index; fewer than total_chunks when relays came up short
        """
        key = self.make_cache_key(pubkey, file_hash)
        entry = self._entries.setdefault(key, ChunkCacheEntry())
        if on_progress:
            entry.listeners.append(on_progress)

        try:
            while True:
                if len(entry.chunks_by_index) >= total_chunks:
                    logger.debug(f"Cache hit for {key[:24]}... ({len(entry.chunks_by_index)} chunks)")
                    return entry.sorted_chunks()

                if entry.in_flight is None:
                    break

                logger.debug(f"Joining in-flight chunk fetch for {key[:24]}...")
                in_flight = entry.in_flight
                await asyncio.wait({in_flight})
                if not in_flight.cancelled() and in_flight.exception() is not None:
                    logger.warning(f"Shared chunk fetch failed, re-checking cache: {in_flight.exception()}")

            fetcher = ChunkFetcher(
                pool,
                relays,
                pubkey,
                file_hash,
                total_chunks,
                chunk_infos=chunk_infos,
                on_progress=entry.notify,
                chunks_by_index=entry.chunks_by_index,
                batch_size=self.batch_size,
                max_wait=self.max_wait
            )
            task = asyncio.create_task(self._run(entry, fetcher))
            entry.in_flight = task
            self.fetches_started += 1

            await asyncio.wait({task})
            return task.result()
        finally:
            if on_progress in entry.listeners:
                entry.listeners.remove(on_progress)
