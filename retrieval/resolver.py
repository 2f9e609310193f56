"""
Index and manifest resolution.

Index pages are addressed by d-tag: page 1 is the mutable current index and
page N > 1 maps to archive number ``total_archives + 2 - N``. Resolving an
archive therefore takes two steps: fetch page 1 to learn total_archives,
then fetch the archive tag computed from it.
"""

import logging
from typing import List, Optional

from common.constants import (
    ARCHIVE_INDEX_D_TAG_PREFIX,
    CURRENT_INDEX_D_TAG,
    EVENT_KIND_INDEX,
    EVENT_KIND_MANIFEST,
    QUERY_TIMEOUT_SECONDS,
)
from common.exceptions import ParseFailureError
from relay.events import NostrEvent, build_filter
from retrieval.schemas import FileIndex, Manifest, parse_record

logger = logging.getLogger(__name__)


def archive_d_tag(archive_number: int) -> str:
    return f"{ARCHIVE_INDEX_D_TAG_PREFIX}{archive_number}"


def get_d_tag_for_page(page: int, total_archives: int) -> str:
    """
    Compute the d-tag of an index page.

    Args:
        page: Logical page number, 1-based
        total_archives: total_archives field of the current index

    Returns:
        d-tag string
    """
    if page < 1:
        raise ValueError(f"Page numbers start at 1, got {page}")
    if page == 1:
        return CURRENT_INDEX_D_TAG
    return archive_d_tag(total_archives + 2 - page)


def latest_event(events: List[NostrEvent]) -> Optional[NostrEvent]:
    """Most recent event by created_at; the first seen wins ties."""
    latest = None
    for event in events:
        if latest is None or event.created_at > latest.created_at:
            latest = event
    return latest


class RecordResolver:
    """
    Fetches index and manifest records for an author from a set of relays.

    Malformed payloads are logged and treated as absent; unsupported schema
    versions raise UnsupportedVersionError.
    """

    def __init__(self, pool, relays: List[str], timeout: float = QUERY_TIMEOUT_SECONDS):
        self.pool = pool
        self.relays = relays
        self.timeout = timeout

    async def _fetch_index_by_d_tag(self, pubkey: str, d_tag: str) -> Optional[FileIndex]:
        filter_ = build_filter(EVENT_KIND_INDEX, pubkey, d_tag=d_tag, limit=1)
        events = await self.pool.query_sync(self.relays, filter_, timeout=self.timeout)
        event = latest_event(events)
        if event is None:
            logger.debug(f"No index found for d-tag {d_tag}")
            return None

        try:
            return parse_record(event.content, FileIndex, "index")
        except ParseFailureError as e:
            logger.error(f"Ignoring index {event.id[:8]} at {d_tag}: {e}")
            return None

    async def fetch_current_index(self, pubkey: str) -> Optional[FileIndex]:
        """Fetch page 1, the current index."""
        return await self._fetch_index_by_d_tag(pubkey, CURRENT_INDEX_D_TAG)

    async def fetch_archive_page(
        self,
        pubkey: str,
        page: int,
        current_index: FileIndex
    ) -> Optional[FileIndex]:
        """
        Fetch index page N > 1 given an already resolved current index.

        Args:
            pubkey: Author hex public key
            page: Logical page number (2..total_archives + 1)
            current_index: Page 1, providing total_archives
        """
        if page == 1:
            return current_index
        d_tag = get_d_tag_for_page(page, current_index.total_archives)
        return await self._fetch_index_by_d_tag(pubkey, d_tag)

    async def fetch_index(self, pubkey: str, page: int = 1) -> Optional[FileIndex]:
        """
        Fetch any index page.

        Pages beyond 1 resolve page 1 first; if it is absent no other page
        can be addressed and None is returned.
        """
        current_index = await self.fetch_current_index(pubkey)
        if current_index is None or page == 1:
            return current_index
        return await self.fetch_archive_page(pubkey, page, current_index)

    async def fetch_manifest(self, pubkey: str, file_hash: str) -> Optional[Manifest]:
        """
        Fetch the latest manifest for a file.

        Tries the x (content hash) tag first and falls back to the d tag.
        """
        filters = [
            build_filter(EVENT_KIND_MANIFEST, pubkey, x_tag=file_hash, limit=1),
            build_filter(EVENT_KIND_MANIFEST, pubkey, d_tag=file_hash, limit=1),
        ]

        events: List[NostrEvent] = []
        for filter_ in filters:
            logger.debug(f"Querying manifest with filter {filter_}")
            events = await self.pool.query_sync(self.relays, filter_, timeout=self.timeout)
            if events:
                break

        event = latest_event(events)
        if event is None:
            logger.info(f"No manifest found for {file_hash[:16]}")
            return None

        try:
            manifest = parse_record(event.content, Manifest, "manifest")
        except ParseFailureError as e:
            logger.error(f"Ignoring manifest {event.id[:8]}: {e}")
            return None

        logger.info(
            f"Resolved manifest for {manifest.file_name} "
            f"[total_chunks={manifest.total_chunks}, encryption={manifest.encryption}]"
        )
        return manifest
