"""Reconstruction of a stored file: index lookup, manifest, chunk retrieval and decryption."""

import hashlib
import logging
import re
from typing import List, Optional, Tuple

from common.constants import ENCRYPTION_NIP44, ENCRYPTION_NONE, QUERY_TIMEOUT_SECONDS
from common.exceptions import (
    ChecksumMismatchError,
    DecryptionFailedError,
    IncompleteFileError,
    ManifestNotFoundError,
    SecretKeyRequiredError,
    StoredFileNotFoundError,
)
from common.types import ChunkEvent, ReconstructedFile
from retrieval.chunk_cache import ChunkCache
from retrieval.chunk_fetcher import ProgressCallback
from retrieval.resolver import RecordResolver
from retrieval.schemas import FileEntry, FileIndex, Manifest
from security.decryption import base64_to_bytes, decrypt_chunk_binary

logger = logging.getLogger(__name__)

_SHA256_HEX_RE = re.compile(r"^[0-9a-fA-F]{64}$")


def decode_chunk(
    chunk: ChunkEvent,
    pubkey: str,
    secret_key: Optional[bytes] = None
) -> bytes:
    """
    Turn one chunk event into the bytes it carries.

    Raises:
        SecretKeyRequiredError: If the chunk is encrypted and no key was given
        DecryptionFailedError: On decryption failure or unknown scheme
    """
    if chunk.encryption == ENCRYPTION_NONE:
        return base64_to_bytes(chunk.content)
    if chunk.encryption == ENCRYPTION_NIP44:
        if secret_key is None:
            raise SecretKeyRequiredError(f"Chunk {chunk.index} is encrypted; a secret key is required")
        try:
            return decrypt_chunk_binary(chunk.content, secret_key, pubkey)
        except DecryptionFailedError as e:
            raise DecryptionFailedError(f"Failed to decrypt chunk {chunk.index}: {e}") from e
    raise DecryptionFailedError(f"Unsupported encryption '{chunk.encryption}' on chunk {chunk.index}")


class FileReconstructor:
    """
    Drives RecordResolver, ChunkCache and decryption to rebuild a file.

    Args:
        pool: Relay pool shared by every query
        relays: Relay URLs
        cache: Chunk cache service, shared across reconstructions
    """

    def __init__(
        self,
        pool,
        relays: List[str],
        cache: Optional[ChunkCache] = None,
        timeout: float = QUERY_TIMEOUT_SECONDS
    ):
        self.pool = pool
        self.relays = relays
        self.cache = cache if cache is not None else ChunkCache()
        self.resolver = RecordResolver(pool, relays, timeout=timeout)

    async def list_files(self, pubkey: str, page: int = 1) -> Optional[FileIndex]:
        return await self.resolver.fetch_index(pubkey, page)

    async def find_file(self, pubkey: str, file_hash: str) -> Tuple[FileEntry, int]:
        """
        Locate a file in the current index or any archive page.

        Returns:
            (file entry, page number it was found on)

        Raises:
            StoredFileNotFoundError: If no reachable page lists the hash
        """
        current_index = await self.resolver.fetch_current_index(pubkey)
        if current_index is None:
            raise StoredFileNotFoundError(f"No index found for {pubkey[:16]}")

        entry = current_index.find(file_hash)
        if entry is not None:
            return entry, 1

        last_page = current_index.total_archives + 1
        for page in range(2, last_page + 1):
            archive = await self.resolver.fetch_archive_page(pubkey, page, current_index)
            if archive is None:
                logger.warning(f"Archive page {page}/{last_page} not found, continuing")
                continue
            entry = archive.find(file_hash)
            if entry is not None:
                return entry, page

        raise StoredFileNotFoundError(
            f"File {file_hash[:16]} not listed in {last_page} index page(s)"
        )

    async def fetch_manifest(self, pubkey: str, file_hash: str) -> Manifest:
        manifest = await self.resolver.fetch_manifest(pubkey, file_hash)
        if manifest is None:
            raise ManifestNotFoundError(f"No manifest found for {file_hash[:16]}")
        return manifest

    async def reconstruct(
        self,
        pubkey: str,
        file_hash: str,
        secret_key: Optional[bytes] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> ReconstructedFile:
        """
        Rebuild a file from its chunks.

        Args:
            pubkey: Owner hex public key
            file_hash: Content hash of the file
            secret_key: Owner secret key, needed for encrypted chunks
            on_progress: Called with (fetched, total) while chunks arrive

        Raises:
            StoredFileNotFoundError, ManifestNotFoundError, IncompleteFileError,
            DecryptionFailedError, ChecksumMismatchError, UnsupportedVersionError
        """
        entry, page = await self.find_file(pubkey, file_hash)
        logger.info(f"Found {entry.file_name} on index page {page}")

        manifest = await self.fetch_manifest(pubkey, file_hash)

        relays = list(dict.fromkeys(self.relays + manifest.relays))
        chunks = await self.cache.fetch_chunks(
            self.pool,
            relays,
            pubkey,
            file_hash,
            manifest.total_chunks,
            chunk_infos=manifest.chunks,
            on_progress=on_progress
        )

        if len(chunks) < manifest.total_chunks:
            raise IncompleteFileError(len(chunks), manifest.total_chunks)

        data = b"".join(decode_chunk(chunk, pubkey, secret_key) for chunk in chunks)

        if _SHA256_HEX_RE.match(file_hash):
            digest = hashlib.sha256(data).hexdigest()
            if digest != file_hash.lower():
                raise ChecksumMismatchError(
                    f"Reassembled data hashes to {digest[:16]}, expected {file_hash[:16]}"
                )

        logger.info(f"Reconstructed {manifest.file_name} ({len(data)} bytes, {len(chunks)} chunks)")
        return ReconstructedFile(
            file_hash=file_hash,
            file_name=manifest.file_name,
            data=data,
            total_chunks=manifest.total_chunks
        )
