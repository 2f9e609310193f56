"""Shared data type definitions (ChunkEvent, ReconstructedFile)."""

from dataclasses import dataclass

from common.constants import ENCRYPTION_NONE


@dataclass(frozen=True)
class ChunkEvent:
    """
    One retrieved, not yet decrypted chunk of a file.
    """
    index: int
    content: str
    encryption: str = ENCRYPTION_NONE


@dataclass(frozen=True)
class ReconstructedFile:
    """
    Decrypted file contents together with the manifest metadata it came from.
    """
    file_hash: str
    file_name: str
    data: bytes
    total_chunks: int

    @property
    def size(self) -> int:
        return len(self.data)
