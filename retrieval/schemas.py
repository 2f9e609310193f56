"""Pydantic schemas for index and manifest record payloads."""

import json
from typing import List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from common.constants import ENCRYPTION_NONE, SUPPORTED_SCHEMA_VERSION
from common.exceptions import ParseFailureError, UnsupportedVersionError


class FileEntry(BaseModel):
    """One file listed in an index page."""
    model_config = ConfigDict(extra="ignore")

    file_hash: str
    file_name: str
    file_size: int
    chunk_count: int
    encrypted: bool = False
    uploaded_at: Optional[int] = None


class FileIndex(BaseModel):
    """Index page: current (page 1) or an archive snapshot."""
    model_config = ConfigDict(extra="ignore")

    version: int
    entries: List[FileEntry] = Field(default_factory=list)
    archive_number: Optional[int] = None
    total_archives: int = 0
    created_at: Optional[int] = None

    def find(self, file_hash: str) -> Optional[FileEntry]:
        wanted = file_hash.lower()
        for entry in self.entries:
            if entry.file_hash.lower() == wanted:
                return entry
        return None


class ChunkInfo(BaseModel):
    """Maps a chunk index to the id of the event carrying it."""
    model_config = ConfigDict(extra="ignore")

    index: int = Field(ge=0)
    event_id: Optional[str] = None


class Manifest(BaseModel):
    """Per-file description of its chunks."""
    model_config = ConfigDict(extra="ignore")

    version: int
    file_name: str
    file_hash: str
    file_size: Optional[int] = None
    chunk_size: Optional[int] = None
    total_chunks: int = Field(ge=0)
    encryption: str = ENCRYPTION_NONE
    relays: List[str] = Field(default_factory=list)
    chunks: List[ChunkInfo] = Field(default_factory=list)
    created_at: Optional[int] = None


RecordT = TypeVar("RecordT", FileIndex, Manifest)


def parse_record(content: str, model: Type[RecordT], record_type: str) -> RecordT:
    """
    Parse a JSON record payload and gate it on the schema version.

    The version is checked before full validation, so a version other than 2
    is reported even when the rest of the payload is malformed.

    Raises:
        ParseFailureError: If content is not a JSON object or misses fields
        UnsupportedVersionError: If the declared version is not 2
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ParseFailureError(f"Failed to parse {record_type} content: {e}") from e

    if not isinstance(data, dict):
        raise ParseFailureError(f"{record_type} content is not a JSON object")

    version = data.get("version")
    if version != SUPPORTED_SCHEMA_VERSION or isinstance(version, bool):
        raise UnsupportedVersionError(record_type, version)

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ParseFailureError(f"Invalid {record_type} content: {e}") from e
