"""Project-wide constants (event kinds, d-tags, timeouts, default relays)."""

import os

SUPPORTED_SCHEMA_VERSION: int = 2

EVENT_KIND_CHUNK: int = 30078
EVENT_KIND_MANIFEST: int = 30079
EVENT_KIND_INDEX: int = 30080

CURRENT_INDEX_D_TAG: str = "nostrsave-index"
ARCHIVE_INDEX_D_TAG_PREFIX: str = "nostrsave-index-archive-"

ENCRYPTION_NONE: str = "none"
ENCRYPTION_NIP44: str = "nip44"

CHUNK_ID_BATCH_SIZE: int = 200
CHUNK_FETCH_MAX_WAIT_SECONDS: float = float(os.environ.get("NOSTRSAVE_CHUNK_MAX_WAIT", "4"))
QUERY_TIMEOUT_SECONDS: float = float(os.environ.get("NOSTRSAVE_QUERY_TIMEOUT", "8"))
RELAY_CONNECT_TIMEOUT_SECONDS: float = 5.0

DEFAULT_RELAYS = [
    "wss://nos.lol",
    "wss://relay.nostr.net",
    "wss://relay.primal.net",
    "wss://relay.snort.social",
]


def get_default_relays() -> list[str]:
    """Relays from NOSTRSAVE_RELAYS (comma separated), else the built-in list."""
    raw = os.environ.get("NOSTRSAVE_RELAYS", "")
    relays = [r.strip() for r in raw.split(",") if r.strip()]
    return relays or list(DEFAULT_RELAYS)
