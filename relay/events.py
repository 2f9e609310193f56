"""Nostr event model and REQ filter helpers."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

Filter = Dict[str, Any]


class NostrEvent(BaseModel):
    """A signed nostr event as delivered by a relay."""
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: List[List[str]] = Field(default_factory=list)
    content: str = ""
    sig: str = ""

    def get_tag(self, name: str) -> Optional[str]:
        """Value of the first tag called name, or None."""
        for tag in self.tags:
            if len(tag) >= 2 and tag[0] == name:
                return tag[1]
        return None

    def tag_values(self, name: str) -> List[str]:
        return [tag[1] for tag in self.tags if len(tag) >= 2 and tag[0] == name]


def build_filter(
    kind: int,
    author: str,
    d_tag: Optional[str] = None,
    x_tag: Optional[str] = None,
    ids: Optional[List[str]] = None,
    limit: Optional[int] = None
) -> Filter:
    """
    Build a REQ filter for one kind and one author.

    Args:
        kind: Event kind
        author: Hex public key
        d_tag: Match events with this d tag
        x_tag: Match events with this x tag
        ids: Match exactly these event ids
        limit: Maximum number of stored events to return

    Returns:
        Filter dictionary ready to be sent in a REQ message
    """
    filter_: Filter = {"kinds": [kind], "authors": [author]}
    if d_tag is not None:
        filter_["#d"] = [d_tag]
    if x_tag is not None:
        filter_["#x"] = [x_tag]
    if ids is not None:
        filter_["ids"] = list(ids)
    if limit is not None:
        filter_["limit"] = limit
    return filter_


def matches_filter(event: NostrEvent, filter_: Filter) -> bool:
    """Check an event against the fields of a filter; relays are not trusted to do it."""
    if "ids" in filter_ and event.id not in filter_["ids"]:
        return False
    if "authors" in filter_ and event.pubkey not in filter_["authors"]:
        return False
    if "kinds" in filter_ and event.kind not in filter_["kinds"]:
        return False
    for key, values in filter_.items():
        if key.startswith("#") and len(key) == 2:
            if not set(event.tag_values(key[1])) & set(values):
                return False
    return True
