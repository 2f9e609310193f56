"""Command request data types for CLI."""

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class ListCommand:
    """List files on one index page."""

    key: str
    page: int = 1
    command: Literal["list"] = "list"


@dataclass(frozen=True)
class DownloadCommand:
    """Reconstruct a file by hash and write it to disk."""

    key: str
    file_hash: str
    output_path: str | None = None
    ask_secret: bool = False
    command: Literal["download"] = "download"


@dataclass(frozen=True)
class HelpCommand:
    """Show usage."""

    command: Literal["help"] = "help"


CommandRequest = ListCommand | DownloadCommand | HelpCommand
