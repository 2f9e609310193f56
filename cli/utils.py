"""Utility functions for CLI operations."""

import sys
from typing import TextIO

from cli.constants import GREEN, RESET


class ChunkProgressPrinter:
    """Progress callback that renders chunk retrieval progress on one line."""

    def __init__(self, label: str, stream: TextIO = sys.stdout):
        """
        Args:
            label: Name shown before the counter
            stream: Output stream (stdout by default)
        """
        self.label = label
        self.stream = stream
        self.last_fetched = 0
        self._active = False

    def __call__(self, fetched: int, total: int) -> None:
        self.last_fetched = fetched
        self._active = True
        progress = (fetched / total) * 100 if total else 100.0
        self.stream.write(
            f"\rFetching {self.label}: {fetched}/{total} chunks ({GREEN}{progress:.1f}%{RESET})"
        )
        self.stream.flush()

    def finish(self) -> None:
        """End the progress line if anything was printed."""
        if self._active:
            self.stream.write('\n')
            self.stream.flush()
            self._active = False


def format_file_size(size_bytes: int) -> str:
    """
    Format file size in bytes to human-readable format with appropriate unit.

    Uses binary units (1024-based) and automatically selects the most
    appropriate unit (B, KiB, MiB, GiB, TiB).

    Args:
        size_bytes: File size in bytes

    Returns:
        Formatted string with size and unit (e.g., "1.50 MiB", "512 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"

    units = ['KiB', 'MiB', 'GiB', 'TiB']
    size = size_bytes / 1024.0

    for unit in units:
        if size < 1024.0:
            return f"{size:.2f} {unit}"
        size /= 1024.0

    return f"{size:.2f} PiB"
