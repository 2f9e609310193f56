"""Command handler functions for CLI operations."""

from pathlib import Path
from typing import Callable, Optional

from prompt_toolkit import prompt

from cli.config import Config
from cli.constants import HELP_TEXT, SECRET_PROMPT
from cli.models import DownloadCommand, ListCommand
from cli.utils import ChunkProgressPrinter, format_file_size
from common.exceptions import (
    IncompleteFileError,
    InvalidFormatError,
    InvalidKeyFormatError,
    NostrSaveError,
    SecretKeyRequiredError,
)
from common.logging_config import get_logger
from retrieval.reconstruction import FileReconstructor
from security.keys import NormalizedKey, normalize_to_public_key, nsec_to_secret_key

logger = get_logger(__name__)

SecretPrompt = Callable[[], str]


def ask_for_secret() -> str:
    """Read an nsec from the terminal without echoing it."""
    return prompt(SECRET_PROMPT, is_password=True)


def handle_help() -> str:
    return HELP_TEXT


async def handle_list(cmd: ListCommand, reconstructor: FileReconstructor) -> str:
    """
    Handle 'list' command.

    Args:
        cmd: ListCommand with key and page
        reconstructor: FileReconstructor bound to the configured relays

    Returns:
        Formatted file listing or error message
    """
    try:
        with normalize_to_public_key(cmd.key) as key:
            pubkey = key.pubkey
    except InvalidKeyFormatError as e:
        return f"Error: {e}"

    try:
        index = await reconstructor.list_files(pubkey, cmd.page)
    except NostrSaveError as e:
        logger.error(f"Listing page {cmd.page} failed: {e}")
        return f"Error: {e}"

    if index is None:
        return f"No index found on page {cmd.page}."

    total_pages = index.total_archives + 1
    lines = [f"Page {cmd.page}/{total_pages}: {len(index.entries)} file(s)"]
    for entry in index.entries:
        lock = " [encrypted]" if entry.encrypted else ""
        lines.append(
            f"  {entry.file_hash}  {entry.file_name}  "
            f"{format_file_size(entry.file_size)}  {entry.chunk_count} chunks{lock}"
        )
    return "\n".join(lines)


def _safe_file_name(file_name: str) -> str:
    """Last path component of a relay-supplied file name."""
    name = Path(file_name.replace("\\", "/")).name
    if name in ("", ".", ".."):
        raise InvalidFormatError(f"Refusing to write file with unsafe name: {file_name!r}")
    return name


def _resolve_output_path(cmd: DownloadCommand, file_name: str, config: Config) -> Path:
    if cmd.output_path:
        output = Path(cmd.output_path)
        if output.exists() and output.is_dir():
            output = output / _safe_file_name(file_name)
    else:
        output = config.get_download_dir() / _safe_file_name(file_name)
    output.parent.mkdir(parents=True, exist_ok=True)
    return output


async def handle_download(
    cmd: DownloadCommand,
    reconstructor: FileReconstructor,
    config: Config,
    secret_prompt: Optional[SecretPrompt] = None
) -> str:
    """
    Handle 'download' command.

    Args:
        cmd: DownloadCommand with key, file hash and output path
        reconstructor: FileReconstructor bound to the configured relays
        config: CLI configuration (download directory)
        secret_prompt: Reads an nsec when cmd.ask_secret is set (testing hook)

    Returns:
        Success or error message
    """
    try:
        key = normalize_to_public_key(cmd.key)
    except InvalidKeyFormatError as e:
        return f"Error: {e}"

    if cmd.ask_secret and key.secret_key is None:
        try:
            secret_key = nsec_to_secret_key((secret_prompt or ask_for_secret)().strip())
        except InvalidFormatError as e:
            return f"Error: {e}"
        key = NormalizedKey(pubkey=key.pubkey, secret_key=secret_key)

    progress = ChunkProgressPrinter(cmd.file_hash[:12])
    with key:
        try:
            result = await reconstructor.reconstruct(
                key.pubkey,
                cmd.file_hash,
                secret_key=key.secret_key,
                on_progress=progress
            )
        except IncompleteFileError as e:
            return f"Error: only {e.fetched} of {e.total} chunks found. Run download again to retry."
        except SecretKeyRequiredError:
            return "Error: file is encrypted. Use an nsec key or --ask-secret."
        except NostrSaveError as e:
            logger.error(f"Download of {cmd.file_hash[:16]} failed: {e}")
            return f"Error: {e}"
        finally:
            progress.finish()

    try:
        output = _resolve_output_path(cmd, result.file_name, config)
        output.write_bytes(result.data)
    except InvalidFormatError as e:
        return f"Error: {e}"
    except OSError as e:
        logger.error(f"Writing {result.file_name} failed: {e}")
        return f"Error: could not write file: {e}"
    logger.info(f"Wrote {result.size} bytes to {output}")
    return f"Downloaded: {result.file_name} ({format_file_size(result.size)}) -> {output}"
