"""Command parser for CLI arguments."""

import re

from cli.models import CommandRequest, DownloadCommand, HelpCommand, ListCommand

_FILE_HASH_RE = re.compile(r"^[0-9a-fA-F]{64}$")


class ParseError(Exception):
    """Raised when command parsing fails."""

    pass


def parse_command(args: list[str]) -> CommandRequest:
    """Parse command line arguments into a CommandRequest object.

    Args:
        args: Arguments without the program name

    Returns:
        CommandRequest object (one of List/Download/Help)

    Raises:
        ParseError: If command syntax is invalid
    """
    if not args:
        raise ParseError("Empty command")

    command_name = args[0]

    if command_name == "list":
        return _parse_list(args[1:])
    elif command_name == "download":
        return _parse_download(args[1:])
    elif command_name in ("help", "--help", "-h"):
        return HelpCommand()
    else:
        raise ParseError(f"Unknown command: {command_name}")


def _parse_list(args: list[str]) -> ListCommand:
    """Parse 'list <key> [page]' command."""
    if len(args) not in (1, 2):
        raise ParseError("list requires <key> and an optional page number")

    page = 1
    if len(args) == 2:
        try:
            page = int(args[1])
        except ValueError:
            raise ParseError(f"Invalid page number: {args[1]}")
        if page < 1:
            raise ParseError("Page numbers start at 1")

    return ListCommand(key=args[0], page=page)


def _parse_download(args: list[str]) -> DownloadCommand:
    """Parse 'download <key> <file_hash> [output_path] [--ask-secret]' command."""
    ask_secret = "--ask-secret" in args
    positional = [arg for arg in args if arg != "--ask-secret"]

    if len(positional) not in (2, 3):
        raise ParseError("download requires <key> <file_hash> [output_path]")

    key, file_hash = positional[0], positional[1]
    if not _FILE_HASH_RE.match(file_hash):
        raise ParseError(f"Invalid file hash: {file_hash}")

    output_path = positional[2] if len(positional) == 3 else None
    return DownloadCommand(
        key=key,
        file_hash=file_hash.lower(),
        output_path=output_path,
        ask_secret=ask_secret
    )
