"""CLI entry point."""

import asyncio
import os
import sys
from pathlib import Path
from typing import Optional

from common.logging_config import setup_logging
from cli.commands import handle_download, handle_help, handle_list
from cli.config import Config
from cli.constants import HELP_TEXT
from cli.models import CommandRequest, DownloadCommand, ListCommand
from cli.parser import ParseError, parse_command
from relay.pool import RelayPool
from retrieval.chunk_cache import ChunkCache
from retrieval.reconstruction import FileReconstructor

LOGGED_PACKAGES = ('relay', 'retrieval', 'security')


async def run_command(cmd: CommandRequest, config: Config) -> str:
    """Run one parsed command against the configured relays."""
    if not isinstance(cmd, (ListCommand, DownloadCommand)):
        return handle_help()

    cache = ChunkCache(max_wait=config.get_chunk_max_wait())
    async with RelayPool() as pool:
        reconstructor = FileReconstructor(
            pool,
            config.get_relays(),
            cache=cache,
            timeout=config.get_query_timeout()
        )
        if isinstance(cmd, ListCommand):
            return await handle_list(cmd, reconstructor)
        return await handle_download(cmd, reconstructor, config)


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for CLI."""
    args = list(sys.argv[1:] if argv is None else argv)

    log_level = 'DEBUG' if '--debug' in args else os.getenv('LOG_LEVEL', 'WARNING')
    for package in LOGGED_PACKAGES:
        setup_logging(package, log_level=log_level)
    logger = setup_logging('cli', log_level=log_level)

    if '--debug' in args:
        logger.info("Debug logging enabled")
        args.remove('--debug')

    try:
        cmd = parse_command(args)
    except ParseError as e:
        print(f"Error: {e}\n\n{HELP_TEXT}", file=sys.stderr)
        return 2

    config = Config(Path.home() / '.nostrsave' / 'config.json')
    try:
        result = asyncio.run(run_command(cmd, config))
    except KeyboardInterrupt:
        return 130

    print(result)
    return 1 if result.startswith("Error:") else 0


if __name__ == "__main__":
    sys.exit(main())
