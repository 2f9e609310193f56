"""Configuration management for the nostrsave CLI."""

import json
import shutil
from pathlib import Path
from typing import List

from common.constants import (
    CHUNK_FETCH_MAX_WAIT_SECONDS,
    QUERY_TIMEOUT_SECONDS,
    get_default_relays,
)
from common.logging_config import get_logger

logger = get_logger(__name__)


class Config:
    """Manages CLI configuration stored in a JSON file."""

    DEFAULT_CONFIG = {
        "relays": get_default_relays(),
        "query_timeout": QUERY_TIMEOUT_SECONDS,
        "chunk_max_wait": CHUNK_FETCH_MAX_WAIT_SECONDS,
        "download_dir": "downloads",
    }

    def __init__(self, config_path: Path):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config JSON file (typically ~/.nostrsave/config.json)
        """
        self.config_path = config_path
        self.data = self._load()

    def _load(self) -> dict:
        """
        Load configuration from file, creating defaults if necessary.

        Returns:
            Configuration dictionary
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            import tempfile
            self.config_path = Path(tempfile.gettempdir()) / '.nostrsave' / 'config.json'
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    data = json.load(f)
                config = self.DEFAULT_CONFIG.copy()
                config.update(data)
                return config
            except (json.JSONDecodeError, IOError) as e:
                logger.warning(f"Config file {self.config_path} unreadable ({e}), using defaults")
                backup_path = self.config_path.with_suffix('.json.bak')
                try:
                    shutil.copy(self.config_path, backup_path)
                except IOError as copy_error:
                    logger.warning(f"Could not back up config file: {copy_error}")
                return self.DEFAULT_CONFIG.copy()
        else:
            config = self.DEFAULT_CONFIG.copy()
            self._write(config)
            return config

    def _write(self, data: dict) -> None:
        try:
            with open(self.config_path, 'w') as f:
                json.dump(data, f, indent=2)
        except IOError as e:
            logger.warning(f"Could not write config file {self.config_path}: {e}")

    def save(self) -> None:
        """Save current configuration to file."""
        self._write(self.data)

    def get_relays(self) -> List[str]:
        """
        Get relay URLs.

        Returns:
            List of websocket URLs
        """
        return list(self.data.get('relays') or get_default_relays())

    def set_relays(self, relays: List[str]) -> None:
        self.data['relays'] = list(relays)
        self.save()

    def get_query_timeout(self) -> float:
        return float(self.data.get('query_timeout', QUERY_TIMEOUT_SECONDS))

    def get_chunk_max_wait(self) -> float:
        return float(self.data.get('chunk_max_wait', CHUNK_FETCH_MAX_WAIT_SECONDS))

    def get_download_dir(self) -> Path:
        return Path(self.data.get('download_dir', 'downloads'))
