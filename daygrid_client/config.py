"""Configuration management for the DayGrid client."""

import os
import json
import logging
from typing import Dict, Any

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = 'http://127.0.0.1:8000'
DEFAULT_CONFIG_DIR = os.path.join(os.path.expanduser('~'), '.daygrid')

# Seconds to wait before reopening a realtime change stream that ended.
REALTIME_RECONNECT_SECONDS = 5.0

# Seconds before an HTTP call to the service gives up.
HTTP_TIMEOUT_SECONDS = 10.0


class Config:
    """JSON-file backed settings; environment variables win over the file."""

    def __init__(self, config_file: str = None):
        self.config_file = config_file or os.getenv(
            'DAYGRID_CONFIG', os.path.join(DEFAULT_CONFIG_DIR, 'config.json')
        )
        self._config: Dict[str, Any] = {}
        self.load()

    def load(self) -> None:
        """Load configuration from file; a missing or corrupt file means defaults."""
        if not os.path.exists(self.config_file):
            self._config = {}
            return
        try:
            with open(self.config_file, 'r') as f:
                self._config = json.load(f)
        except (OSError, ValueError):
            logger.exception('could not read %s; using defaults', self.config_file)
            self._config = {}

    def save(self) -> None:
        """Save configuration to file."""
        os.makedirs(os.path.dirname(self.config_file) or '.', exist_ok=True)
        with open(self.config_file, 'w') as f:
            json.dump(self._config, f, indent=2)

    @property
    def server_url(self) -> str:
        return os.getenv('DAYGRID_SERVER_URL') or self._config.get('server_url', DEFAULT_SERVER_URL)

    @server_url.setter
    def server_url(self, value: str):
        self._config['server_url'] = value
        self.save()

    @property
    def db_path(self) -> str:
        """SQLite file holding the local profile (tasks, migration flag, session)."""
        return os.getenv('DAYGRID_LOCAL_DB') or self._config.get(
            'db_path', os.path.join(DEFAULT_CONFIG_DIR, 'local_profile.db')
        )

    @db_path.setter
    def db_path(self, value: str):
        self._config['db_path'] = value
        self.save()
