"""Local persisted profile for the anonymous (signed-out) client.

A single SQLite key/value table plays the role browser local storage plays
for a web client: values are JSON strings, keys are fixed names. Tasks are
always read and written wholesale under TASKS_KEY.

Once MIGRATED_KEY is present the task key is never read or written again
for this profile: the tasks then live in the remote store.
"""

import sqlite3
import json
import os
import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

TASKS_KEY = 'calendar_tasks_v1'
MIGRATED_KEY = 'calendar_tasks_migrated_v1'
SESSION_KEY = 'calendar_auth_session_v1'

# Errors a write can hit: database trouble (disk full, locked, read-only)
# or a value json cannot serialize.
PERSIST_ERRORS = (sqlite3.Error, TypeError, ValueError)


class LocalStore:
    """SQLite-based key/value storage for one client profile."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._init_db()

    def _init_db(self) -> None:
        """Initialize database tables."""
        parent = os.path.dirname(self.db_path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS storage (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            ''')
            conn.commit()

    # -------------------- raw key/value --------------------
    def get_item(self, key: str) -> Optional[str]:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute('SELECT value FROM storage WHERE key = ?', (key,)).fetchone()
            return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute('INSERT OR REPLACE INTO storage (key, value) VALUES (?, ?)', (key, value))
            conn.commit()

    def remove_item(self, key: str) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute('DELETE FROM storage WHERE key = ?', (key,))
            conn.commit()

    # -------------------- migration flag --------------------
    def is_migrated(self) -> bool:
        return self.get_item(MIGRATED_KEY) is not None

    def mark_migrated(self) -> None:
        self.set_item(MIGRATED_KEY, json.dumps(True))

    # -------------------- task mapping --------------------
    def load_tasks(self) -> Dict[str, List[Dict[str, Any]]]:
        """Return the persisted day key -> task dict list mapping.

        Missing key, unreadable JSON or a migrated profile all yield {}.
        """
        if self.is_migrated():
            return {}
        try:
            raw = self.get_item(TASKS_KEY)
            if not raw:
                return {}
            data = json.loads(raw)
        except (sqlite3.Error, ValueError):
            logger.exception('failed to read local tasks')
            return {}
        if not isinstance(data, dict):
            logger.error('ignoring local tasks: expected an object, got %s', type(data).__name__)
            return {}
        return {k: v for k, v in data.items() if isinstance(v, list)}

    def save_tasks(self, tasks: Dict[str, List[Dict[str, Any]]]) -> bool:
        """Persist the whole mapping. Returns False when nothing was written."""
        if self.is_migrated():
            logger.debug('local tasks are inert after migration; not saving')
            return False
        self.set_item(TASKS_KEY, json.dumps(tasks))
        return True

    def discard_tasks(self) -> None:
        self.remove_item(TASKS_KEY)

    # -------------------- auth session --------------------
    def get_session_token(self) -> Optional[str]:
        raw = self.get_item(SESSION_KEY)
        if not raw:
            return None
        try:
            return json.loads(raw).get('session_token')
        except (ValueError, AttributeError):
            logger.exception('corrupt persisted session; ignoring it')
            return None

    def set_session_token(self, token: Optional[str]) -> None:
        if token is None:
            self.remove_item(SESSION_KEY)
        else:
            self.set_item(SESSION_KEY, json.dumps({'session_token': token}))

    def counts(self) -> Dict[str, int]:
        """Number of local days and tasks, shown by ``daygrid status``."""
        tasks = self.load_tasks()
        return {'days': len(tasks), 'tasks': sum(len(v) for v in tasks.values())}
