"""Storage backends behind the task store.

Two variants implement the same capability set:

* LocalBackend keeps the day key -> task list mapping in memory and writes
  it wholesale to the local profile after every change (or keeps it purely
  in memory when constructed without a profile).
* RemoteBackend sends every change to the service and answers load_month
  with a fresh range query. It never holds task state of its own.

The store picks one per auth state; neither backend knows about the other.
"""
from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from daygrid.calendar_grid import month_bounds
from daygrid.utils import now_utc

from .client import AuthUser, RemoteTaskClient
from .local_store import LocalStore, PERSIST_ERRORS

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Accept epoch milliseconds (local JSON) or ISO strings (remote rows)."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str):
        dt = datetime.fromisoformat(value.replace('Z', '+00:00'))
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    raise ValueError(f"unsupported timestamp: {value!r}")


def _epoch_ms(dt: Optional[datetime]) -> Optional[int]:
    return int(dt.timestamp() * 1000) if dt else None


class Task(BaseModel):
    id: str
    text: str
    done: bool = False
    created_at: Optional[datetime] = Field(default_factory=now_utc)
    updated_at: Optional[datetime] = Field(default_factory=now_utc)

    @classmethod
    def new(cls, text: str, now: Optional[datetime] = None) -> "Task":
        now = now or now_utc()
        return cls(id=uuid.uuid4().hex, text=text, done=False, created_at=now, updated_at=now)

    @classmethod
    def from_local(cls, raw: Dict[str, Any]) -> "Task":
        """Build from the local JSON shape ``{id, text, done, createdAt, updatedAt}``."""
        text = str(raw.get('text') or '').strip()
        if not text:
            raise ValueError('task text is empty')
        created = _parse_timestamp(raw.get('createdAt'))
        return cls(
            id=str(raw.get('id') or uuid.uuid4().hex),
            text=text,
            done=bool(raw.get('done', False)),
            created_at=created,
            updated_at=_parse_timestamp(raw.get('updatedAt')) or created,
        )

    def to_local(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'text': self.text,
            'done': self.done,
            'createdAt': _epoch_ms(self.created_at),
            'updatedAt': _epoch_ms(self.updated_at),
        }

    @classmethod
    def from_remote(cls, row: Dict[str, Any]) -> "Task":
        return cls(
            id=str(row['id']),
            text=row['text'],
            done=bool(row.get('done', False)),
            created_at=_parse_timestamp(row.get('created_at')),
            updated_at=_parse_timestamp(row.get('updated_at')),
        )

    def toggled(self, now: Optional[datetime] = None) -> "Task":
        return self.model_copy(update={'done': not self.done, 'updated_at': now or now_utc()})


Snapshot = Dict[str, List[Task]]


def group_by_day(rows: Iterable[Dict[str, Any]]) -> Snapshot:
    """Regroup remote rows (already in creation order) by their day key."""
    out: Snapshot = {}
    for row in rows:
        out.setdefault(row['date'], []).append(Task.from_remote(row))
    return out


def tasks_from_local(raw: Dict[str, List[Dict[str, Any]]]) -> Snapshot:
    out: Snapshot = {}
    for key, items in raw.items():
        tasks: List[Task] = []
        for item in items:
            try:
                tasks.append(Task.from_local(item))
            except (ValueError, TypeError, AttributeError):
                logger.warning('skipping unreadable local task under %s: %r', key, item)
        out[key] = tasks
    return out


class TaskBackend:
    """Capability set shared by the local and remote variants."""

    is_remote = False

    async def load_month(self, anchor: date) -> Snapshot:
        raise NotImplementedError

    async def add(self, day_key: str, text: str) -> None:
        raise NotImplementedError

    async def add_many(self, day_keys: List[str], text: str) -> None:
        raise NotImplementedError

    async def toggle(self, day_key: str, task: Task) -> None:
        raise NotImplementedError

    async def delete(self, day_key: str, task_id: str) -> None:
        raise NotImplementedError


class LocalBackend(TaskBackend):
    """Anonymous storage: in-memory mapping mirrored to the local profile.

    Without a profile the mapping lives only in memory; that is the state
    after signing out, where the old local copy must not come back.
    """

    def __init__(self, local_store: Optional[LocalStore] = None):
        self.local_store = local_store
        self.tasks: Snapshot = tasks_from_local(local_store.load_tasks()) if local_store else {}

    async def load_month(self, anchor: date) -> Snapshot:
        # the whole local mapping is small; hand out every day
        return {k: list(v) for k, v in self.tasks.items()}

    async def add(self, day_key: str, text: str) -> None:
        self.tasks.setdefault(day_key, []).append(Task.new(text))
        self._persist()

    async def add_many(self, day_keys: List[str], text: str) -> None:
        now = now_utc()
        for key in day_keys:
            self.tasks.setdefault(key, []).append(Task.new(text, now=now))
        self._persist()

    async def toggle(self, day_key: str, task: Task) -> None:
        now = now_utc()
        self.tasks[day_key] = [t.toggled(now) if t.id == task.id else t for t in self.tasks.get(day_key, [])]
        self._persist()

    async def delete(self, day_key: str, task_id: str) -> None:
        self.tasks[day_key] = [t for t in self.tasks.get(day_key, []) if t.id != task_id]
        self._persist()

    def _persist(self) -> None:
        if self.local_store is None:
            return
        try:
            self.local_store.save_tasks({k: [t.to_local() for t in v] for k, v in self.tasks.items()})
        except PERSIST_ERRORS:
            # in-memory state stays updated; a restart may lose this change
            logger.exception('failed to persist local tasks')


class RemoteBackend(TaskBackend):
    """Signed-in storage: every call goes to the service for ``user``."""

    is_remote = True

    def __init__(self, gateway: RemoteTaskClient, user: AuthUser):
        self.gateway = gateway
        self.user = user

    def _row(self, day_key: str, text: str) -> Dict[str, Any]:
        return {'user_id': self.user.id, 'date': day_key, 'text': text, 'done': False}

    async def load_month(self, anchor: date) -> Snapshot:
        first, last = month_bounds(anchor)
        rows = await self.gateway.query_tasks_in_range(self.user.id, first, last)
        return group_by_day(rows)

    async def add(self, day_key: str, text: str) -> None:
        await self.gateway.insert_tasks([self._row(day_key, text)])

    async def add_many(self, day_keys: List[str], text: str) -> None:
        await self.gateway.insert_tasks([self._row(k, text) for k in day_keys])

    async def toggle(self, day_key: str, task: Task) -> None:
        await self.gateway.update_task(task.id, {'done': not task.done})

    async def delete(self, day_key: str, task_id: str) -> None:
        await self.gateway.delete_task(task_id)
