"""The task store: one owner for the calendar's task snapshot.

The store decides, once per auth state change, which backend serves the
session (LocalBackend while anonymous, RemoteBackend once signed in) and
routes every operation through it. The snapshot is only ever replaced by
what the backend reports back after a change; signed-in changes are never
patched into it optimistically, so what is shown has been confirmed by the
service.

On the first sign-in of a profile the anonymous local tasks are copied to
the service in one batch (see :meth:`TaskStore.migrate`).
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional

from daygrid.calendar_grid import first_of_month, shift_month
from daygrid.utils import is_day_key, normalize_task_text

from .backends import LocalBackend, RemoteBackend, Snapshot, Task, TaskBackend, tasks_from_local
from .client import AuthUser, RemoteStoreError, RemoteTaskClient, Subscription
from .local_store import LocalStore, PERSIST_ERRORS

logger = logging.getLogger(__name__)

Notifier = Callable[[str], None]

ADD_FAILED_NOTICE = "Could not save the task. Please try again."
MIGRATION_FAILED_NOTICE = (
    "Could not move your local tasks to your account. They are kept on this "
    "device and will be moved the next time you sign in."
)
OFFLINE_NOTICE = "Could not reach the sync service; showing tasks stored on this device."


def _log_notice(message: str) -> None:
    logger.warning('notice: %s', message)


def build_migration_rows(local_tasks: Dict[str, List[Dict[str, Any]]], user_id: int) -> List[Dict[str, Any]]:
    """One insert row per local task, without the locally generated id."""
    rows: List[Dict[str, Any]] = []
    for key, tasks in tasks_from_local(local_tasks).items():
        if not is_day_key(key):
            logger.warning('not migrating %d task(s) under invalid day key %r', len(tasks), key)
            continue
        for t in tasks:
            row = {'user_id': user_id, 'date': key, 'text': t.text, 'done': t.done}
            if t.created_at is not None:
                row['created_at'] = t.created_at.isoformat()
            rows.append(row)
    return rows


class TaskStore:
    """Snapshot owner mediating between the local profile and the service.

    ``notify`` receives user-facing failure notices (a failed add or
    migration). ``realtime`` controls whether a change stream is opened
    while signed in.
    """

    def __init__(self, gateway: RemoteTaskClient, local_store: LocalStore,
                 notify: Optional[Notifier] = None, anchor: Optional[date] = None,
                 realtime: bool = True):
        self.gateway = gateway
        self.local_store = local_store
        self.notify: Notifier = notify or _log_notice
        self.realtime = realtime
        self.anchor: date = first_of_month(anchor or date.today())
        self.selected_key: Optional[str] = None
        self.snapshot: Snapshot = {}
        self.auth_user: Optional[AuthUser] = None
        self.backend: TaskBackend = LocalBackend(None)
        self._subscription: Optional[Subscription] = None
        self._remove_auth_listener: Optional[Callable[[], None]] = None
        self._snapshot_listeners: List[Callable[[Snapshot], None]] = []

    # -------------------- lifecycle --------------------
    async def initialize(self) -> None:
        """Resolve the persisted session and load the first snapshot."""
        user = None
        try:
            user = await self.gateway.get_current_user()
        except RemoteStoreError:
            logger.exception('could not resolve the persisted session')
            self.notify(OFFLINE_NOTICE)
        if user:
            await self._enter_session(user)
        else:
            self.backend = LocalBackend(self.local_store)
            await self._refresh()
        if self._remove_auth_listener is None:
            self._remove_auth_listener = self.gateway.on_auth_change(self._handle_auth_change)

    async def close(self) -> None:
        await self._close_subscription()
        if self._remove_auth_listener is not None:
            self._remove_auth_listener()
            self._remove_auth_listener = None

    async def _enter_session(self, user: AuthUser) -> None:
        self.auth_user = user
        if not self.local_store.is_migrated():
            await self.migrate(user)
        self.backend = RemoteBackend(self.gateway, user)
        if self.realtime:
            self._subscription = self.gateway.subscribe_to_task_changes(user.id, self.on_remote_change)
        await self.reload_month()

    async def _leave_session(self) -> None:
        logger.info('leaving session of user_id=%s', self.auth_user.id if self.auth_user else None)
        self.auth_user = None
        await self._close_subscription()
        # signed-out state starts empty; the old local copy stays on disk only
        self.backend = LocalBackend(None)
        self._publish({})

    async def _close_subscription(self) -> None:
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None

    async def _handle_auth_change(self, user: Optional[AuthUser]) -> None:
        if user is None:
            if self.auth_user is not None:
                await self._leave_session()
            return
        if self.auth_user is not None and self.auth_user.id == user.id:
            return
        if self.auth_user is not None:
            await self._leave_session()
        await self._enter_session(user)

    async def sign_out(self) -> None:
        await self.gateway.sign_out()
        # the auth listener normally handled this already
        if self.auth_user is not None:
            await self._leave_session()

    # -------------------- migration --------------------
    async def migrate(self, user: AuthUser) -> bool:
        """Copy the anonymous local tasks to ``user``'s account, once.

        Returns True when the profile is migrated afterwards. A failed insert
        leaves the local tasks and the flag alone so the next sign-in retries
        with the same rows.
        """
        rows = build_migration_rows(self.local_store.load_tasks(), user.id)
        if rows:
            try:
                await self.gateway.insert_tasks(rows)
            except RemoteStoreError:
                logger.exception('migration of %d local task(s) failed', len(rows))
                self.notify(MIGRATION_FAILED_NOTICE)
                return False
        # discard first: with the tasks gone a retry inserts nothing, even
        # when the flag write below fails
        try:
            self.local_store.discard_tasks()
        except PERSIST_ERRORS:
            logger.exception('migrated %d task(s) but could not discard the local copy', len(rows))
        try:
            self.local_store.mark_migrated()
        except PERSIST_ERRORS:
            logger.exception('migrated %d task(s) but could not set the migration flag', len(rows))
        self.snapshot = {}
        logger.info('migrated %d local task(s) for user_id=%s', len(rows), user.id)
        return True

    # -------------------- reads --------------------
    def add_snapshot_listener(self, cb: Callable[[Snapshot], None]) -> None:
        """Call ``cb(snapshot)`` whenever a reload or a sign-out replaces the snapshot."""
        self._snapshot_listeners.append(cb)

    async def _refresh(self) -> bool:
        try:
            snapshot = await self.backend.load_month(self.anchor)
        except RemoteStoreError:
            logger.exception('reload of %s failed; keeping the previous snapshot', self.anchor)
            return False
        # whichever reload finishes last wins
        self._publish(snapshot)
        return True

    def _publish(self, snapshot: Snapshot) -> None:
        self.snapshot = snapshot
        for cb in list(self._snapshot_listeners):
            cb(snapshot)

    async def reload_month(self, anchor: Optional[date] = None) -> Snapshot:
        """Replace the snapshot with the anchor month's tasks from the backend."""
        if anchor is not None:
            self.anchor = first_of_month(anchor)
        await self._refresh()
        return self.snapshot

    async def on_remote_change(self, event: Dict[str, Any]) -> None:
        logger.debug('remote change %s; reloading %s', event, self.anchor)
        await self.reload_month()

    async def set_month(self, anchor: date) -> Snapshot:
        return await self.reload_month(anchor)

    async def jump_month(self, delta: int) -> Snapshot:
        return await self.reload_month(shift_month(self.anchor, delta))

    def select_day(self, key: str) -> None:
        if not is_day_key(key):
            raise ValueError(f"invalid day key: {key!r}")
        self.selected_key = key

    def tasks_for(self, key: str) -> List[Task]:
        return list(self.snapshot.get(key, []))

    def completed_count(self, key: str) -> int:
        return sum(1 for t in self.snapshot.get(key, []) if t.done)

    def _find(self, key: str, task_id: str) -> Optional[Task]:
        for t in self.snapshot.get(key, []):
            if t.id == str(task_id):
                return t
        return None

    # -------------------- mutations --------------------
    async def add_task(self, day_key: str, text: str) -> bool:
        """Append a task to one day. Blank text is ignored."""
        text = normalize_task_text(text)
        if not text or not is_day_key(day_key):
            return False
        try:
            await self.backend.add(day_key, text)
        except RemoteStoreError:
            logger.exception('adding a task to %s failed', day_key)
            self.notify(ADD_FAILED_NOTICE)
            return False
        await self._refresh()
        return True

    async def add_task_to_dates(self, day_keys: Iterable[str], text: str) -> bool:
        """Add the same task text to several days in one go."""
        text = normalize_task_text(text)
        keys = [k for k in dict.fromkeys(day_keys or []) if is_day_key(k)]
        if not text or not keys:
            return False
        try:
            await self.backend.add_many(keys, text)
        except RemoteStoreError:
            logger.exception('adding a task to %d day(s) failed', len(keys))
            self.notify(ADD_FAILED_NOTICE)
            return False
        await self._refresh()
        return True

    async def toggle_task(self, day_key: str, task_id: str) -> bool:
        task = self._find(day_key, task_id)
        if task is None:
            return False
        try:
            await self.backend.toggle(day_key, task)
        except RemoteStoreError:
            logger.exception('toggling task %s failed', task_id)
            return False
        await self._refresh()
        return True

    async def delete_task(self, day_key: str, task_id: str) -> bool:
        if self._find(day_key, task_id) is None:
            return False
        try:
            await self.backend.delete(day_key, str(task_id))
        except RemoteStoreError:
            logger.exception('deleting task %s failed', task_id)
            return False
        await self._refresh()
        return True
