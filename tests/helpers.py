"""Shared test helpers: an in-memory stand-in for RemoteTaskClient."""
import inspect
import uuid
from typing import Any, Dict, List, Optional

import httpx

from daygrid.auth import create_magic_link_token
from daygrid.utils import now_utc
from daygrid_client.client import AuthUser, RemoteStoreError


def unique_email(prefix: str = 'user') -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}@example.com"


async def sign_in(client: httpx.AsyncClient, email: Optional[str] = None) -> dict:
    """Verify a fresh magic link and attach the session to ``client``."""
    email = email or unique_email()
    r = await client.post('/auth/verify', json={'token': create_magic_link_token(email)})
    assert r.status_code == 200, r.text
    data = r.json()
    client.headers['X-Session-Token'] = data['session_token']
    return data


class FakeSubscription:
    def __init__(self, user_id: int, cb):
        self.user_id = user_id
        self.cb = cb
        self.closed = False

    @property
    def active(self) -> bool:
        return not self.closed

    async def close(self) -> None:
        self.closed = True


class FakeGateway:
    """Remote store kept in a list, with switchable failures.

    Add a method name to ``fail`` to make that call raise RemoteStoreError.
    Every call is recorded so tests can assert on what reached the "server".
    """

    def __init__(self, user: Optional[AuthUser] = None):
        self.user = user
        self.rows: List[Dict[str, Any]] = []
        self.fail = set()
        self.insert_calls: List[List[Dict[str, Any]]] = []
        self.query_calls: List[tuple] = []
        self.update_calls: List[tuple] = []
        self.delete_calls: List[Any] = []
        self.subscriptions: List[FakeSubscription] = []
        self.listeners = []
        self.signed_out = False
        self._next_id = 1

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail:
            raise RemoteStoreError(f"{name} failed", status_code=503)

    # -------------------- auth --------------------
    async def get_current_user(self) -> Optional[AuthUser]:
        self._maybe_fail('get_current_user')
        return self.user

    def on_auth_change(self, cb):
        self.listeners.append(cb)

        def _remove():
            if cb in self.listeners:
                self.listeners.remove(cb)

        return _remove

    async def _emit(self, user: Optional[AuthUser]) -> None:
        for cb in list(self.listeners):
            result = cb(user)
            if inspect.isawaitable(result):
                await result

    async def login(self, user: AuthUser) -> None:
        """Test hook: act as if a magic link was just verified."""
        self.user = user
        await self._emit(user)

    async def sign_in_with_email(self, email: str) -> Dict[str, Any]:
        return {'ok': True}

    async def sign_out(self) -> None:
        self.signed_out = True
        self.user = None
        await self._emit(None)

    # -------------------- tasks --------------------
    async def insert_tasks(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        self.insert_calls.append([dict(r) for r in rows])
        self._maybe_fail('insert_tasks')
        now = now_utc().isoformat()
        stored = []
        for r in rows:
            row = {
                'id': self._next_id,
                'user_id': r['user_id'],
                'date': r['date'],
                'text': r['text'],
                'done': bool(r.get('done', False)),
                'created_at': r.get('created_at') or now,
                'updated_at': now,
            }
            self._next_id += 1
            stored.append(row)
        self.rows.extend(stored)
        return [dict(r) for r in stored]

    def _get(self, task_id) -> Dict[str, Any]:
        for r in self.rows:
            if str(r['id']) == str(task_id):
                return r
        raise RemoteStoreError('task not found', status_code=404)

    async def update_task(self, task_id, patch: Dict[str, Any]) -> Dict[str, Any]:
        self.update_calls.append((task_id, dict(patch)))
        self._maybe_fail('update_task')
        row = self._get(task_id)
        row.update(patch)
        row['updated_at'] = now_utc().isoformat()
        return dict(row)

    async def delete_task(self, task_id) -> None:
        self.delete_calls.append(task_id)
        self._maybe_fail('delete_task')
        self.rows.remove(self._get(task_id))

    async def query_tasks_in_range(self, user_id: int, from_date: str, to_date: str) -> List[Dict[str, Any]]:
        self.query_calls.append((user_id, from_date, to_date))
        self._maybe_fail('query_tasks_in_range')
        out = [r for r in self.rows if r['user_id'] == user_id and from_date <= r['date'] <= to_date]
        out.sort(key=lambda r: (r['created_at'], r['id']))
        return [dict(r) for r in out]

    # -------------------- realtime --------------------
    def subscribe_to_task_changes(self, user_id: int, cb) -> FakeSubscription:
        sub = FakeSubscription(user_id, cb)
        self.subscriptions.append(sub)
        return sub
