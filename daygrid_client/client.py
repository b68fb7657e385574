"""Client for the DayGrid service API.

Wraps the auth endpoints, the task table endpoints and the realtime change
stream behind the small surface the task store needs. Every failed call
(transport error or non-2xx response) raises RemoteStoreError.
"""

import asyncio
import inspect
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

import httpx
from pydantic import BaseModel

from .config import Config, HTTP_TIMEOUT_SECONDS, REALTIME_RECONNECT_SECONDS
from .local_store import LocalStore

logger = logging.getLogger(__name__)

AuthCallback = Callable[[Optional["AuthUser"]], Union[None, Awaitable[None]]]
ChangeCallback = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


class RemoteStoreError(Exception):
    """A call to the remote service failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthUser(BaseModel):
    id: int
    email: str


async def _call(cb: Callable, *args) -> None:
    result = cb(*args)
    if inspect.isawaitable(result):
        await result


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[Dict[str, Any]]:
    """Decode ``change`` events from a text/event-stream line iterator.

    Only JSON objects are yielded; any other payload is logged and skipped.
    """
    event_name = 'message'
    data_lines: List[str] = []
    async for line in lines:
        line = line.rstrip('\r')
        if not line:
            if data_lines and event_name in ('change', 'message'):
                payload = '\n'.join(data_lines)
                try:
                    event = json.loads(payload)
                except ValueError:
                    event = None
                if isinstance(event, dict):
                    yield event
                else:
                    logger.warning('ignoring malformed change event: %r', payload)
            event_name = 'message'
            data_lines = []
            continue
        if line.startswith(':'):
            # comment / keep-alive
            continue
        field, _, value = line.partition(':')
        value = value[1:] if value.startswith(' ') else value
        if field == 'event':
            event_name = value
        elif field == 'data':
            data_lines.append(value)


class Subscription:
    """Handle for a running realtime change stream."""

    def __init__(self, task: asyncio.Task):
        self._task = task

    @property
    def active(self) -> bool:
        return not self._task.done()

    async def close(self) -> None:
        if self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class RemoteTaskClient:
    """Async client for auth, task CRUD and the change stream."""

    def __init__(self, base_url: str = None, local_store: Optional[LocalStore] = None,
                 http_client: Optional[httpx.AsyncClient] = None,
                 reconnect_delay: float = REALTIME_RECONNECT_SECONDS):
        self.base_url = base_url or Config().server_url
        self.local_store = local_store
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(base_url=self.base_url, timeout=HTTP_TIMEOUT_SECONDS)
        self.reconnect_delay = reconnect_delay
        self.session_token: Optional[str] = local_store.get_session_token() if local_store else None
        self.current_user: Optional[AuthUser] = None
        self._auth_listeners: List[AuthCallback] = []

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # -------------------- plumbing --------------------
    def _get_auth_headers(self) -> Dict[str, str]:
        headers = {}
        if self.session_token:
            headers['X-Session-Token'] = self.session_token
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        headers = {**self._get_auth_headers(), **kwargs.pop('headers', {})}
        try:
            response = await self._http.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"{method} {path} failed: {e}") from e
        if response.status_code >= 400:
            try:
                detail = response.json().get('detail')
            except ValueError:
                detail = response.text
            raise RemoteStoreError(f"{method} {path} failed: {response.status_code} {detail}", status_code=response.status_code)
        return response.json()

    def _persist_session(self, token: Optional[str]) -> None:
        self.session_token = token
        if self.local_store is not None:
            self.local_store.set_session_token(token)

    async def _notify_auth(self, user: Optional[AuthUser]) -> None:
        for cb in list(self._auth_listeners):
            try:
                await _call(cb, user)
            except Exception:
                logger.exception('auth change listener failed')

    # -------------------- auth --------------------
    def on_auth_change(self, cb: AuthCallback) -> Callable[[], None]:
        """Register ``cb(user_or_None)``; returns a function that unregisters it."""
        self._auth_listeners.append(cb)

        def _remove() -> None:
            if cb in self._auth_listeners:
                self._auth_listeners.remove(cb)

        return _remove

    async def get_current_user(self) -> Optional[AuthUser]:
        """Resolve the persisted session to a user; None when signed out."""
        if not self.session_token:
            self.current_user = None
            return None
        data = await self._request('GET', '/auth/session')
        user = data.get('user')
        if not user:
            logger.info('persisted session is no longer valid; dropping it')
            self._persist_session(None)
            self.current_user = None
            return None
        self.current_user = AuthUser(**user)
        return self.current_user

    async def sign_in_with_email(self, email: str) -> Dict[str, Any]:
        """Ask the service to email a sign-in link."""
        return await self._request('POST', '/auth/magic-link', json={'email': email})

    async def verify_magic_link(self, token: str) -> AuthUser:
        """Complete a sign-in with the token from the emailed link."""
        data = await self._request('POST', '/auth/verify', json={'token': token})
        self._persist_session(data['session_token'])
        self.current_user = AuthUser(**data['user'])
        logger.info('signed in as %s', self.current_user.email)
        await self._notify_auth(self.current_user)
        return self.current_user

    async def sign_out(self) -> None:
        if self.session_token:
            try:
                await self._request('POST', '/auth/logout')
            except RemoteStoreError:
                # the local session is dropped regardless
                logger.exception('server-side logout failed')
        self._persist_session(None)
        self.current_user = None
        await self._notify_auth(None)

    # -------------------- tasks --------------------
    async def insert_tasks(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        data = await self._request('POST', '/tasks', json={'rows': rows})
        return data.get('tasks', [])

    async def update_task(self, task_id: Union[int, str], patch: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._request('PATCH', f'/tasks/{task_id}', json=patch)
        return data.get('task', {})

    async def delete_task(self, task_id: Union[int, str]) -> None:
        await self._request('DELETE', f'/tasks/{task_id}')

    async def query_tasks_in_range(self, user_id: int, from_date: str, to_date: str) -> List[Dict[str, Any]]:
        params = {'from': from_date, 'to': to_date, 'user_id': user_id}
        data = await self._request('GET', '/tasks', params=params)
        return data.get('tasks', [])

    # -------------------- realtime --------------------
    def subscribe_to_task_changes(self, user_id: int, cb: ChangeCallback) -> Subscription:
        """Start streaming change events for ``user_id`` into ``cb``."""
        task = asyncio.create_task(self._stream_changes(user_id, cb))
        return Subscription(task)

    async def _stream_changes(self, user_id: int, cb: ChangeCallback) -> None:
        while True:
            try:
                async with self._http.stream('GET', '/tasks/changes', headers=self._get_auth_headers(), timeout=None) as response:
                    if response.status_code >= 400:
                        raise RemoteStoreError(f"change stream refused: {response.status_code}", status_code=response.status_code)
                    async for event in iter_sse_events(response.aiter_lines()):
                        if event.get('user_id') not in (None, user_id):
                            continue
                        try:
                            await _call(cb, event)
                        except Exception:
                            logger.exception('change callback failed for event %s', event)
            except (httpx.HTTPError, RemoteStoreError):
                logger.warning('change stream for user_id=%s dropped', user_id, exc_info=True)
            logger.info('change stream ended; reconnecting in %.1fs', self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)
