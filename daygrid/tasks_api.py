from fastapi import APIRouter, HTTPException, Depends, Query, Request
from fastapi.responses import StreamingResponse
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
from pydantic import BaseModel
from sqlmodel import select
from .auth import require_login
from .db import async_session
from .models import CalendarTask, User
from .realtime import broker
from .utils import now_utc, is_day_key, normalize_task_text, isoformat_or_none, ensure_aware
import asyncio
import json
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

# Seconds between keep-alive comments on an idle change stream.
STREAM_KEEPALIVE_SECONDS = 15.0


class TaskRowIn(BaseModel):
    date: str
    text: str
    done: bool = False
    created_at: Optional[datetime] = None
    user_id: Optional[int] = None


class InsertTasksRequest(BaseModel):
    rows: List[TaskRowIn]


class TaskPatch(BaseModel):
    text: Optional[str] = None
    done: Optional[bool] = None


def serialize_task(t: CalendarTask) -> Dict[str, Any]:
    return {
        "id": t.id,
        "user_id": t.user_id,
        "date": t.date,
        "text": t.text,
        "done": bool(t.done),
        "created_at": isoformat_or_none(t.created_at),
        "updated_at": isoformat_or_none(t.updated_at),
    }


async def _get_owned_task(sess, task_id: int, user: User) -> CalendarTask:
    t = await sess.get(CalendarTask, task_id)
    # foreign rows are reported as missing so ids do not leak across users
    if t is None or t.user_id != user.id:
        raise HTTPException(status_code=404, detail='task not found')
    return t


@router.post('/tasks')
async def insert_tasks(req: InsertTasksRequest, current_user: User = Depends(require_login)):
    """Insert one or many tasks for the caller in a single transaction."""
    if not req.rows:
        raise HTTPException(status_code=422, detail='rows required')
    now = now_utc()
    objs: List[CalendarTask] = []
    for i, row in enumerate(req.rows):
        if row.user_id is not None and row.user_id != current_user.id:
            raise HTTPException(status_code=403, detail='cannot insert tasks for another user')
        if not is_day_key(row.date):
            raise HTTPException(status_code=422, detail=f'rows[{i}].date must be YYYY-MM-DD')
        text = normalize_task_text(row.text)
        if not text:
            raise HTTPException(status_code=422, detail=f'rows[{i}].text must not be empty')
        # sqlite keeps naive wall-clock values; store everything as UTC
        created = ensure_aware(row.created_at).astimezone(timezone.utc) if row.created_at else now
        objs.append(CalendarTask(user_id=current_user.id, date=row.date, text=text, done=row.done, created_at=created, updated_at=now))
    async with async_session() as sess:
        sess.add_all(objs)
        # one commit for the whole batch: either every row lands or none does
        await sess.commit()
        for o in objs:
            await sess.refresh(o)
    for o in objs:
        broker.publish(current_user.id, 'INSERT', o.id, o.date)
    logger.info('inserted %d task(s) for user_id=%s', len(objs), current_user.id)
    return {"tasks": [serialize_task(o) for o in objs]}


@router.get('/tasks')
async def query_tasks(
    from_date: str = Query(..., alias='from'),
    to_date: str = Query(..., alias='to'),
    user_id: Optional[int] = None,
    current_user: User = Depends(require_login),
):
    """Tasks of the caller whose day key lies in [from, to], oldest first."""
    if user_id is not None and user_id != current_user.id:
        raise HTTPException(status_code=403, detail='forbidden')
    if not is_day_key(from_date) or not is_day_key(to_date):
        raise HTTPException(status_code=422, detail='from/to must be YYYY-MM-DD')
    async with async_session() as sess:
        q = (
            select(CalendarTask)
            .where(CalendarTask.user_id == current_user.id)
            .where(CalendarTask.date >= from_date)
            .where(CalendarTask.date <= to_date)
            .order_by(CalendarTask.created_at, CalendarTask.id)
        )
        res = await sess.exec(q)
        tasks = res.all()
    return {"tasks": [serialize_task(t) for t in tasks]}


@router.patch('/tasks/{task_id}')
async def update_task(task_id: int, patch: TaskPatch, current_user: User = Depends(require_login)):
    async with async_session() as sess:
        t = await _get_owned_task(sess, task_id, current_user)
        if patch.text is not None:
            text = normalize_task_text(patch.text)
            if not text:
                raise HTTPException(status_code=422, detail='text must not be empty')
            t.text = text
        if patch.done is not None:
            t.done = patch.done
        t.updated_at = now_utc()
        sess.add(t)
        await sess.commit()
        await sess.refresh(t)
    broker.publish(current_user.id, 'UPDATE', t.id, t.date)
    return {"task": serialize_task(t)}


@router.delete('/tasks/{task_id}')
async def delete_task(task_id: int, current_user: User = Depends(require_login)):
    async with async_session() as sess:
        t = await _get_owned_task(sess, task_id, current_user)
        day = t.date
        await sess.delete(t)
        await sess.commit()
    broker.publish(current_user.id, 'DELETE', task_id, day)
    return {"ok": True, "id": task_id}


@router.get('/tasks/changes')
async def stream_task_changes(request: Request, current_user: User = Depends(require_login)):
    """SSE endpoint streaming the caller's task changes.

    Each change is sent as ``event: change`` with a JSON body
    ``{type, id, date, user_id}``. Idle streams get a comment line every
    STREAM_KEEPALIVE_SECONDS so dead connections are noticed.
    """
    user_id = current_user.id

    async def event_generator():
        q = broker.subscribe(user_id)
        try:
            yield ": connected\n\n"
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event = await asyncio.wait_for(q.get(), timeout=STREAM_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield f"event: change\ndata: {json.dumps(event)}\n\n"
        finally:
            broker.unsubscribe(user_id, q)

    return StreamingResponse(event_generator(), media_type='text/event-stream', headers={'Cache-Control': 'no-cache'})
