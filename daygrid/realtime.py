"""In-process fan-out of task change events.

Each connected change stream owns an asyncio Queue registered under the
user id it is scoped to. Writers call :meth:`ChangeBroker.publish` after a
commit; the SSE endpoint drains its queue. Delivery is best effort: a full
queue drops the event, which is harmless because subscribers reload the
whole month on the next event they do receive.
"""
from asyncio import Queue, QueueFull
from typing import Dict, List
import logging

from . import config

logger = logging.getLogger(__name__)

CHANGE_TYPES = ("INSERT", "UPDATE", "DELETE")


class ChangeBroker:
    def __init__(self, queue_size: int | None = None):
        self.queue_size = queue_size or config.REALTIME_QUEUE_SIZE
        self._queues: Dict[int, List[Queue]] = {}

    def subscribe(self, user_id: int) -> Queue:
        q: Queue = Queue(maxsize=self.queue_size)
        self._queues.setdefault(user_id, []).append(q)
        logger.debug('realtime subscriber added for user_id=%s (now %d)', user_id, len(self._queues[user_id]))
        return q

    def unsubscribe(self, user_id: int, q: Queue) -> None:
        queues = self._queues.get(user_id)
        if not queues:
            return
        if q in queues:
            queues.remove(q)
        if not queues:
            self._queues.pop(user_id, None)

    def subscriber_count(self, user_id: int) -> int:
        return len(self._queues.get(user_id, []))

    def publish(self, user_id: int, change_type: str, task_id: int, date: str | None = None) -> int:
        """Push one change event to every stream of ``user_id``; return deliveries."""
        if change_type not in CHANGE_TYPES:
            raise ValueError(f"unknown change type: {change_type}")
        event = {"type": change_type, "id": task_id, "date": date, "user_id": user_id}
        delivered = 0
        for q in list(self._queues.get(user_id, [])):
            try:
                q.put_nowait(event)
                delivered += 1
            except QueueFull:
                logger.warning('realtime queue full for user_id=%s; dropping %s event', user_id, change_type)
        return delivered


broker = ChangeBroker()
