"""Notifications emitted by the question manager.

UI layers subscribe to these to refresh whatever shows the pool state. The
names double as documentation of what each event carries.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

QUESTIONS_LOADED = "questions.loaded"  # (source: SourceTag | None, count: int)
POOL_REFILLED = "pool.refilled"  # (added: int, total: int)
QUESTION_ASKED = "question.asked"  # (question_id: str)
SESSION_RESET = "session.reset"  # ()
CACHE_CLEARED = "cache.cleared"  # ()

logger = logging.getLogger(__name__)


class EventBus:
    """In-process publish/subscribe hub.

    Plain callbacks run inline in :meth:`publish`. Coroutine callbacks are
    scheduled as tasks on the running loop, or driven to completion with
    :func:`asyncio.run` when there is none. A failing subscriber is logged
    and never reaches the publisher.
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Callable[..., Any]]] = defaultdict(list)
        self._tasks: set[asyncio.Task[Any]] = set()

    def subscribe(self, event: str, callback: Callable[..., Any]) -> None:
        self._listeners[event].append(callback)

    def unsubscribe(self, event: str, callback: Callable[..., Any]) -> None:
        listeners = self._listeners.get(event, [])
        if callback in listeners:
            listeners.remove(callback)

    def listeners(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def publish(self, event: str, *args: Any, **kwargs: Any) -> None:
        """Deliver *event* to every subscriber registered for it."""

        callbacks = list(self._listeners.get(event, []))
        logger.debug("Publishing %s to %d subscribers", event, len(callbacks))
        for cb in callbacks:
            try:
                self._deliver(cb, args, kwargs)
            except Exception:
                logger.exception("Subscriber %r failed on %s", cb, event)

    def _deliver(self, cb: Callable[..., Any], args: tuple, kwargs: dict) -> None:
        res = cb(*args, **kwargs)
        if not asyncio.iscoroutine(res):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(res)
        else:
            task = loop.create_task(res)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: "asyncio.Task[Any]") -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async subscriber failed", exc_info=task.exception())


__all__ = [
    "EventBus",
    "QUESTIONS_LOADED",
    "POOL_REFILLED",
    "QUESTION_ASKED",
    "SESSION_RESET",
    "CACHE_CLEARED",
]
