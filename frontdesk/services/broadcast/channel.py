"""Publish/subscribe fan-out of call events to realtime observers.

Every observer owns a bounded queue drained by its own sender task, so
``publish`` never awaits: events are enqueued with ``put_nowait`` and the
observer's task delivers them in publish order. An observer whose queue
overflows or whose send fails is pruned from the fan-out set.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from frontdesk.services.broadcast.events import WILDCARD, CallEvent

logger = logging.getLogger(__name__)

SendFunc = Callable[[Dict[str, Any]], Awaitable[None]]


class Observer:
    """A connected observer and its delivery queue."""

    def __init__(self, connection_id: str, send: SendFunc, call_filter: str, max_queue: int):
        self.connection_id = connection_id
        self.send = send
        self.call_filter = call_filter
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self.task: Optional[asyncio.Task] = None
        self.alive = True


class EventBroadcaster:
    """Fans call events out to observers filtered by call id."""

    def __init__(self, max_queue: int = 256):
        self.max_queue = max_queue
        self._observers: Dict[str, Observer] = {}

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def register(self, connection_id: str, send: SendFunc, call_filter: str = WILDCARD) -> Observer:
        """Add an observer and start its sender task."""
        if connection_id in self._observers:
            self.unregister(connection_id)
        observer = Observer(connection_id, send, call_filter or WILDCARD, self.max_queue)
        observer.task = asyncio.create_task(self._deliver(observer))
        self._observers[connection_id] = observer
        logger.info(f"[BROADCAST] Observer registered - Connection: {connection_id}, Filter: {observer.call_filter}")
        return observer

    def subscribe(self, connection_id: str, call_filter: Optional[str]) -> bool:
        """Replace the observer's filter. Past events are not replayed."""
        observer = self._observers.get(connection_id)
        if observer is None:
            return False
        observer.call_filter = call_filter or WILDCARD
        logger.debug(f"[BROADCAST] Filter changed - Connection: {connection_id}, Filter: {observer.call_filter}")
        return True

    def notify(self, connection_id: str, message: Dict[str, Any]) -> bool:
        """Queue a message for one observer, behind any events already queued for it."""
        observer = self._observers.get(connection_id)
        if observer is None or not observer.alive:
            return False
        try:
            observer.queue.put_nowait(message)
        except asyncio.QueueFull:
            self.unregister(connection_id)
            return False
        return True

    def unregister(self, connection_id: str) -> None:
        observer = self._observers.pop(connection_id, None)
        if observer is None:
            return
        observer.alive = False
        if observer.task is not None and not observer.task.done():
            observer.task.cancel()
        self._drain(observer)
        logger.info(f"[BROADCAST] Observer removed - Connection: {connection_id}")

    def publish(self, event: CallEvent) -> int:
        """Enqueue the event for every matching observer; returns how many were reached."""
        message = event.to_message()
        delivered = 0
        for observer in list(self._observers.values()):
            if not observer.alive:
                self.unregister(observer.connection_id)
                continue
            if not event.matches(observer.call_filter):
                continue
            try:
                observer.queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(
                    f"[BROADCAST] Observer queue full, dropping observer - "
                    f"Connection: {observer.connection_id}, CallId: {event.call_id}"
                )
                self.unregister(observer.connection_id)
        return delivered

    async def flush(self) -> None:
        """Wait until every live observer has drained its queue."""
        for observer in list(self._observers.values()):
            if observer.alive:
                await observer.queue.join()

    async def close(self) -> None:
        for connection_id in list(self._observers):
            self.unregister(connection_id)

    def connection_ids(self) -> List[str]:
        return list(self._observers)

    async def _deliver(self, observer: Observer) -> None:
        while observer.alive:
            message = await observer.queue.get()
            try:
                await observer.send(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    f"[BROADCAST] Send failed, pruning observer - Connection: {observer.connection_id}, "
                    f"Error: {type(e).__name__}"
                )
                observer.alive = False
                self._observers.pop(observer.connection_id, None)
                self._drain(observer)
                return
            finally:
                observer.queue.task_done()

    @staticmethod
    def _drain(observer: Observer) -> None:
        while not observer.queue.empty():
            observer.queue.get_nowait()
            observer.queue.task_done()
