"""
Progress Publisher.

Turns engine mutations into an ordered event stream per execution and fans
it out to any number of subscribers. Each execution has its own sequence
counter and a bounded replay buffer, so a reconnecting client can either
catch up from its last seen id or start over from a fresh snapshot. Once an
execution finishes, its counter and buffer are kept for a retention period
and then dropped.

``publish`` and ``subscribe`` never await. The engine publishes right
after it mutates state and an observer subscribes right after it takes a
snapshot, so on the event loop neither can interleave with the other: a
subscriber sees every event applied after its snapshot, exactly once.
"""

from typing import Any, AsyncIterator, Deque, Dict, List, Optional, Set
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
import asyncio
import json
import logging
import threading

from flowexec.config import settings


logger = logging.getLogger(__name__)


# Event kinds
SNAPSHOT = "snapshot"
NODE_START = "node_start"
NODE_COMPLETE = "node_complete"
CHECKPOINT_PENDING = "checkpoint_pending"
STATUS_CHANGED = "status_changed"


@dataclass
class ProgressEvent:
    """One event in an execution's stream."""
    seq: int
    execution_id: str
    kind: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.seq,
            "type": self.kind,
            "executionId": self.execution_id,
            "timestamp": self.timestamp,
            "data": self.data,
        }

    def to_sse(self) -> str:
        """Server-sent events wire format."""
        payload = json.dumps(self.to_dict(), default=str)
        return f"id: {self.seq}\nevent: {self.kind}\ndata: {payload}\n\n"


class Subscription:
    """A single observer's queue of events."""

    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def _put(self, event: Optional[ProgressEvent]) -> None:
        self._queue.put_nowait(event)

    def _close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(None)

    async def get(self) -> Optional[ProgressEvent]:
        """Next event, or None once the stream has ended."""
        return await self._queue.get()

    async def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event


class ProgressPublisher:
    """
    Process-wide registry of subscribers keyed by execution id.

    The registry is guarded by its own lock, independent of the
    per-execution locks the engine holds while mutating state.
    """

    def __init__(self, buffer_size: Optional[int] = None, retention: Optional[float] = None):
        self.buffer_size = buffer_size or settings.EVENT_BUFFER_SIZE
        self.retention = settings.EVENT_RETENTION if retention is None else retention
        self._lock = threading.Lock()
        self._subscribers: Dict[str, Set[Subscription]] = {}
        self._seq: Dict[str, int] = {}
        self._buffers: Dict[str, Deque[ProgressEvent]] = {}
        self._finished: Set[str] = set()

    def publish(self, execution_id: str, kind: str, data: Optional[Dict[str, Any]] = None) -> ProgressEvent:
        """Append an event to the execution's stream and deliver it."""
        with self._lock:
            seq = self._seq.get(execution_id, 0) + 1
            self._seq[execution_id] = seq
            event = ProgressEvent(seq=seq, execution_id=execution_id, kind=kind, data=data or {})
            buffer = self._buffers.get(execution_id)
            if buffer is None:
                buffer = self._buffers[execution_id] = deque(maxlen=self.buffer_size)
            buffer.append(event)
            subscribers = list(self._subscribers.get(execution_id, ()))

        for subscription in subscribers:
            subscription._put(event)

        logger.debug(f"Published {kind} #{seq} for execution {execution_id} to {len(subscribers)} subscribers")
        return event

    def subscribe(
        self,
        execution_id: str,
        snapshot: Dict[str, Any],
        last_event_id: Optional[int] = None,
        finished: bool = False,
    ) -> Subscription:
        """
        Register an observer.

        The subscription starts with the buffered events after
        ``last_event_id`` when the buffer still holds all of them, and with
        a ``snapshot`` event otherwise. For a finished execution the stream
        ends right after that initial payload.
        """
        subscription = Subscription(execution_id)

        with self._lock:
            seq = self._seq.get(execution_id, 0)
            replay = self._replay(execution_id, last_event_id, seq)
            if replay is None:
                subscription._put(
                    ProgressEvent(seq=seq, execution_id=execution_id, kind=SNAPSHOT, data=snapshot)
                )
            else:
                for event in replay:
                    subscription._put(event)

            if finished or execution_id in self._finished:
                subscription._close()
            else:
                self._subscribers.setdefault(execution_id, set()).add(subscription)

        return subscription

    def _replay(self, execution_id: str, last_event_id: Optional[int], seq: int) -> Optional[List[ProgressEvent]]:
        if last_event_id is None or last_event_id > seq:
            return None
        buffer = self._buffers.get(execution_id)
        if not buffer:
            return [] if last_event_id == seq else None
        if buffer[0].seq > last_event_id + 1:
            return None
        return [event for event in buffer if event.seq > last_event_id]

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.execution_id)
            if subscribers is not None:
                subscribers.discard(subscription)
                if not subscribers:
                    del self._subscribers[subscription.execution_id]
        subscription._close()

    def close(self, execution_id: str) -> None:
        """End every stream for an execution that reached a terminal status."""
        with self._lock:
            self._finished.add(execution_id)
            subscribers = self._subscribers.pop(execution_id, set())
        for subscription in subscribers:
            subscription._close()
        self._schedule_eviction(execution_id)

    def _schedule_eviction(self, execution_id: str) -> None:
        if self.retention > 0:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            if loop is not None:
                loop.call_later(self.retention, self._evict, execution_id)
                return
        self._evict(execution_id)

    def _evict(self, execution_id: str) -> None:
        with self._lock:
            self._buffers.pop(execution_id, None)
            self._seq.pop(execution_id, None)
            self._finished.discard(execution_id)
        logger.debug(f"Dropped event buffer for execution {execution_id}")

    def tracked(self) -> int:
        """Number of executions whose sequence counters are still held."""
        with self._lock:
            return len(self._seq)

    def last_seq(self, execution_id: str) -> int:
        with self._lock:
            return self._seq.get(execution_id, 0)

    def subscriber_count(self, execution_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(execution_id, ()))


# Global publisher instance
progress_publisher = ProgressPublisher()
