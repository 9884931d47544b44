"""
Run admission and event delivery

Only one engine operation may touch the connections at a time. The gate is a
non-blocking lock: a request that finds it held is rejected, never queued.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from .errors import BusyError

logger = logging.getLogger(__name__)

INFO = 'info'
PROGRESS = 'progress'
ERROR = 'error'
DONE = 'done'


@dataclass(frozen=True)
class SyncEvent:
    operation: str
    kind: str
    message: str
    rows: Optional[int] = None

    def __str__(self):
        return f"> [{self.operation}] {self.message}"


EventSink = Callable[[SyncEvent], None]


class EventLog:
    """Fan out engine events to subscribers and the logger"""

    def __init__(self):
        self._subscribers: List[EventSink] = []

    def subscribe(self, sink: EventSink):
        self._subscribers.append(sink)

    def unsubscribe(self, sink: EventSink):
        if sink in self._subscribers:
            self._subscribers.remove(sink)

    def emit(self, operation: str, message: str, kind: str = INFO,
             rows: Optional[int] = None) -> SyncEvent:
        event = SyncEvent(operation, kind, message, rows)
        if kind == ERROR:
            logger.error(f"[{operation}] {message}")
        else:
            logger.info(f"[{operation}] {message}")
        for sink in list(self._subscribers):
            try:
                sink(event)
            except Exception as err:
                logger.warning(f"Event subscriber failed: {err}")
        return event


class RunCoordinator:
    """Single-slot admission gate for engine operations"""

    def __init__(self, events: Optional[EventLog] = None):
        self.events = events or EventLog()
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self.current: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def try_acquire(self, operation: str = '') -> bool:
        if not self._lock.acquire(blocking=False):
            return False
        self.current = operation or None
        return True

    def release(self):
        self.current = None
        if self._lock.locked():
            self._lock.release()

    def _admit(self, operation: str):
        running = self.current
        if not self.try_acquire(operation):
            err = BusyError(operation, running)
            self.events.emit(operation, str(err), ERROR)
            raise err

    def run(self, operation: str, func: Callable[..., Any], *args, **kwargs) -> Any:
        """Run func if nothing else is running, raise BusyError otherwise"""
        self._admit(operation)
        try:
            return func(*args, **kwargs)
        finally:
            self.release()

    def submit(self, operation: str, func: Callable[..., Any], *args, **kwargs) -> Future:
        """Admit on the calling thread, run func on the worker thread

        The slot is released when the returned future completes, whether
        func returned or raised.
        """
        self._admit(operation)
        try:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1,
                                                    thread_name_prefix='db-sync')
            future = self._executor.submit(func, *args, **kwargs)
        except BaseException:
            self.release()
            raise
        future.add_done_callback(lambda _: self.release())
        return future

    def shutdown(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
