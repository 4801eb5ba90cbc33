"""Typed publish/subscribe channel preserving emission order"""

import logging
import threading
from collections import deque
from typing import Callable, Deque, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EventChannel(Generic[T]):
    """
    In-process fan-out of events of one type.

    Events are queued and delivered FIFO: when a handler publishes while an
    earlier event is still being delivered, the new event waits until the
    earlier one has reached every handler. All subscribers therefore observe
    one and the same order, whatever their registration order.
    """

    def __init__(self, name: str):
        self.name = name
        self._handlers: List[Callable[[T], None]] = []
        self._queue: Deque[T] = deque()
        self._lock = threading.RLock()
        self._dispatching = False

    def subscribe(self, handler: Callable[[T], None]) -> Callable[[], None]:
        """Register handler; returns a function that unsubscribes it"""
        with self._lock:
            self._handlers.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return unsubscribe

    def publish(self, event: T) -> None:
        """
        Deliver event, and everything handlers publish meanwhile, to every handler.

        A failing handler is logged and delivery carries on, so the queue is
        always empty when this returns. The first failure is then re-raised to
        the publisher.
        """
        with self._lock:
            self._queue.append(event)
            if self._dispatching:
                return
            self._dispatching = True

        failure = None
        try:
            while True:
                with self._lock:
                    if not self._queue:
                        self._dispatching = False
                        break
                    current = self._queue.popleft()
                    handlers = list(self._handlers)
                for handler in handlers:
                    try:
                        handler(current)
                    except Exception as e:
                        logger.exception("Handler failed on channel %s", self.name)
                        if failure is None:
                            failure = e
        except BaseException:
            with self._lock:
                self._dispatching = False
            raise
        if failure is not None:
            raise failure
