"""
Per-queue notification channel.

Each TaskQueue owns one QueueEvents instance; subscribers register handlers
for ``error(err)``, ``complete(task)`` and ``fail(err, task)``. Handlers may
be plain functions or coroutine functions.

    queue.events.on_complete(lambda task: print("done", task.id))
    queue.events.on_fail(report_failure)
"""
import inspect
import logging
from collections import defaultdict
from typing import Any, Callable, DefaultDict, List, Union

from .models.enums import QueueEvent

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]


class QueueEvents:
    def __init__(self):
        self._handlers: DefaultDict[QueueEvent, List[Handler]] = defaultdict(list)

    def on(self, event: Union[QueueEvent, str], handler: Handler) -> Handler:
        if not callable(handler):
            raise TypeError("handler must be callable")
        self._handlers[QueueEvent(event)].append(handler)
        return handler

    def off(self, event: Union[QueueEvent, str], handler: Handler) -> None:
        handlers = self._handlers[QueueEvent(event)]
        if handler in handlers:
            handlers.remove(handler)

    def on_error(self, handler: Handler) -> Handler:
        return self.on(QueueEvent.error, handler)

    def on_complete(self, handler: Handler) -> Handler:
        return self.on(QueueEvent.complete, handler)

    def on_fail(self, handler: Handler) -> Handler:
        return self.on(QueueEvent.fail, handler)

    def listeners(self, event: Union[QueueEvent, str]) -> List[Handler]:
        return list(self._handlers[QueueEvent(event)])

    async def emit(self, event: Union[QueueEvent, str], *args: Any) -> None:
        event = QueueEvent(event)
        handlers = self.listeners(event)

        if not handlers and event is QueueEvent.error:
            logger.error(f"Unhandled queue error: {args[0] if args else None!r}")
            return

        for handler in handlers:
            try:
                result = handler(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                # One failing subscriber must not starve the others
                logger.exception(f"Subscriber for '{event.value}' raised")
