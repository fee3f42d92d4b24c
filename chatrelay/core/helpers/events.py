import inspect
import logging
from typing import Any, Callable

Handler = Callable[..., Any]


class EventHook:
    """
    An ordered list of observers for one kind of event.

    Each hook has a single producer (the object that owns it) and any number
    of consumers registered through `subscribe`. Handlers may be plain
    functions or coroutine functions; `emit` calls them in registration
    order and awaits the ones that return an awaitable.

    A handler raising an exception is logged and does not prevent the
    remaining handlers from running: one faulty consumer must not stall the
    producer's loop.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: list[Handler] = []
        self._logger = logging.getLogger("core.helpers.events")

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, handler: Handler) -> bool:
        return handler in self._handlers

    def subscribe(self, handler: Handler) -> Handler:
        """
        Register a handler. Registering the same handler twice is a no‑op.
        The handler is returned so that this can be used as a decorator.
        """
        if handler not in self._handlers:
            self._handlers.append(handler)
        return handler

    def unsubscribe(self, handler: Handler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def clear(self) -> None:
        self._handlers.clear()

    async def emit(self, *args: Any) -> None:
        # handlers may unsubscribe while we iterate
        for handler in list(self._handlers):
            try:
                result = handler(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                self._logger.error(
                    f"Error in '{self.name}' handler {handler!r}: {exc}",
                    exc_info=exc
                )
