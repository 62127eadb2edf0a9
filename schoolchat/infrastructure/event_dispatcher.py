# schoolchat/infrastructure/event_dispatcher.py
import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable

from schoolchat.domain.events import Event


class EventDispatcher:
    """Runs event handlers in the background, outside the request.

    Each handler gets its own task, bounded by ``timeout`` seconds. A failing or
    slow handler is logged and never affects the caller or the other handlers.
    """

    def __init__(self, logger: logging.Logger, timeout: float | None = None) -> None:
        self.handlers: dict[str, list[Callable]] = defaultdict(list)
        self.logger = logger
        self.timeout = timeout
        self._tasks: set[asyncio.Task] = set()

    def register(self, event_type: str, handler: Callable) -> None:
        self.handlers[event_type].append(handler)

    async def dispatch(self, event: Event) -> None:
        event_type = event.__class__.__name__
        for handler in self.handlers[event_type]:
            task = asyncio.create_task(self._run(handler, event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, handler: Callable, event: Event) -> None:
        name = getattr(handler, "__qualname__", repr(handler))
        try:
            await asyncio.wait_for(handler(event), timeout=self.timeout)
        except asyncio.TimeoutError:
            self.logger.warning(
                f"Handler {name} timed out after {self.timeout}s "
                f"for {event.__class__.__name__}"
            )
        except Exception:
            self.logger.exception(
                f"Handler {name} failed for {event.__class__.__name__}"
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled handler, including ones scheduled meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
