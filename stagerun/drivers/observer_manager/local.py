"""Local Observer Manager - in-process implementation of the observer port.

Observers are run concurrently per event, each bounded by a timeout. A
failing or slow observer is logged and otherwise ignored so it can never
affect a run.
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from stagerun.kernel.logging import get_logger

if TYPE_CHECKING:
    from stagerun.kernel.orchestration.events.events import Event
    from stagerun.kernel.ports.observer_manager import AsyncObserverFunc, Observer, ObserverFunc

logger = get_logger(__name__)

# Default configuration constants
DEFAULT_OBSERVER_TIMEOUT = 5.0


class FunctionObserver:
    """Wrapper to make plain functions implement the Observer protocol."""

    def __init__(self, func: ObserverFunc | AsyncObserverFunc) -> None:
        self._func = func
        self.__name__ = getattr(func, "__name__", "anonymous_observer")

    async def handle(self, event: Event) -> None:
        result = self._func(event)
        if inspect.isawaitable(result):
            await result


class LocalObserverManager:
    """In-process observer manager with event filtering and fault isolation."""

    def __init__(self, observer_timeout: float = DEFAULT_OBSERVER_TIMEOUT) -> None:
        """Initialize the local observer manager.

        Args
        ----
            observer_timeout: Timeout in seconds for each observer call
        """
        self._timeout = observer_timeout
        self._observers: dict[str, Observer] = {}
        self._event_filters: dict[str, tuple[type[Event], ...] | None] = {}

    def register(
        self,
        handler: Observer | ObserverFunc | AsyncObserverFunc,
        *,
        observer_id: str | None = None,
        event_types: Iterable[type[Event]] | type[Event] | None = None,
    ) -> str:
        """Register an observer with optional event type filtering."""
        resolved_id = observer_id or str(uuid.uuid4())
        if resolved_id in self._observers:
            raise ValueError(f"Observer '{resolved_id}' already registered")

        if hasattr(handler, "handle"):
            observer: Observer = handler  # type: ignore[assignment]
        elif callable(handler):
            observer = FunctionObserver(handler)
        else:
            raise TypeError(
                f"Observer must be callable or implement Observer protocol, got {type(handler)}"
            )

        if event_types is None:
            filters = None
        elif isinstance(event_types, type):
            filters = (event_types,)
        else:
            filters = tuple(event_types)

        self._observers[resolved_id] = observer
        self._event_filters[resolved_id] = filters
        return resolved_id

    def unregister(self, observer_id: str) -> bool:
        self._event_filters.pop(observer_id, None)
        return self._observers.pop(observer_id, None) is not None

    async def notify(self, event: Event) -> None:
        """Notify all interested observers of an event.

        Errors and timeouts are logged but never raised.
        """
        interested = [
            (observer_id, observer)
            for observer_id, observer in self._observers.items()
            if self._event_filters[observer_id] is None
            or isinstance(event, self._event_filters[observer_id])  # type: ignore[arg-type]
        ]
        if not interested:
            return
        await asyncio.gather(
            *(self._dispatch(observer_id, observer, event) for observer_id, observer in interested)
        )

    async def _dispatch(self, observer_id: str, observer: Observer, event: Event) -> None:
        try:
            async with asyncio.timeout(self._timeout):
                await observer.handle(event)
        except TimeoutError:
            logger.warning(
                "Observer {} timed out after {}s handling {}",
                observer_id,
                self._timeout,
                type(event).__name__,
            )
        except Exception as e:
            logger.warning(
                "Observer {} failed for {}: {}", observer_id, type(event).__name__, e
            )

    def clear(self) -> None:
        """Remove all registered observers."""
        self._observers.clear()
        self._event_filters.clear()

    def __len__(self) -> int:
        return len(self._observers)


def log_event_observer(event: Any) -> None:
    """Observer that writes each event's log message at INFO level."""
    logger.info(event.log_message())
