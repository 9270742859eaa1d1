"""Observer Manager Port - interface for run/stage event observation.

Key guarantees an implementation must give:
- Observers are READ-ONLY and cannot affect execution
- Observer failures never fail a run (fault isolation)
- Slow observers are bounded by a timeout
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Callable, Iterable
from typing import Any, Protocol

from stagerun.kernel.orchestration.events.events import Event

# Type aliases for observer functions
ObserverFunc = Callable[[Event], None]
AsyncObserverFunc = Callable[[Event], Any]  # Returns awaitable


class Observer(Protocol):
    """Protocol for observers that monitor events."""

    async def handle(self, event: Event) -> None:
        """Handle an event (read-only, no return value)."""
        ...


class ObserverManager(Protocol):
    """Port interface for event observation systems."""

    @abstractmethod
    def register(
        self,
        handler: Observer | ObserverFunc | AsyncObserverFunc,
        *,
        observer_id: str | None = None,
        event_types: Iterable[type[Event]] | type[Event] | None = None,
    ) -> str:
        """Register an observer, optionally only for some event types.

        Returns
        -------
        str
            The observer id, usable with :meth:`unregister`
        """
        ...

    @abstractmethod
    def unregister(self, observer_id: str) -> bool:
        """Remove an observer; returns False if it was not registered."""
        ...

    @abstractmethod
    async def notify(self, event: Event) -> None:
        """Deliver an event to every interested observer."""
        ...
