"""
Base View Class
Abstract base class for all client views (screens).
A view subscribes to its hub events on enter and releases them on leave.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Coroutine

from pydantic import BaseModel

logger = logging.getLogger(__name__)

EventHandler = Callable[..., Any]


class BaseView(ABC):
    """Abstract base class for all client views."""

    def __init__(self, game_controller: Any, network: Any):
        """
        Initialize the view.

        Args:
            game_controller: Reference to the main GameController.
            network: The process-wide connection manager.
        """
        self.game_controller = game_controller
        self.network = network
        self.active: bool = False
        self._subscriptions: list[tuple[str, EventHandler]] = []
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[Callable[[BaseModel], None]] = []

    @abstractmethod
    def event_handlers(self) -> dict[str, EventHandler]:
        """Hub events this view listens to while active."""

    @property
    @abstractmethod
    def state(self) -> BaseModel:
        """Immutable snapshot of what the view shows."""

    def on_enter(self, *args, **kwargs) -> None:
        """Called when this view becomes active."""
        self.active = True
        for event_name, handler in self.event_handlers().items():
            self.network.subscribe(event_name, handler)
            self._subscriptions.append((event_name, handler))

    def on_leave(self) -> None:
        """Called when this view is no longer active."""
        self.active = False
        for event_name, handler in self._subscriptions:
            self.network.unsubscribe(event_name, handler)
        self._subscriptions.clear()
        # A view task may itself trigger the switch that ends the view
        current = asyncio.current_task()
        for task in list(self._tasks):
            if not task.done() and task is not current:
                task.cancel()
        self._tasks.clear()

    # Listeners

    def add_listener(self, listener: Callable[[BaseModel], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[BaseModel], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def notify(self) -> None:
        if not self.active:
            return
        snapshot = self.state
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("%s listener failed", type(self).__name__)

    def spawn(self, coro: Coroutine) -> asyncio.Task:
        """Run a coroutine owned by this view; cancelled on leave."""
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
