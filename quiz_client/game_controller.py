"""
GameController Class - Master orchestrator for the quiz client.
Owns the views, switches between them and routes terminal errors.
"""
import asyncio
import logging
from enum import Enum, auto
from typing import Any, Callable

from quiz_client import events
from quiz_client.constants import ERROR_REDIRECT_DELAY_SECONDS
from quiz_client.errors import is_session_not_found
from quiz_client.models import LeaderboardSnapshot, NewQuestion
from quiz_client.network_manager import get_network_manager
from quiz_client.session_store import SessionStore
from quiz_client.validators import (
    PLAYER_NAME_HINT,
    ROOM_CODE_HINT,
    is_valid_player_name,
    is_valid_room_code,
)
from quiz_client.views.base_view import BaseView
from quiz_client.views.final_view import FinalView
from quiz_client.views.lobby_view import LobbyView
from quiz_client.views.question_view import QuestionView

logger = logging.getLogger(__name__)

SESSION_NOT_FOUND_MESSAGE = "Sorry player, game session not found. Redirecting to home..."
GAME_ERROR_MESSAGE = "Sorry player, an error occurred. Redirecting to home..."
CONNECTION_LOST_MESSAGE = "Connection to the game server was lost. Redirecting to home..."
KICKED_MESSAGE = "You were removed from the game"


class GameState(Enum):
    """Game state enumeration."""
    HOME = auto()
    LOBBY = auto()
    QUESTION = auto()
    FINAL = auto()
    ERROR = auto()


class GameController:
    """Master class that manages the whole client session."""

    def __init__(
        self,
        network: Any = None,
        store: SessionStore | None = None,
        *,
        error_redirect_delay: float = ERROR_REDIRECT_DELAY_SECONDS,
        warning_cue: Callable[[int], None] | None = None,
        lobby_options: dict[str, Any] | None = None,
        question_options: dict[str, Any] | None = None,
    ):
        """Initialize the game controller.

        Args:
            network: Connection manager; the process-wide one by default
            store: Local session store; the default database by default
            error_redirect_delay: Seconds a terminal error is shown before going home
            warning_cue: Called on each tick of the final seconds of a question
            lobby_options: Extra keyword arguments for the LobbyView
            question_options: Extra keyword arguments for the QuestionView
        """
        self._network = network if network is not None else get_network_manager()
        self._store = store if store is not None else SessionStore()
        self._error_redirect_delay = error_redirect_delay

        # Game state
        self._state: GameState = GameState.HOME
        self.room_code: str = ""
        self.player_name: str = ""
        self.player_id: str | None = None
        self.error: str | None = None
        self._redirect_task: asyncio.Task | None = None
        self._state_listeners: list[Callable[[GameState], None]] = []

        # Views
        self._views: dict[GameState, BaseView] = {
            GameState.LOBBY: LobbyView(self, self._network, self._store, **(lobby_options or {})),
            GameState.QUESTION: QuestionView(
                self, self._network, warning_cue=warning_cue, **(question_options or {})
            ),
            GameState.FINAL: FinalView(self, self._network),
        }

        # Room-wide events, handled in every view
        self._global_handlers = {
            events.ROOM_CLOSED: self._on_room_closed,
            events.KICKED_FROM_GAME: self._on_kicked,
            events.HOST_DISCONNECTED: self._on_host_disconnected,
        }
        for event_name, handler in self._global_handlers.items():
            self._network.subscribe(event_name, handler)
        self._network.on_connection_lost(self._on_connection_lost)

    @property
    def state(self) -> GameState:
        """Get current game state."""
        return self._state

    @property
    def network(self) -> Any:
        return self._network

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def current_view(self) -> BaseView | None:
        return self._views.get(self._state)

    def view(self, state: GameState) -> BaseView | None:
        return self._views.get(state)

    def add_state_listener(self, listener: Callable[[GameState], None]) -> None:
        self._state_listeners.append(listener)

    def switch_state(self, new_state: GameState, **kwargs) -> None:
        """Transition to a new game state.

        Args:
            new_state: The state to transition to
            **kwargs: Handed to the new view's on_enter
        """
        old_view = self._views.get(self._state)
        if old_view is not None and old_view.active:
            old_view.on_leave()

        logger.info("State transition: %s -> %s", self._state.name, new_state.name)
        self._state = new_state

        new_view = self._views.get(new_state)
        if new_view is not None:
            new_view.on_enter(**kwargs)
        for listener in list(self._state_listeners):
            try:
                listener(new_state)
            except Exception:
                logger.exception("State listener failed")

    # Navigation

    def join(self, room_code: str, player_name: str) -> None:
        """Validate the input and enter the lobby.

        Raises:
            ValueError: If the room code or the name is invalid
        """
        if not is_valid_room_code(room_code):
            raise ValueError(ROOM_CODE_HINT)
        if not is_valid_player_name(player_name):
            raise ValueError(PLAYER_NAME_HINT)
        self._cancel_redirect()
        self.room_code = room_code.strip()
        self.player_name = player_name.strip()
        self.player_id = None
        self.error = None
        self.switch_state(GameState.LOBBY, room_code=self.room_code, player_name=self.player_name)

    def start_questions(self, question: NewQuestion | None = None) -> None:
        if self._state == GameState.QUESTION:
            if question is not None:
                self._views[GameState.QUESTION].apply_question(question)
            return
        self.switch_state(GameState.QUESTION, question=question)

    def show_final(self, snapshot: LeaderboardSnapshot) -> None:
        if self._state == GameState.FINAL:
            self._views[GameState.FINAL].show(snapshot)
            return
        self.switch_state(GameState.FINAL, snapshot=snapshot)

    def go_home(self) -> None:
        self._cancel_redirect()
        self.switch_state(GameState.HOME)

    # Errors

    def route_error(self, message: str, in_game: bool) -> None:
        """Decide how a server error ends the current screen."""
        if is_session_not_found(message):
            self.show_error(SESSION_NOT_FOUND_MESSAGE, auto_redirect=True)
        elif in_game:
            logger.error("Server error during the game: %s", message)
            self.show_error(GAME_ERROR_MESSAGE, auto_redirect=True)
        else:
            self.show_error(message, auto_redirect=False)

    def show_error(self, message: str, auto_redirect: bool = True) -> None:
        logger.error("%s", message)
        self.error = message
        if not auto_redirect and self._state == GameState.LOBBY:
            # Lobby errors stay on screen until the player leaves
            self._views[GameState.LOBBY].show_error(message)
            return
        self.switch_state(GameState.ERROR)
        if auto_redirect:
            self._cancel_redirect()
            self._redirect_task = asyncio.create_task(self._redirect_home())

    async def _redirect_home(self) -> None:
        await asyncio.sleep(self._error_redirect_delay)
        self._redirect_task = None
        self.switch_state(GameState.HOME)

    def _cancel_redirect(self) -> None:
        if self._redirect_task and not self._redirect_task.done():
            self._redirect_task.cancel()
        self._redirect_task = None

    def _in_room(self) -> bool:
        return self._state in (GameState.LOBBY, GameState.QUESTION)

    def _on_room_closed(self, payload: Any = None, *args) -> None:
        if self._in_room():
            self.show_error(events.parse_room_closed(payload).message, auto_redirect=True)

    def _on_kicked(self, payload: Any = None, *args) -> None:
        if self._in_room():
            self.show_error(events.parse_error(payload, default=KICKED_MESSAGE).message, auto_redirect=True)

    def _on_host_disconnected(self, payload: Any = None, *args) -> None:
        logger.warning("Host disconnected from room %s", self.room_code)

    def _on_connection_lost(self, error: BaseException | None) -> None:
        if self._in_room():
            logger.error("Connection lost for good: %s", error)
            self.show_error(CONNECTION_LOST_MESSAGE, auto_redirect=True)

    # Lifecycle

    async def leave(self) -> None:
        """Stop the connection and return home."""
        await self._network.disconnect()
        self.go_home()

    async def shutdown(self) -> None:
        """Release views, subscriptions, the connection and the store."""
        self._cancel_redirect()
        view = self.current_view
        if view is not None and view.active:
            view.on_leave()
        for event_name, handler in self._global_handlers.items():
            self._network.unsubscribe(event_name, handler)
        self._network.remove_connection_lost(self._on_connection_lost)
        await self._network.disconnect()
        await self._store.close()
        logger.info("Client shut down")
