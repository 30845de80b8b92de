"""
LobbyView - waits in the room until the game starts.
Maintains the roster from server events and counts down into the first
question once the room is ready.
"""
import logging
from typing import Any

from quiz_client import events
from quiz_client.constants import LOBBY_COUNTDOWN_SECONDS, TICK_SECONDS
from quiz_client.countdown import Countdown
from quiz_client.errors import QuizClientError, SessionNotFoundError, is_session_not_found
from quiz_client.join_controller import JoinController
from quiz_client.models import LobbyPlayer, LobbyViewState, RosterUpdate, SnapshotSource
from quiz_client.views.base_view import BaseView

logger = logging.getLogger(__name__)

CLOSED_STATUSES = frozenset({"ended", "closed", "finished", "completed"})


def same_player(a: LobbyPlayer, b: LobbyPlayer) -> bool:
    """Players match by id first, then by case-insensitive name."""
    if a.id and b.id and a.id == b.id:
        return True
    return bool(a.name) and a.name.strip().casefold() == b.name.strip().casefold()


def merge_player(players: list[LobbyPlayer], player: LobbyPlayer) -> list[LobbyPlayer]:
    merged = list(players)
    for i, existing in enumerate(merged):
        if same_player(existing, player):
            merged[i] = player
            return merged
    merged.append(player)
    return merged


def dedupe_players(players: tuple[LobbyPlayer, ...]) -> list[LobbyPlayer]:
    result: list[LobbyPlayer] = []
    for player in players:
        result = merge_player(result, player)
    return result


class LobbyView(BaseView):
    """Lobby controller."""

    def __init__(
        self,
        game_controller: Any,
        network: Any,
        store: Any,
        countdown_seconds: int = LOBBY_COUNTDOWN_SECONDS,
        tick_seconds: float = TICK_SECONDS,
        join_options: dict[str, Any] | None = None,
    ):
        super().__init__(game_controller, network)
        self._store = store
        self._countdown_seconds = countdown_seconds
        self._tick_seconds = tick_seconds
        self._join_options = join_options or {}

        self.join_controller: JoinController | None = None
        self._countdown: Countdown | None = None
        self._reset("", "")

    def _reset(self, room_code: str, player_name: str) -> None:
        self._room_code = room_code
        self._player_name = player_name
        self._players: list[LobbyPlayer] = []
        self._current_player: LobbyPlayer | None = None
        self._game_title: str | None = None
        self._total_questions: int = 0
        self._status: str | None = None
        self._countdown_value: int | None = None
        self._error: str | None = None

    def event_handlers(self):
        return {
            events.JOINED_GAME: self._on_joined_game,
            events.LOBBY_INFO: self._on_roster_event,
            events.LOBBY_UPDATE: self._on_roster_event,
            events.PLAYER_JOINED: self._on_roster_event,
            events.ROOM_STATUS: self._on_roster_event,
            events.PLAYER_DISCONNECTED: self._on_player_disconnected,
            events.GAME_STARTED: self._on_game_started,
            events.NEW_QUESTION: self._on_new_question,
            events.FINAL_RESULTS: self._on_final_results,
            events.GAME_ENDED: self._on_game_ended,
            events.ERROR: self._on_error,
        }

    @property
    def state(self) -> LobbyViewState:
        join = self.join_controller
        return LobbyViewState(
            room_code=self._room_code,
            player_name=self._player_name,
            players=tuple(self._players),
            current_player=self._current_player,
            game_title=self._game_title,
            total_questions=self._total_questions,
            initializing=join.initializing if join else False,
            countdown=self._countdown_value,
            error=self._error,
            connected=self.network.connected,
        )

    @property
    def ready(self) -> bool:
        """Room has questions, players and is still open."""
        if self._total_questions < 1 or not self._players:
            return False
        return (self._status or "").strip().lower() not in CLOSED_STATUSES

    def on_enter(self, room_code: str = "", player_name: str = "", **kwargs) -> None:
        """Subscribe and start joining the room."""
        self._reset(room_code.strip(), player_name.strip())
        super().on_enter()
        self.join_controller = JoinController(
            self.network,
            self._store,
            self._room_code,
            self._player_name,
            on_change=self._on_join_change,
            on_failed=self._on_join_failed,
            **self._join_options,
        )
        self.join_controller.start()
        self.notify()

    def on_leave(self) -> None:
        if self.join_controller:
            self.join_controller.cancel()
        self._cancel_countdown()
        super().on_leave()

    async def leave(self) -> None:
        """Stop the connection and go back home."""
        await self.network.disconnect()
        self.game_controller.go_home()

    # Join callbacks

    def _on_join_change(self) -> None:
        join = self.join_controller
        if join and join.player_id:
            self.game_controller.player_id = join.player_id
            self._identify_current_player()
        self.notify()

    def show_error(self, message: str) -> None:
        self._error = message
        if self.join_controller:
            self.join_controller.clear_initializing()
        self.notify()

    def _on_join_failed(self, error: QuizClientError) -> None:
        if isinstance(error, SessionNotFoundError):
            self.game_controller.route_error(str(error), in_game=False)
            return
        self.show_error(str(error))

    # Event handlers

    async def _on_joined_game(self, payload: Any = None, *args) -> None:
        joined = events.parse_joined_game(payload)
        if joined.player_id:
            self.game_controller.player_id = joined.player_id
        self._apply_roster(joined)
        if self.join_controller:
            await self.join_controller.handle_joined_game(joined)
        self.notify()

    def _on_roster_event(self, payload: Any = None, *args) -> None:
        update = events.parse_roster_update(payload)
        self._apply_roster(update)
        if update.players and self.join_controller:
            self.join_controller.clear_initializing()
        self.notify()

    def _on_player_disconnected(self, payload: Any = None, *args) -> None:
        gone = events.parse_lobby_player(payload)
        if gone is None:
            return
        self._players = [p for p in self._players if not same_player(p, gone)]
        logger.info("Player %s left room %s", gone.name, self._room_code)
        self.notify()

    def _on_game_started(self, payload: Any = None, *args) -> None:
        logger.info("Game started in room %s", self._room_code)
        self.game_controller.start_questions()

    def _on_new_question(self, payload: Any = None, *args) -> None:
        # Question arrived before the lobby countdown finished
        self.game_controller.start_questions(question=events.parse_new_question(payload))

    def _on_final_results(self, payload: Any = None, *args) -> None:
        self.game_controller.show_final(events.parse_final_results(payload, SnapshotSource.FINAL_RESULTS))

    def _on_game_ended(self, payload: Any = None, *args) -> None:
        self.game_controller.show_final(events.parse_final_results(payload, SnapshotSource.GAME_ENDED))

    def _on_error(self, payload: Any = None, *args) -> None:
        error = events.parse_error(payload, default="Connection error")
        if is_session_not_found(error.message):
            self.game_controller.route_error(error.message, in_game=False)
            return
        self.show_error(error.message)

    # Roster

    def _apply_roster(self, update: RosterUpdate) -> None:
        if update.players is not None:
            self._players = dedupe_players(update.players)
        elif update.player is not None:
            self._players = merge_player(self._players, update.player)

        if update.game_title:
            self._game_title = update.game_title
        if update.total_questions is not None:
            self._total_questions = update.total_questions
        if update.status:
            self._status = update.status

        self._identify_current_player()
        self._check_ready()

    def _identify_current_player(self) -> None:
        my_id = self.game_controller.player_id
        my_name = self._player_name.casefold()
        for player in self._players:
            if (my_id and player.id == my_id) or (my_name and player.name.strip().casefold() == my_name):
                self._current_player = player
                return

    def _check_ready(self) -> None:
        if not self.ready:
            if self._countdown and (self._status or "").strip().lower() in CLOSED_STATUSES:
                self._cancel_countdown()
            return
        if self._countdown is not None:
            return
        logger.info("Room %s ready, starting in %ss", self._room_code, self._countdown_seconds)
        self._countdown_value = self._countdown_seconds
        self._countdown = Countdown(
            self._countdown_seconds,
            on_tick=self._on_countdown_tick,
            on_expire=self._on_countdown_done,
            tick_seconds=self._tick_seconds,
        )
        self._countdown.start()

    def _on_countdown_tick(self, remaining: int) -> None:
        self._countdown_value = remaining
        self.notify()

    def _on_countdown_done(self) -> None:
        self._countdown_value = 0
        logger.info("First question requested for room %s", self._room_code)
        self.game_controller.start_questions()

    def _cancel_countdown(self) -> None:
        if self._countdown:
            self._countdown.cancel()
        self._countdown = None
        self._countdown_value = None
