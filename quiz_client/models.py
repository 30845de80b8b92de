"""
models.py
Typed records for the quiz client.
Raw hub payloads are translated into these in events.py; nothing past that
boundary looks at backend field names.
"""
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# --- Enums ---

class ConnectionState(str, Enum):
    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    CONNECTED = "Connected"
    RECONNECTING = "Reconnecting"


class QuestionPhase(str, Enum):
    WAITING_FOR_QUESTION = "waiting_for_question"
    ACTIVE = "active"
    SUBMITTED = "submitted"
    RESULT_SHOWN = "result_shown"


class ResultPhase(str, Enum):
    TENTATIVE = "tentative"
    CONFIRMED = "confirmed"


class ResultSource(str, Enum):
    """Where a question result came from, least to most specific."""
    PROVISIONAL = "provisional"
    TIME_ENDED = "time_ended"
    PERSONAL = "personal"

    @property
    def specificity(self) -> int:
        return _SOURCE_SPECIFICITY[self]


_SOURCE_SPECIFICITY = {
    ResultSource.PROVISIONAL: 0,
    ResultSource.TIME_ENDED: 1,
    ResultSource.PERSONAL: 2,
}


class SnapshotSource(str, Enum):
    FINAL_RESULTS = "final_results"
    GAME_ENDED = "game_ended"
    INTERIM = "interim"
    SYNTHESIZED = "synthesized"


# --- Session recovery ---

class SessionIdentity(BaseModel):
    """Player identity persisted per room so a restarted client can rejoin."""
    model_config = ConfigDict(populate_by_name=True)

    room_code: str = Field(alias="roomCode")
    user_name: str = Field(alias="userName")
    player_id: str | None = Field(default=None, alias="playerId")
    timestamp: float  # epoch milliseconds


# --- Leaderboard ---

class LeaderboardPlayer(BaseModel):
    """A player entry in canonical form."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    score: int | float = 0
    rank: int | None = None
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)


class LeaderboardResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    players: tuple[LeaderboardPlayer, ...] = ()

    @property
    def first(self) -> LeaderboardPlayer | None:
        return self.players[0] if self.players else None


class LeaderboardSnapshot(BaseModel):
    """Immutable ranked list attached to the event it came from."""
    model_config = ConfigDict(frozen=True)

    source: SnapshotSource
    players: tuple[LeaderboardPlayer, ...] = ()

    @property
    def first(self) -> LeaderboardPlayer | None:
        return self.players[0] if self.players else None

    def top(self, count: int) -> tuple[LeaderboardPlayer, ...]:
        return self.players[:count]


# --- Hub events ---

class Answer(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str


class NewQuestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    raw_index: int | None = None
    text: str = ""
    answers: tuple[Answer, ...] = ()
    is_multiple_choice: bool = False
    time_limit_seconds: float
    start_time: datetime | None = None


class QuestionResultEvent(BaseModel):
    """Either the broadcast "time ended" or the personal "player question result"."""
    model_config = ConfigDict(frozen=True)

    source: ResultSource
    correct: bool | None = None
    message: str | None = None
    correct_answer_ids: tuple[str, ...] = ()
    score: int | float | None = None
    rank: int | None = None
    leaderboard: tuple[LeaderboardPlayer, ...] = ()
    raw_index: int | None = None
    total_questions: int | None = None
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)


class LobbyPlayer(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str | None = None
    name: str = "Unknown"
    connection_id: str | None = None
    joined_at: str | None = None


class RosterUpdate(BaseModel):
    """Any roster-bearing event: JoinedGame, LobbyInfo, LobbyUpdate, PlayerJoined..."""
    model_config = ConfigDict(frozen=True)

    players: tuple[LobbyPlayer, ...] | None = None
    player: LobbyPlayer | None = None
    room_code: str | None = None
    game_title: str | None = None
    total_questions: int | None = None
    status: str | None = None


class JoinedGame(RosterUpdate):
    player_id: str | None = None
    user_name: str | None = None


class ErrorMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    reason: str | None = None


# --- View state ---

class QuestionResult(BaseModel):
    """Result shown for the current question, tentative until the server confirms it."""
    model_config = ConfigDict(frozen=True)

    phase: ResultPhase
    source: ResultSource
    correct: bool | None = None
    message: str = ""
    correct_answer_ids: tuple[str, ...] = ()
    score: int | float | None = None
    rank: int | None = None
    leaderboard: tuple[LeaderboardPlayer, ...] = ()


class QuestionViewState(BaseModel):
    model_config = ConfigDict(frozen=True)

    phase: QuestionPhase = QuestionPhase.WAITING_FOR_QUESTION
    question_index: int | None = None
    display_index: int | None = None
    text: str = ""
    answers: tuple[Answer, ...] = ()
    is_multiple_choice: bool = False
    total_time_seconds: float | None = None
    remaining_seconds: int | None = None
    selection: tuple[str, ...] = ()
    submitted: bool = False
    result: QuestionResult | None = None
    top_players: tuple[LeaderboardPlayer, ...] = ()
    connected: bool = False


class LobbyViewState(BaseModel):
    model_config = ConfigDict(frozen=True)

    room_code: str
    player_name: str
    players: tuple[LobbyPlayer, ...] = ()
    current_player: LobbyPlayer | None = None
    game_title: str | None = None
    total_questions: int = 0
    initializing: bool = True
    countdown: int | None = None
    error: str | None = None
    connected: bool = False


class FinalViewState(BaseModel):
    model_config = ConfigDict(frozen=True)

    snapshot: LeaderboardSnapshot | None = None
    podium: tuple[LeaderboardPlayer, ...] = ()
    me: LeaderboardPlayer | None = None
