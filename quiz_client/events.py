"""
Hub event names and payload translation.
Backend payloads vary in casing and field naming between events and server
versions. Every parser here tolerates missing or malformed fields and falls
back to defaults instead of raising.
"""
import logging
from datetime import datetime, timezone
from typing import Any

from quiz_client.constants import QUESTION_TIME_LIMIT_SECONDS, SERVER_INDEX_BASE
from quiz_client.leaderboard import extract_players, normalize_leaderboard
from quiz_client.models import (
    Answer,
    ErrorMessage,
    JoinedGame,
    LeaderboardSnapshot,
    LobbyPlayer,
    NewQuestion,
    QuestionResultEvent,
    ResultSource,
    RosterUpdate,
    SnapshotSource,
)

logger = logging.getLogger(__name__)

# Event names pushed by the hub. Matching is case-insensitive.
ERROR = "Error"
JOINED_GAME = "JoinedGame"
PLAYER_JOINED = "PlayerJoined"
LOBBY_INFO = "LobbyInfo"
LOBBY_UPDATE = "LobbyUpdate"
ROOM_STATUS = "RoomStatus"
GAME_STARTED = "GameStarted"
NEW_QUESTION = "NewQuestion"
PLAYER_QUESTION_RESULT = "PlayerQuestionResult"
QUESTION_TIME_ENDED = "QuestionTimeEnded"
PROCEEDING_TO_NEXT_QUESTION = "ProceedingToNextQuestion"
FINAL_RESULTS = "FinalResults"
GAME_ENDED = "GameEnded"
PLAYER_DISCONNECTED = "PlayerDisconnected"
HOST_DISCONNECTED = "HostDisconnected"
ROOM_CLOSED = "RoomClosed"
KICKED_FROM_GAME = "KickedFromGame"

# Hub methods invoked by the player
JOIN_GAME = "JoinGame"
SUBMIT_ANSWER = "SubmitAnswer"
SUBMIT_MULTIPLE_ANSWERS = "SubmitMultipleAnswers"

ANSWER_TEXT_FIELDS = ("title", "text", "answer", "value", "label", "display", "content")
ANSWER_ID_FIELDS = ("id", "answerId", "key")
MULTIPLE_CHOICE_FLAGS = ("isMultipleChoice", "isMultiple", "isMultipleAnswers", "multiple")
MULTIPLE_CHOICE_TYPE = "MultipleChoice"


def _as_dict(payload: Any) -> dict[str, Any]:
    return payload if isinstance(payload, dict) else {}


def _first(raw: dict[str, Any], *fields: str) -> Any:
    for field in fields:
        value = raw.get(field)
        if value is not None:
            return value
    return None


def _number(value: Any) -> int | float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != value:  # NaN
        return None
    return value


def _int(value: Any) -> int | None:
    number = _number(value)
    return int(number) if number is not None else None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


# --- Question index ---

def to_canonical_index(raw_index: int | None, index_base: int = SERVER_INDEX_BASE) -> int | None:
    """Convert a server question index into the 0-based index used internally."""
    if raw_index is None:
        return None
    if raw_index < index_base:
        logger.warning("Question index %s is below the server index base %s", raw_index, index_base)
        return 0
    return raw_index - index_base


def is_last_question(
    raw_index: int | None,
    total_questions: int | None,
    index_base: int = SERVER_INDEX_BASE,
) -> bool:
    """True once the index reaches the declared total."""
    index = to_canonical_index(raw_index, index_base)
    if index is None or not total_questions:
        return False
    return index + 1 >= total_questions


# --- Questions ---

def answer_text(raw: Any) -> str:
    if not isinstance(raw, dict):
        return "" if raw is None else str(raw)
    value = _first(raw, *ANSWER_TEXT_FIELDS)
    return "" if value is None else str(value)


def parse_answers(raw_answers: Any) -> tuple[Answer, ...]:
    if not isinstance(raw_answers, list):
        return ()
    answers = []
    for position, raw in enumerate(raw_answers):
        answer_id = _first(raw, *ANSWER_ID_FIELDS) if isinstance(raw, dict) else None
        answers.append(Answer(id=str(position if answer_id is None else answer_id), text=answer_text(raw)))
    return tuple(answers)


def parse_start_time(value: Any) -> datetime | None:
    """Accept an ISO-8601 string or epoch milliseconds."""
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    number = _number(value)
    if number is not None:
        return datetime.fromtimestamp(number / 1000, tz=timezone.utc)
    return None


def _question_text(raw: dict[str, Any]) -> str:
    nested = raw.get("question")
    if isinstance(nested, dict):
        nested = nested.get("text")
    value = raw.get("questionText") or nested or raw.get("text") or ""
    return value if isinstance(value, str) else str(value)


def _is_multiple_choice(raw: dict[str, Any]) -> bool:
    if any(bool(raw.get(flag)) for flag in MULTIPLE_CHOICE_FLAGS):
        return True
    return MULTIPLE_CHOICE_TYPE in (raw.get("questionType"), raw.get("type"))


def parse_new_question(payload: Any) -> NewQuestion:
    raw = _as_dict(payload)
    time_limit = _number(raw.get("timeLimitSeconds"))
    raw_answers = raw.get("answers")
    if not isinstance(raw_answers, list):
        raw_answers = raw.get("choices")
    return NewQuestion(
        raw_index=_int(_first(raw, "questionIndex", "index")),
        text=_question_text(raw),
        answers=parse_answers(raw_answers),
        is_multiple_choice=_is_multiple_choice(raw),
        time_limit_seconds=QUESTION_TIME_LIMIT_SECONDS if time_limit is None else time_limit,
        start_time=parse_start_time(raw.get("startTime")),
    )


# --- Results ---

def _answer_ref(value: Any) -> str:
    if isinstance(value, dict):
        ref = _first(value, "id", "answerId", "key", "text")
        return "" if ref is None else str(ref)
    return str(value)


def extract_correct_answer_ids(raw: dict[str, Any]) -> tuple[str, ...]:
    """Correct answers from correctAnswers, flagged answers, or a single correctAnswer."""
    correct_answers = raw.get("correctAnswers")
    if isinstance(correct_answers, list) and correct_answers:
        return tuple(_answer_ref(item) for item in correct_answers)
    answers = raw.get("answers")
    if isinstance(answers, list):
        return tuple(
            _answer_ref(item)
            for item in answers
            if isinstance(item, dict) and (item.get("isCorrect") or item.get("correct"))
        )
    single = raw.get("correctAnswer")
    if single:
        return (_answer_ref(single),)
    return ()


def _correct_flag(raw: dict[str, Any]) -> bool | None:
    for field in ("isCorrect", "correct"):
        if field in raw and raw[field] is not None:
            return bool(raw[field])
    return None


def parse_question_result(payload: Any, source: ResultSource) -> QuestionResultEvent:
    """Translate QuestionTimeEnded (time_ended) or PlayerQuestionResult (personal)."""
    raw = _as_dict(payload)
    leaderboard = normalize_leaderboard(raw).players if extract_players(raw) else ()
    return QuestionResultEvent(
        source=source,
        correct=_correct_flag(raw),
        message=_text(raw.get("message")),
        correct_answer_ids=extract_correct_answer_ids(raw),
        score=_number(raw.get("score")),
        rank=_int(_first(raw, "currentRank", "rank")),
        leaderboard=leaderboard,
        raw_index=_int(_first(raw, "questionIndex", "index")),
        total_questions=_int(raw.get("totalQuestions")),
        raw=raw,
    )


def parse_final_results(payload: Any, source: SnapshotSource = SnapshotSource.FINAL_RESULTS) -> LeaderboardSnapshot:
    return LeaderboardSnapshot(source=source, players=normalize_leaderboard(payload).players)


# --- Lobby ---

def parse_lobby_player(raw: Any) -> LobbyPlayer | None:
    if isinstance(raw, str):
        return LobbyPlayer(name=raw)
    if not isinstance(raw, dict):
        return None
    player_id = _first(raw, "playerId", "id", "PlayerId", "userId")
    name = _first(raw, "userName", "name", "playerName", "UserName", "Name")
    return LobbyPlayer(
        id=None if player_id is None else str(player_id),
        name=str(name) if name else "Unknown",
        connection_id=_text(_first(raw, "connectionId", "ConnectionId")),
        joined_at=_text(_first(raw, "joinedAt", "JoinedAt")),
    )


def _roster_fields(raw: dict[str, Any]) -> dict[str, Any]:
    players = None
    raw_players = _first(raw, "players", "Players")
    if isinstance(raw_players, list):
        players = tuple(p for p in (parse_lobby_player(item) for item in raw_players) if p is not None)
    single = _first(raw, "player", "Player")
    player = parse_lobby_player(single) if single is not None else None
    if player is None and players is None and _first(raw, "playerId", "userName") is not None:
        # Flat single-player payload, e.g. PlayerJoined
        player = parse_lobby_player(raw)
    return {
        "players": players,
        "player": player,
        "room_code": _text(_first(raw, "roomCode", "RoomCode")),
        "game_title": _text(_first(raw, "gameTitle", "GameTitle", "title")),
        "total_questions": _int(_first(raw, "totalQuestions", "TotalQuestions", "questionCount")),
        "status": _text(_first(raw, "status", "Status")),
    }


def parse_roster_update(payload: Any) -> RosterUpdate:
    if isinstance(payload, list):
        payload = {"players": payload}
    return RosterUpdate(**_roster_fields(_as_dict(payload)))


def parse_joined_game(payload: Any) -> JoinedGame:
    raw = _as_dict(payload)
    fields = _roster_fields(raw)
    player_id = _first(raw, "playerId", "PlayerId")
    user_name = _first(raw, "userName", "UserName", "name")
    player = fields["player"]
    if player_id is None and player is not None:
        player_id = player.id
    if user_name is None and player is not None:
        user_name = player.name
    return JoinedGame(
        **fields,
        player_id=None if player_id is None else str(player_id),
        user_name=_text(user_name),
    )


def parse_player_id(payload: Any) -> str | None:
    """Player id carried by a JoinGame return value, if any."""
    if isinstance(payload, str) and payload:
        return payload
    raw = _as_dict(payload)
    value = _first(raw, "playerId", "PlayerId", "id")
    if value is None and isinstance(raw.get("player"), dict):
        value = _first(raw["player"], "playerId", "id")
    return None if value is None else str(value)


# --- Errors ---

def parse_error(payload: Any, default: str = "Unknown error") -> ErrorMessage:
    if isinstance(payload, str):
        return ErrorMessage(message=payload or default)
    raw = _as_dict(payload)
    message = _first(raw, "message", "Message", "error")
    return ErrorMessage(
        message=str(message) if message else default,
        reason=_text(_first(raw, "reason", "Reason")),
    )


def parse_room_closed(payload: Any) -> ErrorMessage:
    return parse_error(payload, default="The room was closed by the host")
