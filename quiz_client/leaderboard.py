"""
Leaderboard normalization.
The backend has sent player/score lists in several shapes over time
(camelCase vs PascalCase, different container names); everything here turns
them into one ranked list of LeaderboardPlayer.
"""
from typing import Any

from quiz_client.models import LeaderboardPlayer, LeaderboardResult

# Order matters: the first container found wins
PLAYER_CONTAINER_FIELDS: tuple[str, ...] = (
    "finalLeaderboard",
    "FinalLeaderboard",
    "topPlayers",
    "TopPlayers",
    "leaderboard",
    "Leaderboard",
    "players",
    "Players",
    "playerResults",
    "PlayerResults",
)

ID_FIELDS = ("id", "playerId", "PlayerId", "userId")
NAME_FIELDS = ("name", "playerName", "userName", "Name", "PlayerName", "UserName")
SCORE_FIELDS = ("score", "Score", "playerScore")
RANK_FIELDS = ("rank", "Rank", "position")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _first_present(raw: dict[str, Any], fields: tuple[str, ...]) -> Any:
    for field in fields:
        value = raw.get(field)
        if value is not None and value != "":
            return value
    return None


def _first_number(raw: dict[str, Any], fields: tuple[str, ...]) -> int | float | None:
    for field in fields:
        value = raw.get(field)
        if _is_number(value):
            return value
    return None


def extract_players(payload: Any) -> list[dict[str, Any]]:
    """Find the list of player-like records in an event payload.

    A bare list is taken as the player list. Otherwise the candidate
    containers are searched in order and the first non-empty list is
    returned; an empty list if there is none.
    """
    if not payload:
        return []
    if isinstance(payload, list):
        return [p for p in payload if isinstance(p, dict)]
    if not isinstance(payload, dict):
        return []
    for field in PLAYER_CONTAINER_FIELDS:
        candidate = payload.get(field)
        if isinstance(candidate, list) and candidate:
            return [p for p in candidate if isinstance(p, dict)]
    return []


def normalize_player(raw: dict[str, Any], index: int) -> LeaderboardPlayer:
    """Map one raw record to a LeaderboardPlayer; rank stays None when absent."""
    player_id = _first_present(raw, ID_FIELDS)
    name = _first_present(raw, NAME_FIELDS)
    score = _first_number(raw, SCORE_FIELDS)
    rank = _first_number(raw, RANK_FIELDS)
    return LeaderboardPlayer(
        id=str(player_id) if player_id is not None else f"player-{index}",
        name=str(name) if name is not None else "Unknown",
        score=score if score is not None else 0,
        rank=int(rank) if rank is not None else None,
        raw=raw,
    )


def assign_competition_ranks(players: list[LeaderboardPlayer]) -> list[LeaderboardPlayer]:
    """Rank by score descending; ties share a rank and the next rank skips ahead.

    [50, 50, 30] -> [1, 1, 3]. Returned in input order.
    """
    order = sorted(range(len(players)), key=lambda i: -players[i].score)
    ranks: dict[int, int] = {}
    current_rank = 0
    last_score: int | float | None = None
    for position, i in enumerate(order):
        score = players[i].score
        if last_score is None or score < last_score:
            current_rank = position + 1
            last_score = score
        ranks[i] = current_rank
    return [p.model_copy(update={"rank": ranks[i]}) for i, p in enumerate(players)]


def _ordering_key(item: tuple[int, LeaderboardPlayer]) -> tuple:
    position, player = item
    unranked = player.rank is None
    return (unranked, player.rank if not unranked else 0, -player.score, position)


def normalize_leaderboard(payload: Any) -> LeaderboardResult:
    """Normalize any known leaderboard payload shape into a ranked result."""
    players = [normalize_player(raw, i) for i, raw in enumerate(extract_players(payload))]
    if any(p.rank is None for p in players):
        players = assign_competition_ranks(players)
    ranked = [p for _, p in sorted(enumerate(players), key=_ordering_key)]
    return LeaderboardResult(players=tuple(ranked))
