"""
FinalView - shows the final leaderboard.
"""
import logging
from typing import Any

from quiz_client import events
from quiz_client.constants import PODIUM_SIZE
from quiz_client.models import FinalViewState, LeaderboardPlayer, LeaderboardSnapshot, SnapshotSource
from quiz_client.views.base_view import BaseView

logger = logging.getLogger(__name__)


class FinalView(BaseView):
    """Final results controller."""

    def __init__(self, game_controller: Any, network: Any, podium_size: int = PODIUM_SIZE):
        super().__init__(game_controller, network)
        self._podium_size = podium_size
        self._snapshot: LeaderboardSnapshot | None = None

    def event_handlers(self):
        return {
            events.FINAL_RESULTS: self._on_final_results,
            events.GAME_ENDED: self._on_game_ended,
        }

    @property
    def snapshot(self) -> LeaderboardSnapshot | None:
        return self._snapshot

    @property
    def first(self) -> LeaderboardPlayer | None:
        return self._snapshot.first if self._snapshot else None

    @property
    def podium(self) -> tuple[LeaderboardPlayer, ...]:
        return self._snapshot.top(self._podium_size) if self._snapshot else ()

    @property
    def me(self) -> LeaderboardPlayer | None:
        """This player's own entry, matched by id then name."""
        if not self._snapshot:
            return None
        my_id = self.game_controller.player_id
        my_name = (self.game_controller.player_name or "").strip().casefold()
        for player in self._snapshot.players:
            if my_id and player.id == my_id:
                return player
        for player in self._snapshot.players:
            if my_name and player.name.strip().casefold() == my_name:
                return player
        return None

    @property
    def state(self) -> FinalViewState:
        return FinalViewState(snapshot=self._snapshot, podium=self.podium, me=self.me)

    def on_enter(self, snapshot: LeaderboardSnapshot | None = None, **kwargs) -> None:
        super().on_enter()
        self._snapshot = snapshot
        if snapshot is not None:
            logger.info("Final results (%s): %d players", snapshot.source.value, len(snapshot.players))
        self.notify()

    def show(self, snapshot: LeaderboardSnapshot) -> None:
        """Replace the shown snapshot; a synthesized one never replaces a genuine one."""
        current = self._snapshot
        if current is not None:
            if snapshot.source == SnapshotSource.SYNTHESIZED and current.source != SnapshotSource.SYNTHESIZED:
                return
            # An empty GameEnded after FinalResults keeps the ranking
            if not snapshot.players and current.players:
                return
        self._snapshot = snapshot
        self.notify()

    def _on_final_results(self, payload: Any = None, *args) -> None:
        self.show(events.parse_final_results(payload, SnapshotSource.FINAL_RESULTS))

    def _on_game_ended(self, payload: Any = None, *args) -> None:
        self.show(events.parse_final_results(payload, SnapshotSource.GAME_ENDED))
