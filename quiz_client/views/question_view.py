"""
QuestionView - the per-question lifecycle.

    WAITING_FOR_QUESTION -> ACTIVE -> SUBMITTED -> RESULT_SHOWN

and back to ACTIVE on the next question, or out to the final view.
Results are two-phase: a tentative local "time is up" result can be
refined by the broadcast time-ended result and the player's own result,
in either order.
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable

from quiz_client import events
from quiz_client.constants import (
    FINAL_RESULTS_GRACE_SECONDS,
    SERVER_INDEX_BASE,
    TICK_SECONDS,
    TOP_PLAYERS_LIMIT,
    WARNING_WINDOW_SECONDS,
)
from quiz_client.countdown import Countdown, compute_remaining
from quiz_client.errors import HubConnectionError, HubInvocationError
from quiz_client.models import (
    Answer,
    LeaderboardPlayer,
    LeaderboardSnapshot,
    NewQuestion,
    QuestionPhase,
    QuestionResult,
    QuestionResultEvent,
    QuestionViewState,
    ResultPhase,
    ResultSource,
    SnapshotSource,
)
from quiz_client.views.base_view import BaseView

logger = logging.getLogger(__name__)

TIME_UP_MESSAGE = "Time is up!"
CORRECT_MESSAGE = "Correct!"
INCORRECT_MESSAGE = "Incorrect"


def _is_set(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, tuple)):
        return len(value) > 0
    return True


MERGED_FIELDS = ("correct", "message", "correct_answer_ids", "score", "rank", "leaderboard")


def merge_results(current: QuestionResult | None, incoming: QuestionResult) -> QuestionResult:
    """Combine two results of the same question.

    A result from an equally or more specific source overrides every field
    it specifies; a less specific one only fills fields still empty.
    """
    if current is None:
        return incoming
    if incoming.source.specificity >= current.source.specificity:
        winner, other = incoming, current
    else:
        winner, other = current, incoming
    fields = {
        name: getattr(winner, name) if _is_set(getattr(winner, name)) else getattr(other, name)
        for name in MERGED_FIELDS
    }
    confirmed = ResultPhase.CONFIRMED in (current.phase, incoming.phase)
    return QuestionResult(
        phase=ResultPhase.CONFIRMED if confirmed else ResultPhase.TENTATIVE,
        source=winner.source,
        **fields,
    )


class QuestionView(BaseView):
    """Question lifecycle state machine."""

    def __init__(
        self,
        game_controller: Any,
        network: Any,
        *,
        index_base: int = SERVER_INDEX_BASE,
        final_grace_seconds: float = FINAL_RESULTS_GRACE_SECONDS,
        tick_seconds: float = TICK_SECONDS,
        warning_window: int = WARNING_WINDOW_SECONDS,
        top_players_limit: int = TOP_PLAYERS_LIMIT,
        warning_cue: Callable[[int], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] | None = None,
    ):
        """Initialize the question view.

        Args:
            game_controller: Reference to the main GameController
            network: The process-wide connection manager
            index_base: Index of the first question as sent by the server
            final_grace_seconds: Wait for final results after the last question
            tick_seconds: Countdown tick interval
            warning_window: Final seconds in which warning_cue fires every tick
            top_players_limit: Size of the interim leaderboard
            warning_cue: Presentation callback for the final seconds
            clock: Monotonic clock for the countdown deadline
            now: Wall clock used against server start times
        """
        super().__init__(game_controller, network)
        self._configured_index_base = index_base
        self._index_base = index_base
        self._final_grace_seconds = final_grace_seconds
        self._tick_seconds = tick_seconds
        self._warning_window = warning_window
        self._top_players_limit = top_players_limit
        self._warning_cue = warning_cue
        self._clock = clock
        self._now = now or (lambda: datetime.now(timezone.utc))

        self._countdown: Countdown | None = None
        self._grace_task: asyncio.Task | None = None
        self._question_index: int | None = None
        self._clear_game()

    def _clear_game(self) -> None:
        self._index_base = self._configured_index_base
        self._question_index = None
        self._last_question: bool = False
        self._final_received: bool = False
        self._personal_leaderboard: tuple[LeaderboardPlayer, ...] = ()
        self._time_ended_leaderboard: tuple[LeaderboardPlayer, ...] = ()
        self._clear_question()
        self._phase = QuestionPhase.WAITING_FOR_QUESTION

    def _clear_question(self) -> None:
        self._text: str = ""
        self._answers: tuple[Answer, ...] = ()
        self._is_multiple_choice: bool = False
        self._total_time: float | None = None
        self._remaining: int | None = None
        self._selection: tuple[str, ...] = ()
        self._submitted: bool = False
        self._result: QuestionResult | None = None
        self._top_players: tuple[LeaderboardPlayer, ...] = ()
        self._question_token: object = object()

    def event_handlers(self):
        return {
            events.NEW_QUESTION: self._on_new_question,
            events.QUESTION_TIME_ENDED: self._on_question_time_ended,
            events.PLAYER_QUESTION_RESULT: self._on_player_question_result,
            events.PROCEEDING_TO_NEXT_QUESTION: self._on_proceeding,
            events.FINAL_RESULTS: self._on_final_results,
            events.GAME_ENDED: self._on_game_ended,
            events.ERROR: self._on_error,
        }

    @property
    def state(self) -> QuestionViewState:
        index = self._question_index
        return QuestionViewState(
            phase=self._phase,
            question_index=index,
            display_index=None if index is None else index + 1,
            text=self._text,
            answers=self._answers,
            is_multiple_choice=self._is_multiple_choice,
            total_time_seconds=self._total_time,
            remaining_seconds=self._remaining,
            selection=self._selection,
            submitted=self._submitted,
            result=self._result,
            top_players=self._top_players,
            connected=self.network.connected,
        )

    @property
    def phase(self) -> QuestionPhase:
        return self._phase

    @property
    def last_question(self) -> bool:
        return self._last_question

    def on_enter(self, question: NewQuestion | None = None, **kwargs) -> None:
        self._cancel_timers()
        self._clear_game()
        super().on_enter()
        if question is not None:
            self.apply_question(question)
        else:
            self.notify()

    def on_leave(self) -> None:
        self._cancel_timers()
        super().on_leave()

    def _cancel_timers(self) -> None:
        if self._countdown:
            self._countdown.cancel()
        self._countdown = None
        if self._grace_task and not self._grace_task.done():
            self._grace_task.cancel()
        self._grace_task = None

    # New question

    def _on_new_question(self, payload: Any = None, *args) -> None:
        self.apply_question(events.parse_new_question(payload))

    def apply_question(self, question: NewQuestion) -> None:
        """Reset per-question state and start the countdown."""
        if self._countdown:
            self._countdown.cancel()
        previous = self._question_index
        self._clear_question()

        if question.raw_index is not None:
            if 0 <= question.raw_index < self._index_base:
                logger.warning("Question index %s is below base %s, counting from %s for this game",
                               question.raw_index, self._index_base, question.raw_index)
                self._index_base = question.raw_index
            self._question_index = events.to_canonical_index(question.raw_index, self._index_base)
        else:
            self._question_index = 0 if previous is None else previous + 1

        self._text = question.text
        self._answers = question.answers
        self._is_multiple_choice = question.is_multiple_choice
        self._total_time = question.time_limit_seconds
        self._remaining = compute_remaining(question.time_limit_seconds, question.start_time, self._now())
        self._phase = QuestionPhase.ACTIVE
        logger.info("Question %d: %s (%ss)", self._question_index + 1, self._text, self._remaining)

        self._countdown = Countdown(
            self._remaining,
            on_tick=self._on_tick,
            on_expire=self._on_time_up,
            on_warning=self._warning_cue,
            tick_seconds=self._tick_seconds,
            warning_window=self._warning_window,
            clock=self._clock,
        )
        self._countdown.start()
        self.notify()

    def _on_tick(self, remaining: int) -> None:
        self._remaining = remaining
        self.notify()

    def _on_time_up(self) -> None:
        self._remaining = 0
        if not self._submitted and self._result is None:
            self._result = QuestionResult(
                phase=ResultPhase.TENTATIVE,
                source=ResultSource.PROVISIONAL,
                correct=False,
                message=TIME_UP_MESSAGE,
            )
            self._phase = QuestionPhase.RESULT_SHOWN
        self.notify()

    # Selection and submission

    def can_select(self) -> bool:
        return (
            self._phase == QuestionPhase.ACTIVE
            and not self._submitted
            and (self._remaining or 0) > 0
            and self.network.connected
        )

    def select(self, answer_id: str) -> bool:
        """Select (single choice) or toggle (multiple choice) an answer."""
        if not self.can_select():
            return False
        if answer_id not in {answer.id for answer in self._answers}:
            return False
        if self._is_multiple_choice:
            if answer_id in self._selection:
                self._selection = tuple(a for a in self._selection if a != answer_id)
            else:
                self._selection = self._selection + (answer_id,)
        else:
            self._selection = (answer_id,)
        self.notify()
        return True

    async def submit(self) -> bool:
        """Submit the current selection once. Rolled back if the invocation fails."""
        if not self.can_select() or not self._selection:
            return False
        token = self._question_token
        selection = self._selection

        self._submitted = True
        self._phase = QuestionPhase.SUBMITTED
        if self._countdown:
            self._countdown.cancel()
        self.notify()

        try:
            if self._is_multiple_choice:
                await self.network.invoke(events.SUBMIT_MULTIPLE_ANSWERS, list(selection))
            else:
                await self.network.invoke(events.SUBMIT_ANSWER, selection[0])
        except (HubConnectionError, HubInvocationError) as exc:
            logger.error("Submit failed: %s", exc)
            if token is self._question_token and self._phase == QuestionPhase.SUBMITTED:
                self._submitted = False
                self._phase = QuestionPhase.ACTIVE
                if self._countdown:
                    self._countdown.start()
                self.notify()
            return False
        logger.info("Submitted %s", ", ".join(selection))
        return True

    # Results

    def _on_question_time_ended(self, payload: Any = None, *args) -> None:
        event = events.parse_question_result(payload, ResultSource.TIME_ENDED)
        if event.leaderboard:
            self._time_ended_leaderboard = event.leaderboard
        message = event.message or ("" if self._submitted else TIME_UP_MESSAGE)
        self._apply_result(event, QuestionResult(
            phase=ResultPhase.CONFIRMED,
            source=ResultSource.TIME_ENDED,
            correct=event.correct,
            message=message,
            correct_answer_ids=event.correct_answer_ids,
            score=event.score,
            rank=event.rank,
            leaderboard=event.leaderboard,
        ))

    def _on_player_question_result(self, payload: Any = None, *args) -> None:
        event = events.parse_question_result(payload, ResultSource.PERSONAL)
        if event.leaderboard:
            self._personal_leaderboard = event.leaderboard
            self._top_players = event.leaderboard[:self._top_players_limit]
        correct = bool(event.correct)
        self._submitted = True
        self._apply_result(event, QuestionResult(
            phase=ResultPhase.CONFIRMED,
            source=ResultSource.PERSONAL,
            correct=correct,
            message=event.message or (CORRECT_MESSAGE if correct else INCORRECT_MESSAGE),
            correct_answer_ids=event.correct_answer_ids,
            score=event.score,
            rank=event.rank,
            leaderboard=event.leaderboard,
        ))

    def _apply_result(self, event: QuestionResultEvent, result: QuestionResult) -> None:
        if self._countdown:
            self._countdown.cancel()
        self._remaining = 0
        self._result = merge_results(self._result, result)
        self._phase = QuestionPhase.RESULT_SHOWN
        logger.debug("Result from %s: %s", result.source.value, self._result)

        if events.is_last_question(event.raw_index, event.total_questions, self._index_base):
            self._last_question = True
        if self._last_question:
            self._arm_final_grace()
        self.notify()

    def _on_proceeding(self, payload: Any = None, *args) -> None:
        logger.debug("Proceeding to next question")

    # End of game

    def _arm_final_grace(self) -> None:
        if self._final_received or (self._grace_task and not self._grace_task.done()):
            return
        self._grace_task = self.spawn(self._final_grace())

    async def _final_grace(self) -> None:
        await asyncio.sleep(self._final_grace_seconds)
        if self._final_received:
            return
        logger.warning("No final results after %ss, using the last leaderboard", self._final_grace_seconds)
        self._final_received = True
        self._grace_task = None
        self.game_controller.show_final(self.synthesize_final())

    def synthesize_final(self) -> LeaderboardSnapshot:
        """Final snapshot from the best leaderboard seen: personal, then time-ended."""
        players = self._personal_leaderboard or self._time_ended_leaderboard
        return LeaderboardSnapshot(source=SnapshotSource.SYNTHESIZED, players=players)

    def _finish(self, snapshot: LeaderboardSnapshot) -> None:
        self._final_received = True
        self._cancel_timers()
        self.game_controller.show_final(snapshot)

    def _on_final_results(self, payload: Any = None, *args) -> None:
        self._finish(events.parse_final_results(payload, SnapshotSource.FINAL_RESULTS))

    def _on_game_ended(self, payload: Any = None, *args) -> None:
        self._finish(events.parse_final_results(payload, SnapshotSource.GAME_ENDED))

    def _on_error(self, payload: Any = None, *args) -> None:
        error = events.parse_error(payload)
        self._cancel_timers()
        self.game_controller.route_error(error.message, in_game=True)
