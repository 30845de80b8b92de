"""
Quiz Client
Main entry point: a line-oriented console front-end over the GameController.
"""
import asyncio
import logging
import sys
import threading

import click

from quiz_client.constants import LOG_FILE, LOG_LEVEL, SERVER_URL, SKIP_NEGOTIATION
from quiz_client.game_controller import GameController, GameState
from quiz_client.logging_config import configure_logging
from quiz_client.models import FinalViewState, LobbyViewState, QuestionPhase, QuestionViewState
from quiz_client.network_manager import NetworkManager
from quiz_client.session_store import SessionStore
from quiz_client.validators import (
    PLAYER_NAME_HINT,
    ROOM_CODE_HINT,
    is_valid_player_name,
    is_valid_room_code,
)

logger = logging.getLogger(__name__)

HELP_TEXT = "Answer with its number (1, or 1,3 for several), 's' to submit, 'q' to quit."


def parse_choices(line: str) -> list[int] | None:
    """'1' or '1,3' -> 0-based positions; None when the line is not a choice."""
    positions = []
    for part in line.replace(" ", "").split(","):
        if not part.isdigit() or int(part) < 1:
            return None
        positions.append(int(part) - 1)
    return positions or None


class ConsoleFrontend:
    """Prints view changes and feeds typed commands to the current view."""

    def __init__(self, controller: GameController):
        self._controller = controller
        self._done = asyncio.Event()
        self._lines: asyncio.Queue[str | None] = asyncio.Queue()
        self._last_lobby: tuple | None = None
        self._last_question: int | None = None
        self._last_result = None
        self._last_final = None

        controller.add_state_listener(self._on_state)
        controller.view(GameState.LOBBY).add_listener(self._on_lobby)
        controller.view(GameState.QUESTION).add_listener(self._on_question)
        controller.view(GameState.FINAL).add_listener(self._on_final)

    # Output

    def _on_state(self, state: GameState) -> None:
        if state == GameState.ERROR:
            click.secho(self._controller.error or "Error", fg="red")
        elif state == GameState.HOME:
            self._done.set()

    def _on_lobby(self, state: LobbyViewState) -> None:
        summary = (len(state.players), state.countdown, state.error, state.initializing)
        if summary == self._last_lobby:
            return
        self._last_lobby = summary
        if state.error:
            click.secho(f"{state.error} (type 'q' to go back)", fg="red")
            return
        if state.initializing:
            click.echo(f"Joining room {state.room_code}...")
            return
        names = ", ".join(p.name for p in state.players) or "nobody yet"
        title = f"{state.game_title} " if state.game_title else ""
        click.echo(f"Lobby {title}[{state.room_code}]: {names}")
        if state.countdown is not None:
            click.echo(f"Game starts in {state.countdown}...")

    def _on_question(self, state: QuestionViewState) -> None:
        if state.phase == QuestionPhase.WAITING_FOR_QUESTION:
            return
        if state.question_index != self._last_question and state.phase == QuestionPhase.ACTIVE:
            self._last_question = state.question_index
            self._last_result = None
            click.echo("")
            click.secho(f"Question {state.display_index}: {state.text}", bold=True)
            for position, answer in enumerate(state.answers, start=1):
                click.echo(f"  {position}. {answer.text}")
            kind = "several answers" if state.is_multiple_choice else "one answer"
            click.echo(f"Choose {kind}. {state.remaining_seconds}s left.")
        if state.result is not None and state.result != self._last_result:
            self._last_result = state.result
            colour = "green" if state.result.correct else "red"
            click.secho(state.result.message or "Result received", fg=colour)
            correct = [a.text for a in state.answers if a.id in state.result.correct_answer_ids]
            if correct:
                click.echo(f"Correct answer{'s' if len(correct) > 1 else ''}: {', '.join(correct)}")
            if state.result.rank is not None:
                click.echo(f"Your rank: {state.result.rank}  score: {state.result.score}")
            for player in state.top_players:
                click.echo(f"  #{player.rank} {player.name} ({player.score})")

    def _on_final(self, state: FinalViewState) -> None:
        if state.snapshot is None or state.snapshot == self._last_final:
            return
        self._last_final = state.snapshot
        click.echo("")
        click.secho("Final results", bold=True)
        for player in state.podium:
            click.echo(f"  #{player.rank} {player.name} ({player.score})")
        if state.me is not None:
            click.echo(f"You finished #{state.me.rank} with {state.me.score} points.")
        click.echo("Type 'q' to quit.")

    # Input

    def _read_stdin(self, loop: asyncio.AbstractEventLoop) -> None:
        for line in sys.stdin:
            loop.call_soon_threadsafe(self._lines.put_nowait, line.strip())
        loop.call_soon_threadsafe(self._lines.put_nowait, None)

    async def _handle(self, line: str) -> None:
        controller = self._controller
        if line.lower() == "q":
            if controller.state == GameState.LOBBY:
                await controller.view(GameState.LOBBY).leave()
            else:
                self._done.set()
            return
        if controller.state != GameState.QUESTION:
            return
        view = controller.view(GameState.QUESTION)
        if line.lower() == "s":
            if not await view.submit():
                click.echo("Nothing submitted.")
            return
        positions = parse_choices(line)
        if positions is None:
            click.echo(HELP_TEXT)
            return
        answers = view.state.answers
        for position in positions:
            if position >= len(answers) or not view.select(answers[position].id):
                click.echo(f"Answer {position + 1} cannot be selected now.")
        if not view.state.is_multiple_choice and view.state.selection:
            await view.submit()

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        threading.Thread(target=self._read_stdin, args=(loop,), daemon=True).start()
        click.echo(HELP_TEXT)
        done = asyncio.create_task(self._done.wait())
        try:
            while not self._done.is_set():
                line_task = asyncio.create_task(self._lines.get())
                await asyncio.wait({line_task, done}, return_when=asyncio.FIRST_COMPLETED)
                if not line_task.done():
                    line_task.cancel()
                    break
                line = line_task.result()
                if line is None:
                    break
                if line:
                    await self._handle(line)
        finally:
            done.cancel()


async def run_client(
    room_code: str,
    player_name: str | None,
    server_url: str,
    skip_negotiation: bool,
) -> None:
    network = NetworkManager(server_url, skip_negotiation=skip_negotiation)
    store = SessionStore()
    if not player_name:
        player_name = await store.load_last_name()
        if player_name:
            click.echo(f"Playing as {player_name}")
    if not player_name or not is_valid_player_name(player_name):
        await store.close()
        raise click.UsageError(PLAYER_NAME_HINT)

    controller = GameController(
        network,
        store,
        warning_cue=lambda remaining: click.secho(f"{remaining}...", fg="yellow"),
    )
    frontend = ConsoleFrontend(controller)
    try:
        controller.join(room_code, player_name)
        await frontend.run()
    finally:
        await controller.shutdown()


@click.command()
@click.argument("room_code")
@click.argument("player_name", required=False)
@click.option("--server", "server_url", default=SERVER_URL, show_default=True,
              help="Base URL of the quiz backend.")
@click.option("--skip-negotiation", is_flag=True, default=SKIP_NEGOTIATION,
              help="Open the websocket directly without negotiating.")
@click.option("--log-level", default=LOG_LEVEL, show_default=True,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
@click.option("--log-file", default=LOG_FILE, help="Also log to this rotating file.")
def main(room_code, player_name, server_url, skip_negotiation, log_level, log_file) -> None:
    """Join quiz room ROOM_CODE as PLAYER_NAME (defaults to the last name used)."""
    configure_logging(log_level.upper(), log_file)
    if not is_valid_room_code(room_code):
        raise click.BadParameter(ROOM_CODE_HINT, param_hint="ROOM_CODE")
    try:
        asyncio.run(run_client(room_code.strip(), player_name, server_url, skip_negotiation))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        click.echo("Bye.")


if __name__ == "__main__":
    main()
