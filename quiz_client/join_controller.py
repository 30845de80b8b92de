"""
JoinController - the join handshake with session recovery.
Joins a room once per controller, reusing a stored player id when the stored
name matches, retrying while the hub connection comes up.
"""
import asyncio
import logging
from typing import Any, Callable

from quiz_client import events
from quiz_client.constants import (
    INITIALIZING_TIMEOUT_SECONDS,
    JOIN_BACKOFF_SECONDS,
    JOIN_MAX_ATTEMPTS,
)
from quiz_client.errors import (
    HubConnectionError,
    HubInvocationError,
    JoinFailedError,
    NotConnectedError,
    QuizClientError,
    SessionNotFoundError,
    is_session_not_found,
)
from quiz_client.models import JoinedGame
from quiz_client.session_store import SessionStore

logger = logging.getLogger(__name__)


class JoinController:
    """Runs the join at most once and records the confirmed identity."""

    def __init__(
        self,
        network: Any,
        store: SessionStore,
        room_code: str,
        player_name: str,
        *,
        max_attempts: int = JOIN_MAX_ATTEMPTS,
        backoff_seconds: float = JOIN_BACKOFF_SECONDS,
        initializing_timeout: float = INITIALIZING_TIMEOUT_SECONDS,
        on_change: Callable[[], None] | None = None,
        on_failed: Callable[[QuizClientError], None] | None = None,
    ):
        """Initialize the join controller.

        Args:
            network: Connection manager (NetworkManager or a stand-in)
            store: Local session store used for recovery
            room_code: Validated room code
            player_name: Validated display name
            max_attempts: Join attempts before giving up
            backoff_seconds: Multiplied by the attempt number between attempts
            initializing_timeout: Seconds after which `initializing` is forced off
            on_change: Called when initializing/joined/player id change
            on_failed: Called once with the terminal error
        """
        self._network = network
        self._store = store
        self.room_code: str = room_code.strip()
        self.player_name: str = player_name.strip()
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff_seconds
        self._initializing_timeout = initializing_timeout
        self._on_change = on_change
        self._on_failed = on_failed

        self._task: asyncio.Task[None] | None = None
        self._timeout_task: asyncio.Task[None] | None = None
        self._initializing: bool = True
        self.joined: bool = False
        self.player_id: str | None = None
        self.error: QuizClientError | None = None
        self.attempts: int = 0

    @property
    def initializing(self) -> bool:
        return self._initializing

    @property
    def started(self) -> bool:
        return self._task is not None

    def start(self) -> asyncio.Task[None]:
        """Start the join task. Later calls return the same task."""
        if self._task is None:
            self._task = asyncio.create_task(self._run())
            self._timeout_task = asyncio.create_task(self._expire_initializing())
        return self._task

    def cancel(self) -> None:
        for task in (self._task, self._timeout_task):
            if task and not task.done():
                task.cancel()

    def clear_initializing(self) -> None:
        if self._initializing:
            self._initializing = False
            self._changed()

    async def _expire_initializing(self) -> None:
        await asyncio.sleep(self._initializing_timeout)
        if self._initializing:
            logger.debug("Join still pending after %ss, leaving initializing state", self._initializing_timeout)
        self.clear_initializing()

    async def _run(self) -> None:
        try:
            await self._join_when_connected()
        except QuizClientError as exc:
            self._fail(exc)
        except Exception as exc:
            logger.exception("Unexpected error while joining room %s", self.room_code)
            self._fail(JoinFailedError(self.room_code, self.attempts, exc))

    async def _join_when_connected(self) -> None:
        last_error: BaseException | None = None
        for attempt in range(1, self._max_attempts + 1):
            self.attempts = attempt
            try:
                await self._wait_connected()
                await self._invoke_join()
                return
            except HubConnectionError as exc:
                # Only raised before JoinGame went out; see _invoke_join
                last_error = exc
                logger.warning("Join attempt %d/%d for room %s failed: %s",
                               attempt, self._max_attempts, self.room_code, exc)
            if attempt < self._max_attempts:
                await asyncio.sleep(self._backoff * attempt)
        raise JoinFailedError(self.room_code, self._max_attempts, last_error)

    async def _wait_connected(self) -> None:
        await self._network.ensure_connected()
        if not self._network.connected:
            raise NotConnectedError("Hub not connected yet")

    async def _invoke_join(self) -> None:
        """Send JoinGame. Once it is on the wire it is never sent again."""
        stored_id = await self._store.find_player_id(self.room_code, self.player_name)
        if stored_id:
            logger.info("Rejoining room %s as %s (player %s)", self.room_code, self.player_name, stored_id)
        else:
            logger.info("Joining room %s as %s", self.room_code, self.player_name)

        try:
            result = await self._network.invoke(
                events.JOIN_GAME, self.room_code, self.player_name.upper(), stored_id
            )
        except NotConnectedError:
            # Dropped before sending, safe to try again
            raise
        except HubInvocationError as exc:
            if is_session_not_found(exc.server_message):
                raise SessionNotFoundError(exc.server_message) from exc
            raise JoinFailedError(self.room_code, self.attempts, exc) from exc
        except HubConnectionError as exc:
            raise JoinFailedError(self.room_code, self.attempts, exc) from exc

        self.joined = True
        player_id = events.parse_player_id(result)
        if player_id:
            await self.confirm_membership(player_id, self.player_name)
        else:
            self._changed()

    async def handle_joined_game(self, joined: JoinedGame) -> None:
        """Server confirmation through the JoinedGame event."""
        self.joined = True
        if joined.player_id:
            await self.confirm_membership(joined.player_id, joined.user_name or self.player_name)
        self.clear_initializing()

    async def confirm_membership(self, player_id: str, user_name: str) -> None:
        """Persist the confirmed identity for later recovery."""
        self.player_id = player_id
        await self._store.save_session(self.room_code, user_name, player_id)
        self._changed()

    def _fail(self, error: QuizClientError) -> None:
        logger.error("Join failed: %s", error)
        self.error = error
        self._initializing = False
        self._changed()
        if self._on_failed:
            self._on_failed(error)

    def _changed(self) -> None:
        if self._on_change:
            self._on_change()
