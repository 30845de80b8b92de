"""
NetworkManager Class - owns the one persistent hub connection.
Handles negotiation, the JSON hub handshake, invocations, push-event
dispatch and automatic reconnection, all on the asyncio event loop.
"""
import asyncio
import inspect
import itertools
import logging
from typing import Any, Awaitable, Callable
from urllib.parse import urlencode, urlsplit, urlunsplit

import aiohttp
import websockets
from websockets.asyncio.client import connect as websocket_connect

from quiz_client import hub_protocol
from quiz_client.constants import (
    HUB_PATH,
    INVOKE_TIMEOUT_SECONDS,
    KEEPALIVE_INTERVAL_SECONDS,
    RECONNECT_DELAYS,
    SERVER_TIMEOUT_SECONDS,
    SERVER_URL,
    SKIP_NEGOTIATION,
    START_ATTEMPTS,
    START_BACKOFF_SECONDS,
)
from quiz_client.errors import HubConnectionError, HubInvocationError, NotConnectedError
from quiz_client.hub_protocol import HubProtocolError, MessageType
from quiz_client.models import ConnectionState

logger = logging.getLogger(__name__)

EventHandler = Callable[..., Any]
StateListener = Callable[[ConnectionState], Any]
LostListener = Callable[[BaseException | None], Any]
Connector = Callable[[str, dict[str, str]], Awaitable[Any]]

# Failures that mean "the transport is gone or never came up"
TRANSPORT_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    aiohttp.ClientError,
    websockets.exceptions.WebSocketException,
    HubProtocolError,
    HubConnectionError,
)


async def _default_connector(url: str, headers: dict[str, str]) -> Any:
    return await websocket_connect(url, additional_headers=headers or None)


class _ServerClosed(Exception):
    """The server sent a close message."""

    def __init__(self, error: str | None, allow_reconnect: bool):
        super().__init__(error or "Server closed the connection")
        self.allow_reconnect = allow_reconnect


class NetworkManager:
    """Single owner of the connection to the session backend."""

    def __init__(
        self,
        server_url: str = SERVER_URL,
        hub_path: str = HUB_PATH,
        *,
        skip_negotiation: bool = SKIP_NEGOTIATION,
        connector: Connector | None = None,
        start_attempts: int = START_ATTEMPTS,
        start_backoff: float = START_BACKOFF_SECONDS,
        reconnect_delays: tuple[float, ...] = RECONNECT_DELAYS,
        keepalive_interval: float = KEEPALIVE_INTERVAL_SECONDS,
        server_timeout: float = SERVER_TIMEOUT_SECONDS,
        invoke_timeout: float = INVOKE_TIMEOUT_SECONDS,
    ):
        """Initialize network manager.

        Args:
            server_url: Base HTTP(S) URL of the backend (e.g. "http://localhost:5000")
            hub_path: Path of the game hub on the backend
            skip_negotiation: Open the websocket directly without the negotiate round-trip
            connector: Coroutine opening a websocket for (url, headers); tests swap this
            start_attempts: Connection attempts made by ensure_connected before failing
            start_backoff: Seconds multiplied by the attempt number between start attempts
            reconnect_delays: Waits before each automatic reconnection attempt
            keepalive_interval: Seconds between client pings
            server_timeout: Silence from the server after which the transport counts as lost
            invoke_timeout: Seconds to wait for an invocation's completion
        """
        self._server_url: str = server_url.rstrip("/")
        self._hub_path: str = "/" + hub_path.strip("/")
        self._skip_negotiation: bool = skip_negotiation
        self._connector: Connector = connector or _default_connector
        self._start_attempts: int = max(1, start_attempts)
        self._start_backoff: float = start_backoff
        self._reconnect_delays: tuple[float, ...] = tuple(reconnect_delays)
        self._keepalive_interval: float = keepalive_interval
        self._server_timeout: float = server_timeout
        self._invoke_timeout: float = invoke_timeout

        self._state: ConnectionState = ConnectionState.DISCONNECTED
        self._ws: Any = None
        self._connect_task: asyncio.Task[None] | None = None
        self._receive_task: asyncio.Task[None] | None = None
        self._keepalive_task: asyncio.Task[None] | None = None
        self._stopping: bool = False

        self._handlers: dict[str, list[EventHandler]] = {}
        self._state_listeners: list[StateListener] = []
        self._lost_listeners: list[LostListener] = []
        self._pending: dict[str, tuple[str, asyncio.Future[Any]]] = {}
        self._invocation_ids = itertools.count(1)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED and self._ws is not None

    @property
    def hub_url(self) -> str:
        return f"{self._server_url}{self._hub_path}"

    # Subscriptions

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        """Register a handler for a push event. Names match case-insensitively."""
        self._handlers.setdefault(event_name.lower(), []).append(handler)

    def unsubscribe(self, event_name: str, handler: EventHandler | None = None) -> None:
        """Remove one handler, or every handler of the event when none is given."""
        key = event_name.lower()
        if handler is None:
            self._handlers.pop(key, None)
            return
        handlers = self._handlers.get(key, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self._handlers.pop(key, None)

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def on_connection_lost(self, listener: LostListener) -> None:
        """Be told when reconnection gives up or the server closes for good."""
        self._lost_listeners.append(listener)

    def remove_connection_lost(self, listener: LostListener) -> None:
        if listener in self._lost_listeners:
            self._lost_listeners.remove(listener)

    # Lifecycle

    async def ensure_connected(self) -> None:
        """Connect unless already connected; join an attempt already in flight.

        Raises:
            HubConnectionError: If the transport cannot be established
        """
        if self.connected:
            return
        task = self._connect_task
        if task is None or task.done():
            task = asyncio.create_task(self._start())
            self._connect_task = task
        await asyncio.shield(task)
        if not self.connected:
            raise HubConnectionError(f"Could not connect to {self.hub_url}")

    async def disconnect(self) -> None:
        """Clean, user-initiated stop. No reconnection follows."""
        self._stopping = True
        try:
            current = asyncio.current_task()
            for task in (self._connect_task, self._receive_task, self._keepalive_task):
                if task and not task.done() and task is not current:
                    task.cancel()
                    try:
                        await task
                    except (asyncio.CancelledError, HubConnectionError):
                        pass
            self._connect_task = self._receive_task = self._keepalive_task = None
            await self._close_transport()
            self._fail_pending(HubConnectionError("Connection stopped"))
            self._set_state(ConnectionState.DISCONNECTED)
            logger.info("Disconnected from %s", self.hub_url)
        finally:
            self._stopping = False

    async def _start(self) -> None:
        last_error: BaseException | None = None
        for attempt in range(1, self._start_attempts + 1):
            self._set_state(ConnectionState.CONNECTING)
            try:
                await self._open()
                logger.info("Connected to %s", self.hub_url)
                return
            except TRANSPORT_ERRORS as exc:
                last_error = exc
                logger.warning(
                    "Connection attempt %d/%d to %s failed: %s",
                    attempt, self._start_attempts, self.hub_url, exc,
                )
            if attempt < self._start_attempts:
                await asyncio.sleep(self._start_backoff * attempt)
        self._set_state(ConnectionState.DISCONNECTED)
        raise HubConnectionError(f"Could not connect to {self.hub_url}") from last_error

    async def _open(self) -> None:
        """Negotiate, open the websocket, handshake and start the background loops."""
        url, headers = await self._resolve_transport()
        ws = await asyncio.wait_for(self._connector(url, headers), self._server_timeout)
        try:
            await ws.send(hub_protocol.handshake_request())
            frame = await asyncio.wait_for(ws.recv(), self._server_timeout)
            messages = hub_protocol.decode(frame)
            if not messages:
                raise HubProtocolError("Empty handshake response")
            if messages[0].get("error"):
                raise HubConnectionError(f"Handshake rejected: {messages[0]['error']}")
        except BaseException:
            await ws.close()
            raise

        self._ws = ws
        self._set_state(ConnectionState.CONNECTED)
        self._receive_task = asyncio.create_task(self._receive_loop(ws, messages[1:]))
        self._keepalive_task = asyncio.create_task(self._keepalive_loop(ws))

    async def _resolve_transport(self) -> tuple[str, dict[str, str]]:
        if self._skip_negotiation:
            return self._websocket_url(self.hub_url), {}

        url = self.hub_url
        headers: dict[str, str] = {}
        # Follow at most a few redirects to another service
        for _ in range(5):
            negotiate_url = f"{url}/negotiate?{urlencode({'negotiateVersion': 1})}"
            async with aiohttp.ClientSession() as session:
                async with session.post(negotiate_url, headers=headers) as response:
                    if response.status != 200:
                        raise HubConnectionError(f"Negotiation failed with HTTP {response.status}")
                    try:
                        data = await response.json(content_type=None)
                    except ValueError as exc:
                        raise HubConnectionError(f"Negotiation returned invalid JSON: {exc}") from exc
            if not isinstance(data, dict):
                raise HubConnectionError("Negotiation response is not a JSON object")
            if data.get("error"):
                raise HubConnectionError(f"Negotiation failed: {data['error']}")
            if data.get("url"):
                url = data["url"].rstrip("/")
                if data.get("accessToken"):
                    headers = {"Authorization": f"Bearer {data['accessToken']}"}
                continue
            token = data.get("connectionToken") or data.get("connectionId")
            query = urlencode({"id": token}) if token else ""
            return self._websocket_url(url, query), headers
        raise HubConnectionError("Too many negotiation redirects")

    @staticmethod
    def _websocket_url(http_url: str, query: str = "") -> str:
        parts = urlsplit(http_url)
        scheme = {"http": "ws", "https": "wss"}.get(parts.scheme, parts.scheme)
        merged_query = "&".join(q for q in (parts.query, query) if q)
        return urlunsplit((scheme, parts.netloc, parts.path, merged_query, ""))

    async def _close_transport(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.send(hub_protocol.close())
        except TRANSPORT_ERRORS:
            pass
        try:
            await ws.close()
        except TRANSPORT_ERRORS as exc:
            logger.debug("Error while closing websocket: %s", exc)

    # Background loops

    async def _receive_loop(self, ws: Any, buffered: list[dict[str, Any]]) -> None:
        """Background task reading hub records until the transport goes away."""
        error: BaseException | None = None
        allow_reconnect = True
        try:
            for message in buffered:
                await self._handle_message(message)
            while True:
                frame = await asyncio.wait_for(ws.recv(), self._server_timeout)
                for message in hub_protocol.decode(frame):
                    await self._handle_message(message)
        except _ServerClosed as exc:
            error = exc
            allow_reconnect = exc.allow_reconnect
        except asyncio.TimeoutError:
            error = HubConnectionError(f"No message from server in {self._server_timeout}s")
        except websockets.ConnectionClosed as exc:
            error = exc
        except TRANSPORT_ERRORS as exc:
            error = exc

        if self._stopping or ws is not self._ws:
            return
        logger.warning("Connection to %s lost: %s", self.hub_url, error)
        await self._transport_lost(error, allow_reconnect)

    async def _keepalive_loop(self, ws: Any) -> None:
        while True:
            await asyncio.sleep(self._keepalive_interval)
            try:
                await ws.send(hub_protocol.ping())
            except TRANSPORT_ERRORS:
                # The receive loop notices the drop
                return

    async def _transport_lost(self, error: BaseException | None, allow_reconnect: bool) -> None:
        if self._keepalive_task and not self._keepalive_task.done():
            self._keepalive_task.cancel()
        self._keepalive_task = None
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except TRANSPORT_ERRORS:
                pass
        self._fail_pending(HubConnectionError("Connection lost"))

        if not allow_reconnect or not self._reconnect_delays:
            self._set_state(ConnectionState.DISCONNECTED)
            self._notify_lost(error)
            return
        self._set_state(ConnectionState.RECONNECTING)
        self._connect_task = asyncio.create_task(self._reconnect(error))

    async def _reconnect(self, error: BaseException | None) -> None:
        last_error = error
        for attempt, delay in enumerate(self._reconnect_delays, start=1):
            await asyncio.sleep(delay)
            if self._stopping:
                return
            try:
                await self._open()
                logger.info("Reconnected to %s after %d attempt(s)", self.hub_url, attempt)
                return
            except TRANSPORT_ERRORS as exc:
                last_error = exc
                self._set_state(ConnectionState.RECONNECTING)
                logger.warning("Reconnect attempt %d failed: %s", attempt, exc)
        logger.error("Giving up reconnecting to %s", self.hub_url)
        self._set_state(ConnectionState.DISCONNECTED)
        self._notify_lost(last_error)

    # Messages

    async def _handle_message(self, message: dict[str, Any]) -> None:
        msg_type = message.get("type")

        if msg_type == MessageType.INVOCATION:
            target = str(message.get("target") or "")
            arguments = message.get("arguments") or []
            await self._dispatch(target, arguments if isinstance(arguments, list) else [arguments])

        elif msg_type == MessageType.COMPLETION:
            invocation_id = str(message.get("invocationId"))
            pending = self._pending.pop(invocation_id, None)
            if pending is None:
                logger.debug("Completion for unknown invocation %s", invocation_id)
                return
            method, future = pending
            if future.done():
                return
            if message.get("error"):
                future.set_exception(HubInvocationError(method, str(message["error"])))
            else:
                future.set_result(message.get("result"))

        elif msg_type == MessageType.CLOSE:
            raise _ServerClosed(message.get("error"), bool(message.get("allowReconnect")))

        elif msg_type == MessageType.PING:
            pass

        else:
            logger.debug("Ignoring hub message of type %s", msg_type)

    async def _dispatch(self, target: str, arguments: list[Any]) -> None:
        """Run the handlers of one event in subscription order. Handler errors stay here."""
        handlers = list(self._handlers.get(target.lower(), ()))
        if not handlers:
            logger.debug("No handler for event %s", target)
            return
        logger.debug("Event %s %s", target, arguments)
        for handler in handlers:
            try:
                result = handler(*arguments)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Handler for %s failed", target)

    async def invoke(self, method: str, *args: Any) -> Any:
        """Call a hub method and wait for its completion.

        Raises:
            NotConnectedError: If the hub is not connected
            HubInvocationError: If the server reports an error or does not answer
            HubConnectionError: If the transport drops while waiting
        """
        ws = self._ws
        if not self.connected or ws is None:
            raise NotConnectedError(f"Cannot invoke {method}: hub is {self._state.value}")
        invocation_id = str(next(self._invocation_ids))
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[invocation_id] = (method, future)
        try:
            await ws.send(hub_protocol.invocation(method, list(args), invocation_id))
            return await asyncio.wait_for(future, self._invoke_timeout)
        except asyncio.TimeoutError as exc:
            raise HubInvocationError(method, f"no response within {self._invoke_timeout}s") from exc
        except (websockets.ConnectionClosed, OSError) as exc:
            raise HubConnectionError(f"Connection closed while invoking {method}") from exc
        finally:
            self._pending.pop(invocation_id, None)

    async def send(self, method: str, *args: Any) -> None:
        """Fire-and-forget invocation; the server sends no completion."""
        ws = self._ws
        if not self.connected or ws is None:
            raise NotConnectedError(f"Cannot send {method}: hub is {self._state.value}")
        try:
            await ws.send(hub_protocol.invocation(method, list(args)))
        except (websockets.ConnectionClosed, OSError) as exc:
            raise HubConnectionError(f"Connection closed while sending {method}") from exc

    # Notifications

    def _fail_pending(self, error: BaseException) -> None:
        pending, self._pending = self._pending, {}
        for _, future in pending.values():
            if not future.done():
                future.set_exception(error)

    def _set_state(self, new_state: ConnectionState) -> None:
        if new_state == self._state:
            return
        logger.debug("Connection state: %s -> %s", self._state.value, new_state.value)
        self._state = new_state
        for listener in list(self._state_listeners):
            try:
                listener(new_state)
            except Exception:
                logger.exception("Connection state listener failed")

    def _notify_lost(self, error: BaseException | None) -> None:
        for listener in list(self._lost_listeners):
            try:
                listener(error)
            except Exception:
                logger.exception("Connection-lost listener failed")

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"NetworkManager(url={self.hub_url}, state={self._state.value})"


_instance: NetworkManager | None = None


def get_network_manager() -> NetworkManager:
    """The process-wide connection manager."""
    global _instance
    if _instance is None:
        _instance = NetworkManager()
    return _instance
