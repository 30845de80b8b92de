import asyncio
import inspect

import pytest
import pytest_asyncio

from quiz_client import hub_protocol
from quiz_client.errors import NotConnectedError
from quiz_client.models import ConnectionState
from quiz_client.session_store import SessionStore


class FakeNetworkManager:
    """In-memory stand-in for NetworkManager.

    Records invocations, lets tests push hub events and toggles connectivity.
    """

    def __init__(self, connected: bool = True):
        self._connected = connected
        self.connect_on_attempt: int | None = None
        self.ensure_calls = 0
        self.invocations: list[tuple] = []
        self.responses: dict = {}
        self.handlers: dict[str, list] = {}
        self.lost_listeners: list = []
        self.state_listeners: list = []
        self.disconnected = False

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def state(self) -> ConnectionState:
        return ConnectionState.CONNECTED if self._connected else ConnectionState.DISCONNECTED

    def set_connected(self, value: bool) -> None:
        self._connected = value

    async def ensure_connected(self) -> None:
        self.ensure_calls += 1
        if self.connect_on_attempt is not None and self.ensure_calls >= self.connect_on_attempt:
            self._connected = True

    async def invoke(self, method, *args):
        if not self._connected:
            raise NotConnectedError(f"Cannot invoke {method}")
        self.invocations.append((method, *args))
        response = self.responses.get(method)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(*args)
        return response

    def calls(self, method: str) -> list[tuple]:
        return [call[1:] for call in self.invocations if call[0] == method]

    def subscribe(self, event_name, handler):
        self.handlers.setdefault(event_name.lower(), []).append(handler)

    def unsubscribe(self, event_name, handler=None):
        key = event_name.lower()
        if handler is None:
            self.handlers.pop(key, None)
        elif handler in self.handlers.get(key, []):
            self.handlers[key].remove(handler)

    def subscribed(self, event_name) -> int:
        return len(self.handlers.get(event_name.lower(), []))

    def on_connection_lost(self, listener):
        self.lost_listeners.append(listener)

    def remove_connection_lost(self, listener):
        self.lost_listeners.remove(listener)

    def add_state_listener(self, listener):
        self.state_listeners.append(listener)

    async def push(self, event_name, *args):
        for handler in list(self.handlers.get(event_name.lower(), [])):
            result = handler(*args)
            if inspect.isawaitable(result):
                await result

    async def disconnect(self):
        self._connected = False
        self.disconnected = True


class FakeWebSocket:
    """Websocket transport driven by the test."""

    def __init__(self, handshake: str = "{}" + hub_protocol.RECORD_SEPARATOR):
        self.sent: list[str] = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.closed = False
        if handshake is not None:
            self.incoming.put_nowait(handshake)

    async def send(self, data):
        if self.closed:
            raise ConnectionResetError("socket closed")
        self.sent.append(data)

    async def recv(self):
        item = await self.incoming.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self):
        self.closed = True

    def push(self, message: dict) -> None:
        self.incoming.put_nowait(hub_protocol.encode(message))

    def drop(self) -> None:
        self.incoming.put_nowait(ConnectionResetError("connection reset"))

    def messages(self) -> list[dict]:
        decoded = []
        for frame in self.sent:
            decoded.extend(hub_protocol.decode(frame))
        return decoded

    def invocations(self, target: str | None = None) -> list[dict]:
        return [
            m for m in self.messages()
            if m.get("type") == hub_protocol.MessageType.INVOCATION
            and (target is None or m.get("target") == target)
        ]


class FakeConnector:
    """Hands out prepared sockets in order; raises when an entry is an exception."""

    def __init__(self, *sockets):
        self.sockets = list(sockets)
        self.urls: list[str] = []

    async def __call__(self, url, headers):
        self.urls.append(url)
        if not self.sockets:
            raise ConnectionRefusedError("no more sockets")
        item = self.sockets.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Yield to the loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class Clock:
    """Mutable epoch-millisecond clock for the session store."""

    def __init__(self, now_ms: float = 1_700_000_000_000):
        self.now_ms = now_ms

    def __call__(self) -> float:
        return self.now_ms

    def advance(self, seconds: float) -> None:
        self.now_ms += seconds * 1000


@pytest.fixture()
def fake_network():
    return FakeNetworkManager()


@pytest.fixture()
def clock():
    return Clock()


@pytest_asyncio.fixture()
async def store(tmp_path, clock):
    session_store = SessionStore(f"sqlite+aiosqlite:///{tmp_path / 'sessions.db'}", clock=clock)
    await session_store.init()
    yield session_store
    await session_store.close()
