"""
SessionStore - persists (room code -> player identity) so a restarted or
reconnecting client can rejoin as the same player.

Records are keyed by the upper-cased room code. A second, unkeyed record
remembers the most recent player name for prefill. Anything older than the
retention window is stale and is deleted when read.
"""
import json
import logging
import time
from typing import Callable

from pydantic import ValidationError
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncEngine

from quiz_client.constants import DATABASE_URL, SESSION_KEY_PREFIX, SESSION_RETENTION_SECONDS
from quiz_client.database import create_engine, create_session_factory, init_db
from quiz_client.db_models import LocalRecord
from quiz_client.models import SessionIdentity

logger = logging.getLogger(__name__)


def _now_ms() -> float:
    return time.time() * 1000


class SessionStore:
    """Keyed, overwrite-only store of session identities. Last write wins."""

    def __init__(
        self,
        database_url: str = DATABASE_URL,
        retention_seconds: float = SESSION_RETENTION_SECONDS,
        clock: Callable[[], float] = _now_ms,
        engine: AsyncEngine | None = None,
    ):
        """Initialize the store.

        Args:
            database_url: SQLAlchemy URL of the local database
            retention_seconds: Age after which a record is discarded
            clock: Returns the current time in epoch milliseconds
            engine: Pre-built engine (overrides database_url)
        """
        self._engine: AsyncEngine = engine or create_engine(database_url)
        self._sessions = create_session_factory(self._engine)
        self._retention_ms: float = retention_seconds * 1000
        self._clock = clock
        self._ready: bool = False

    @staticmethod
    def key_for(room_code: str) -> str:
        return f"{SESSION_KEY_PREFIX}:{(room_code or '').strip().upper()}"

    async def init(self) -> None:
        if not self._ready:
            await init_db(self._engine)
            self._ready = True

    async def close(self) -> None:
        await self._engine.dispose()

    # Raw key/value access

    async def _get(self, key: str) -> dict | None:
        await self.init()
        async with self._sessions() as session:
            record = await session.get(LocalRecord, key)
            if record is None:
                return None
            try:
                value = json.loads(record.value)
            except json.JSONDecodeError:
                logger.warning("Discarding unreadable record %s", key)
                await session.delete(record)
                await session.commit()
                return None
        return value if isinstance(value, dict) else None

    async def _put(self, key: str, value: dict) -> None:
        await self.init()
        async with self._sessions() as session:
            record = await session.get(LocalRecord, key)
            payload = json.dumps(value)
            if record is None:
                session.add(LocalRecord(key=key, value=payload, updated_at=self._clock()))
            else:
                record.value = payload
                record.updated_at = self._clock()
            await session.commit()

    async def _delete(self, key: str) -> None:
        await self.init()
        async with self._sessions() as session:
            await session.execute(delete(LocalRecord).where(LocalRecord.key == key))
            await session.commit()

    def _is_stale(self, timestamp) -> bool:
        if not isinstance(timestamp, (int, float)):
            return True
        return self._clock() - timestamp >= self._retention_ms

    # Session identities

    async def save_session(self, room_code: str, user_name: str, player_id: str | None) -> SessionIdentity:
        """Store the confirmed identity for a room plus the unkeyed name record."""
        identity = SessionIdentity(
            room_code=room_code.strip().upper(),
            user_name=user_name,
            player_id=player_id,
            timestamp=self._clock(),
        )
        await self._put(self.key_for(room_code), identity.model_dump(by_alias=True))
        await self.remember_name(user_name)
        logger.debug("Saved session for room %s (player %s)", identity.room_code, player_id)
        return identity

    async def load_session(self, room_code: str) -> SessionIdentity | None:
        """Return the stored identity for a room, or None if missing or stale."""
        key = self.key_for(room_code)
        value = await self._get(key)
        if value is None:
            return None
        try:
            identity = SessionIdentity.model_validate(value)
        except ValidationError:
            logger.warning("Discarding malformed session record %s", key)
            await self._delete(key)
            return None
        if self._is_stale(identity.timestamp):
            logger.info("Session for room %s is stale, discarding", identity.room_code)
            await self._delete(key)
            return None
        return identity

    async def find_player_id(self, room_code: str, user_name: str) -> str | None:
        """Player id to rejoin with, only if the stored name matches (case-insensitive)."""
        identity = await self.load_session(room_code)
        if identity is None or not identity.player_id:
            return None
        if identity.user_name.strip().upper() != (user_name or "").strip().upper():
            return None
        return identity.player_id

    async def clear_session(self, room_code: str) -> None:
        await self._delete(self.key_for(room_code))

    # Most recent name (prefill)

    async def remember_name(self, user_name: str) -> None:
        await self._put(SESSION_KEY_PREFIX, {"userName": user_name, "timestamp": self._clock()})

    async def load_last_name(self) -> str | None:
        value = await self._get(SESSION_KEY_PREFIX)
        if value is None:
            return None
        if self._is_stale(value.get("timestamp")):
            await self._delete(SESSION_KEY_PREFIX)
            return None
        name = value.get("userName")
        return name if isinstance(name, str) and name else None

