"""
Database models for the local session store.
"""
from sqlalchemy import Column, Float, String, Text

from quiz_client.database import Base


class LocalRecord(Base):
    """One key/value record; values are small JSON documents."""
    __tablename__ = "local_sessions"

    key = Column(String(128), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(Float, nullable=False)
