"""
SQLAlchemy ORM models for the SQL token store.

Column types stay portable (no PostgreSQL-only types) so the same
schema runs on SQLite for local development and tests.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Index, String, Text
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class UserConnection(Base):
    __tablename__ = "user_connections"

    user_id = Column(String(128), primary_key=True)
    provider = Column(String(32), primary_key=True)
    store_key = Column(String(192), nullable=False, unique=True)
    access_token = Column(Text)
    refresh_token = Column(Text)
    expires_at = Column(DateTime(timezone=True))
    account_id = Column(String(256))
    account_name = Column(String(256))
    provider_user_id = Column(String(256))
    provider_user_name = Column(String(256))
    scopes = Column(JSON, default=list)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class PendingAuthorizationRow(Base):
    __tablename__ = "pending_authorizations"

    state = Column(String(128), primary_key=True)
    user_id = Column(String(128), nullable=False)
    provider = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (Index("ix_pending_authorizations_created_at", "created_at"),)
