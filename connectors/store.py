"""
Token store adapters — per-user, per-provider credential persistence.

Two implementations share the ``TokenStore`` interface:

* ``SqlTokenStore``  — SQLAlchemy async session per operation.
* ``InMemoryTokenStore`` — process-local dict, for development and tests.

Records are only ever written whole (``put``), so a reader never sees
fields from two different exchanges mixed together.  Pending
authorizations are popped atomically so a replayed callback cannot
consume the same state twice.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from config.settings import Settings
from connectors.errors import StoreUnavailableError
from connectors.models import PendingAuthorization, TokenRecord, record_key
from database.models import PendingAuthorizationRow, UserConnection
from database.session import create_engine, create_session_factory, create_tables

logger = logging.getLogger(__name__)


class TokenStore(ABC):
    """Opaque get / put / delete persistence for token records."""

    @abstractmethod
    async def get(self, user_id: str, provider_id: str) -> Optional[TokenRecord]:
        ...

    @abstractmethod
    async def put(self, record: TokenRecord) -> None:
        """Insert or fully replace the record for ``record.key``."""
        ...

    @abstractmethod
    async def replace_if_current(self, record: TokenRecord, *, expected_access_token: str) -> bool:
        """
        Replace the record only while it still holds ``expected_access_token``.

        Returns False, without writing, when the stored record was cleared
        or re-authorized since it was read.
        """
        ...

    @abstractmethod
    async def delete(self, user_id: str, provider_id: str) -> bool:
        ...

    @abstractmethod
    async def list_for_user(self, user_id: str) -> List[TokenRecord]:
        ...

    # ── Pending authorizations ──────────────────────────────────────────

    @abstractmethod
    async def put_pending(self, pending: PendingAuthorization) -> None:
        ...

    @abstractmethod
    async def pop_pending(self, state: str) -> Optional[PendingAuthorization]:
        """Remove and return the entry for ``state``; ``None`` if absent."""
        ...

    @abstractmethod
    async def purge_pending(self, created_before: datetime) -> int:
        ...

    async def initialize(self) -> None:
        return None

    async def close(self) -> None:
        return None


# ── In-memory ──────────────────────────────────────────────────────────


class InMemoryTokenStore(TokenStore):
    def __init__(self) -> None:
        self._records: Dict[str, TokenRecord] = {}
        self._pending: Dict[str, PendingAuthorization] = {}
        self._lock = asyncio.Lock()

    async def get(self, user_id: str, provider_id: str) -> Optional[TokenRecord]:
        return self._records.get(record_key(user_id, provider_id))

    async def put(self, record: TokenRecord) -> None:
        async with self._lock:
            self._records[record.key] = record

    async def replace_if_current(self, record: TokenRecord, *, expected_access_token: str) -> bool:
        async with self._lock:
            current = self._records.get(record.key)
            if current is None or current.access_token != expected_access_token:
                return False
            self._records[record.key] = record
            return True

    async def delete(self, user_id: str, provider_id: str) -> bool:
        async with self._lock:
            return self._records.pop(record_key(user_id, provider_id), None) is not None

    async def list_for_user(self, user_id: str) -> List[TokenRecord]:
        return [r for r in self._records.values() if r.user_id == user_id]

    async def put_pending(self, pending: PendingAuthorization) -> None:
        async with self._lock:
            self._pending[pending.state] = pending

    async def pop_pending(self, state: str) -> Optional[PendingAuthorization]:
        async with self._lock:
            return self._pending.pop(state, None)

    async def purge_pending(self, created_before: datetime) -> int:
        async with self._lock:
            stale = [s for s, p in self._pending.items() if p.created_at < created_before]
            for state in stale:
                del self._pending[state]
            return len(stale)


# ── SQL ────────────────────────────────────────────────────────────────


def _row_to_record(row: UserConnection) -> TokenRecord:
    return TokenRecord(
        user_id=row.user_id,
        provider_id=row.provider,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        expires_at=row.expires_at,
        account_id=row.account_id,
        account_name=row.account_name,
        provider_user_id=row.provider_user_id,
        provider_user_name=row.provider_user_name,
        scopes=list(row.scopes or []),
        updated_at=row.updated_at,
    )


def _record_to_row(record: TokenRecord) -> UserConnection:
    return UserConnection(
        user_id=record.user_id,
        provider=record.provider_id,
        store_key=record.key,
        access_token=record.access_token,
        refresh_token=record.refresh_token,
        expires_at=record.expires_at,
        account_id=record.account_id,
        account_name=record.account_name,
        provider_user_id=record.provider_user_id,
        provider_user_name=record.provider_user_name,
        scopes=list(record.scopes),
        updated_at=record.updated_at,
    )


class SqlTokenStore(TokenStore):
    """Token store backed by an async SQLAlchemy session factory."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: Optional[AsyncEngine] = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine

    @classmethod
    def from_url(cls, database_url: str, *, echo: bool = False) -> "SqlTokenStore":
        engine = create_engine(database_url, echo=echo)
        return cls(create_session_factory(engine), engine=engine)

    async def initialize(self) -> None:
        if self._engine is None:
            return
        try:
            await create_tables(self._engine)
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Token store schema setup failed: %s", exc)
            raise StoreUnavailableError(f"Token store unavailable: {exc}") from exc

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()

    async def get(self, user_id: str, provider_id: str) -> Optional[TokenRecord]:
        try:
            async with self._session_factory() as session:
                row = await session.get(UserConnection, (user_id, provider_id))
                return _row_to_record(row) if row is not None else None
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Token store read failed for %s: %s", record_key(user_id, provider_id), exc)
            raise StoreUnavailableError(f"Token store read failed: {exc}", provider=provider_id) from exc

    async def put(self, record: TokenRecord) -> None:
        try:
            try:
                await self._merge(record)
            except IntegrityError:
                # Lost an insert race for the same key; the retry merges onto the winner.
                await self._merge(record)
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Token store write failed for %s: %s", record.key, exc)
            raise StoreUnavailableError(f"Token store write failed: {exc}", provider=record.provider_id) from exc

    async def _merge(self, record: TokenRecord) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.merge(_record_to_row(record))

    async def replace_if_current(self, record: TokenRecord, *, expected_access_token: str) -> bool:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(
                        UserConnection,
                        (record.user_id, record.provider_id),
                        with_for_update=True,
                    )
                    if row is None or row.access_token != expected_access_token:
                        return False
                    await session.merge(_record_to_row(record))
                    return True
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Token store write failed for %s: %s", record.key, exc)
            raise StoreUnavailableError(f"Token store write failed: {exc}", provider=record.provider_id) from exc

    async def delete(self, user_id: str, provider_id: str) -> bool:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(UserConnection).where(
                            UserConnection.user_id == user_id,
                            UserConnection.provider == provider_id,
                        )
                    )
                    return (result.rowcount or 0) > 0
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Token store delete failed for %s: %s", record_key(user_id, provider_id), exc)
            raise StoreUnavailableError(f"Token store delete failed: {exc}", provider=provider_id) from exc

    async def list_for_user(self, user_id: str) -> List[TokenRecord]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(UserConnection).where(UserConnection.user_id == user_id)
                )
                return [_row_to_record(row) for row in result.scalars().all()]
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Token store list failed for user %s: %s", user_id, exc)
            raise StoreUnavailableError(f"Token store read failed: {exc}") from exc

    async def put_pending(self, pending: PendingAuthorization) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(
                        PendingAuthorizationRow(
                            state=pending.state,
                            user_id=pending.user_id,
                            provider=pending.provider_id,
                            created_at=pending.created_at,
                        )
                    )
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Pending authorization write failed: %s", exc)
            raise StoreUnavailableError(f"Pending authorization write failed: {exc}", provider=pending.provider_id) from exc

    async def pop_pending(self, state: str) -> Optional[PendingAuthorization]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(PendingAuthorizationRow)
                        .where(PendingAuthorizationRow.state == state)
                        .returning(
                            PendingAuthorizationRow.state,
                            PendingAuthorizationRow.user_id,
                            PendingAuthorizationRow.provider,
                            PendingAuthorizationRow.created_at,
                        )
                    )
                    row = result.first()
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Pending authorization pop failed: %s", exc)
            raise StoreUnavailableError(f"Pending authorization read failed: {exc}") from exc

        if row is None:
            return None
        return PendingAuthorization(
            state=row.state,
            user_id=row.user_id,
            provider_id=row.provider,
            created_at=row.created_at,
        )

    async def purge_pending(self, created_before: datetime) -> int:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(PendingAuthorizationRow).where(
                            PendingAuthorizationRow.created_at < created_before
                        )
                    )
                    return result.rowcount or 0
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Pending authorization purge failed: %s", exc)
            raise StoreUnavailableError(f"Pending authorization purge failed: {exc}") from exc


def build_token_store(settings: Settings) -> TokenStore:
    """Pick the token store backend named in settings."""
    backend = settings.token_store_backend.lower()
    if backend == "memory":
        logger.warning("Using in-memory token store — tokens are lost on restart")
        return InMemoryTokenStore()
    if backend == "sql":
        return SqlTokenStore.from_url(settings.database_url, echo=settings.database_echo)
    raise ValueError(f"Unknown token_store_backend: {settings.token_store_backend!r}")
