"""Persistence for customer access tokens (hashes only)."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Protocol, runtime_checkable

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from offer_portal.access.models import CustomerAccessToken
from offer_portal.access.schemas import AccessTokenRecord
from offer_portal.database import as_utc


@runtime_checkable
class AccessTokenStore(Protocol):
    async def create(self, record: AccessTokenRecord) -> None:
        ...

    async def revoke_all(self, customer_ref: str, revoked_at: datetime) -> int:
        """Revoke every live token of customer_ref; return how many were revoked."""
        ...

    async def replace(
        self, record: AccessTokenRecord, revoked_at: datetime
    ) -> int:
        """Revoke the customer's live tokens and insert record as one unit."""
        ...

    async def get_by_token_hash(self, token_hash: str) -> AccessTokenRecord | None:
        ...


class MemoryAccessTokenStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_token_hash: dict[str, AccessTokenRecord] = {}

    async def create(self, record: AccessTokenRecord) -> None:
        with self._lock:
            self._by_token_hash[record.token_hash] = record.model_copy()

    async def revoke_all(self, customer_ref: str, revoked_at: datetime) -> int:
        with self._lock:
            return self._revoke_locked(customer_ref, revoked_at)

    async def replace(self, record: AccessTokenRecord, revoked_at: datetime) -> int:
        with self._lock:
            revoked = self._revoke_locked(record.customer_ref, revoked_at)
            self._by_token_hash[record.token_hash] = record.model_copy()
            return revoked

    def _revoke_locked(self, customer_ref: str, revoked_at: datetime) -> int:
        count = 0
        for entry in self._by_token_hash.values():
            if entry.customer_ref == customer_ref and entry.revoked_at is None:
                entry.revoked_at = revoked_at
                count += 1
        return count

    async def get_by_token_hash(self, token_hash: str) -> AccessTokenRecord | None:
        record = self._by_token_hash.get(token_hash)
        return record.model_copy() if record else None


def _record_from_row(row: CustomerAccessToken) -> AccessTokenRecord:
    return AccessTokenRecord(
        token_hash=row.token_hash,
        customer_ref=row.customer_ref,
        customer_label=row.customer_label,
        created_at=as_utc(row.created_at),
        expires_at=as_utc(row.expires_at),
        revoked_at=as_utc(row.revoked_at),
    )


def _row_from_record(record: AccessTokenRecord) -> CustomerAccessToken:
    return CustomerAccessToken(
        token_hash=record.token_hash,
        customer_ref=record.customer_ref,
        customer_label=record.customer_label,
        created_at=as_utc(record.created_at),
        expires_at=as_utc(record.expires_at),
        revoked_at=as_utc(record.revoked_at),
    )


class SqlAccessTokenStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, record: AccessTokenRecord) -> None:
        async with self._session_factory() as db:
            db.add(_row_from_record(record))
            await db.commit()

    async def revoke_all(self, customer_ref: str, revoked_at: datetime) -> int:
        async with self._session_factory() as db:
            revoked = await self._revoke(db, customer_ref, revoked_at)
            await db.commit()
            return revoked

    async def replace(self, record: AccessTokenRecord, revoked_at: datetime) -> int:
        async with self._session_factory() as db:
            revoked = await self._revoke(db, record.customer_ref, revoked_at)
            db.add(_row_from_record(record))
            await db.commit()
            return revoked

    @staticmethod
    async def _revoke(db: AsyncSession, customer_ref: str, revoked_at: datetime) -> int:
        result = await db.execute(
            update(CustomerAccessToken)
            .where(
                CustomerAccessToken.customer_ref == customer_ref,
                CustomerAccessToken.revoked_at.is_(None),
            )
            .values(revoked_at=as_utc(revoked_at))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def get_by_token_hash(self, token_hash: str) -> AccessTokenRecord | None:
        async with self._session_factory() as db:
            row = await db.get(CustomerAccessToken, token_hash)
            return _record_from_row(row) if row else None
