"""System of record for published documents and their decisions.

Two interchangeable backends implement :class:`DocumentStore`; the application
picks one at startup. Reads never raise for missing records. The decision
commit is a single check-and-set per document: a lock-guarded section in
memory, a conditional ``UPDATE ... WHERE decision IS NULL`` in SQL.
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import Protocol, runtime_checkable

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from offer_portal.auth.utils import generate_document_id
from offer_portal.core.exceptions import ConflictError
from offer_portal.core.pagination import clamp_limit, decode_cursor, encode_cursor
from offer_portal.database import as_utc
from offer_portal.documents.customers import resolve_customer_label, resolve_customer_ref
from offer_portal.documents.models import PortalDocument
from offer_portal.documents.schemas import (
    DecisionRecord,
    DocumentKind,
    DocumentPage,
    DocumentRecord,
    PublishFields,
)

logger = logging.getLogger(__name__)


class DocumentNotFoundError(LookupError):
    """Raised by decision writes for a document that is not a known offer."""


class DocumentKindConflictError(ConflictError):
    def __init__(self) -> None:
        super().__init__("This token is already published as a different document kind.")


@runtime_checkable
class DocumentStore(Protocol):
    async def publish(
        self, kind: DocumentKind, token_hash: str, fields: PublishFields
    ) -> DocumentRecord:
        """Insert or update the document keyed by token_hash, keeping its document id."""
        ...

    async def get_by_token_hash(self, token_hash: str) -> DocumentRecord | None:
        ...

    async def get_by_document_id(self, document_id: str) -> DocumentRecord | None:
        ...

    async def set_decision_once(
        self, document_id: str, decision: DecisionRecord
    ) -> DecisionRecord:
        """Store decision unless one exists; return whichever decision is stored."""
        ...

    async def set_decision_once_by_token_hash(
        self, token_hash: str, decision: DecisionRecord
    ) -> DecisionRecord:
        ...

    async def list_by_customer_ref(
        self,
        customer_ref: str,
        kind: str = "all",
        limit: int = 50,
        cursor: str | None = None,
    ) -> DocumentPage:
        ...


def _kind_filter(kind: DocumentKind | str | None) -> DocumentKind | None:
    if kind is None or kind == "all":
        return None
    return DocumentKind(kind)


def _page(records: list[DocumentRecord], limit: int) -> DocumentPage:
    items = records[:limit]
    next_cursor = None
    if len(records) > limit and items:
        last = items[-1]
        next_cursor = encode_cursor(last.published_at, last.document_id)
    return DocumentPage(items=items, next_cursor=next_cursor)


class MemoryDocumentStore:
    """In-process store; the lock makes each mutation a single critical section."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_token_hash: dict[str, DocumentRecord] = {}
        self._token_hash_by_document_id: dict[str, str] = {}

    async def publish(
        self, kind: DocumentKind, token_hash: str, fields: PublishFields
    ) -> DocumentRecord:
        with self._lock:
            existing = self._by_token_hash.get(token_hash)
            if existing is not None and existing.kind != kind:
                raise DocumentKindConflictError()

            record = DocumentRecord(
                document_id=existing.document_id if existing else generate_document_id(),
                token_hash=token_hash,
                kind=kind,
                published_at=as_utc(fields.published_at),
                expires_at=as_utc(fields.expires_at),
                customer_ref=resolve_customer_ref(fields.customer_ref, fields.snapshot, token_hash),
                customer_label=resolve_customer_label(fields.customer_label, fields.snapshot),
                snapshot=copy.deepcopy(fields.snapshot),
                pdf_key=fields.pdf_key or (existing.pdf_key if existing else None),
                decision=existing.decision if existing else None,
            )
            self._by_token_hash[token_hash] = record
            self._token_hash_by_document_id[record.document_id] = token_hash
            return record.model_copy(deep=True)

    async def get_by_token_hash(self, token_hash: str) -> DocumentRecord | None:
        record = self._by_token_hash.get(token_hash)
        return record.model_copy(deep=True) if record else None

    async def get_by_document_id(self, document_id: str) -> DocumentRecord | None:
        token_hash = self._token_hash_by_document_id.get(document_id)
        if token_hash is None:
            return None
        return await self.get_by_token_hash(token_hash)

    async def set_decision_once(
        self, document_id: str, decision: DecisionRecord
    ) -> DecisionRecord:
        token_hash = self._token_hash_by_document_id.get(document_id)
        if token_hash is None:
            raise DocumentNotFoundError(document_id)
        return self._set_decision(token_hash, decision)

    async def set_decision_once_by_token_hash(
        self, token_hash: str, decision: DecisionRecord
    ) -> DecisionRecord:
        return self._set_decision(token_hash, decision)

    def _set_decision(self, token_hash: str, decision: DecisionRecord) -> DecisionRecord:
        with self._lock:
            record = self._by_token_hash.get(token_hash)
            if record is None or record.kind != DocumentKind.OFFER:
                raise DocumentNotFoundError(token_hash)
            if record.decision is None:
                record.decision = decision.model_copy(deep=True)
            return record.decision.model_copy(deep=True)

    async def list_by_customer_ref(
        self,
        customer_ref: str,
        kind: str = "all",
        limit: int = 50,
        cursor: str | None = None,
    ) -> DocumentPage:
        limit = clamp_limit(limit)
        kind_filter = _kind_filter(kind)
        watermark = decode_cursor(cursor)

        records = [
            record
            for record in self._by_token_hash.values()
            if record.customer_ref == customer_ref
            and (kind_filter is None or record.kind == kind_filter)
        ]
        if watermark is not None:
            position = (watermark.published_at, watermark.document_id)
            records = [r for r in records if (r.published_at, r.document_id) < position]
        records.sort(key=lambda r: (r.published_at, r.document_id), reverse=True)
        return _page([r.model_copy(deep=True) for r in records[: limit + 1]], limit)


def _record_from_row(row: PortalDocument) -> DocumentRecord:
    return DocumentRecord(
        document_id=row.document_id,
        token_hash=row.token_hash,
        kind=row.kind,
        published_at=as_utc(row.published_at),
        expires_at=as_utc(row.expires_at),
        customer_ref=row.customer_ref,
        customer_label=row.customer_label,
        snapshot=row.snapshot,
        pdf_key=row.pdf_key,
        decision=_decision_from_row(row),
    )


def _decision_from_row(row: PortalDocument) -> DecisionRecord | None:
    if row.decision is None:
        return None
    return DecisionRecord(
        decided_at=as_utc(row.decided_at),
        decision=row.decision,
        accepted_name=row.accepted_name or "",
        accepted_email=row.accepted_email or "",
        decision_text_version=row.decision_text_version or "",
    )


class SqlDocumentStore:
    """SQLAlchemy-backed store sharing the application's session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def publish(
        self, kind: DocumentKind, token_hash: str, fields: PublishFields
    ) -> DocumentRecord:
        async with self._session_factory() as db:
            row = await db.get(PortalDocument, token_hash)
            if row is None:
                row = PortalDocument(
                    token_hash=token_hash,
                    document_id=generate_document_id(),
                    kind=kind,
                )
                self._apply_fields(row, token_hash, fields)
                db.add(row)
                try:
                    await db.commit()
                    return _record_from_row(row)
                except IntegrityError:
                    # Lost a race with a concurrent first publish of the same token.
                    await db.rollback()
                    logger.info("Concurrent first publish, retrying as update")
                    row = await db.get(PortalDocument, token_hash)
                    if row is None:
                        raise

            if row.kind != kind:
                raise DocumentKindConflictError()
            self._apply_fields(row, token_hash, fields)
            await db.commit()
            return _record_from_row(row)

    @staticmethod
    def _apply_fields(row: PortalDocument, token_hash: str, fields: PublishFields) -> None:
        row.published_at = as_utc(fields.published_at)
        row.expires_at = as_utc(fields.expires_at)
        row.customer_ref = resolve_customer_ref(fields.customer_ref, fields.snapshot, token_hash)
        row.customer_label = resolve_customer_label(fields.customer_label, fields.snapshot)
        row.snapshot = copy.deepcopy(fields.snapshot)
        if fields.pdf_key:
            row.pdf_key = fields.pdf_key

    async def get_by_token_hash(self, token_hash: str) -> DocumentRecord | None:
        async with self._session_factory() as db:
            row = await db.get(PortalDocument, token_hash)
            return _record_from_row(row) if row else None

    async def get_by_document_id(self, document_id: str) -> DocumentRecord | None:
        async with self._session_factory() as db:
            row = await db.scalar(
                select(PortalDocument).where(PortalDocument.document_id == document_id)
            )
            return _record_from_row(row) if row else None

    async def set_decision_once(
        self, document_id: str, decision: DecisionRecord
    ) -> DecisionRecord:
        return await self._set_decision(PortalDocument.document_id == document_id, decision)

    async def set_decision_once_by_token_hash(
        self, token_hash: str, decision: DecisionRecord
    ) -> DecisionRecord:
        return await self._set_decision(PortalDocument.token_hash == token_hash, decision)

    async def _set_decision(self, match, decision: DecisionRecord) -> DecisionRecord:
        async with self._session_factory() as db:
            await db.execute(
                update(PortalDocument)
                .where(
                    match,
                    PortalDocument.kind == DocumentKind.OFFER,
                    PortalDocument.decision.is_(None),
                )
                .values(
                    decision=decision.decision,
                    decided_at=as_utc(decision.decided_at),
                    accepted_name=decision.accepted_name,
                    accepted_email=decision.accepted_email,
                    decision_text_version=decision.decision_text_version,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()

            row = await db.scalar(
                select(PortalDocument)
                .where(match)
                .execution_options(populate_existing=True)
            )
            if row is None or row.kind != DocumentKind.OFFER:
                raise DocumentNotFoundError()
            stored = _decision_from_row(row)
            if stored is None:
                raise DocumentNotFoundError()
            return stored

    async def list_by_customer_ref(
        self,
        customer_ref: str,
        kind: str = "all",
        limit: int = 50,
        cursor: str | None = None,
    ) -> DocumentPage:
        limit = clamp_limit(limit)
        kind_filter = _kind_filter(kind)
        watermark = decode_cursor(cursor)

        stmt = select(PortalDocument).where(PortalDocument.customer_ref == customer_ref)
        if kind_filter is not None:
            stmt = stmt.where(PortalDocument.kind == kind_filter)
        if watermark is not None:
            stmt = stmt.where(
                or_(
                    PortalDocument.published_at < watermark.published_at,
                    and_(
                        PortalDocument.published_at == watermark.published_at,
                        PortalDocument.document_id < watermark.document_id,
                    ),
                )
            )
        stmt = stmt.order_by(
            PortalDocument.published_at.desc(),
            PortalDocument.document_id.desc(),
        ).limit(limit + 1)

        async with self._session_factory() as db:
            rows = (await db.scalars(stmt)).all()
        return _page([_record_from_row(row) for row in rows], limit)
