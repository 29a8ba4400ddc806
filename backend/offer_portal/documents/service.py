from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from offer_portal.auth.utils import hash_token
from offer_portal.config import Settings
from offer_portal.documents.schemas import (
    DocumentKind,
    DocumentListItem,
    DocumentRecord,
    DocumentView,
    OfferView,
    PublishFields,
    PublishRequest,
)
from offer_portal.documents.storage import BlobStore, generate_pdf_key
from offer_portal.documents.store import DocumentStore

logger = logging.getLogger(__name__)


def document_url(document_id: str) -> str:
    return f"/d/{document_id}"


def default_expiry(kind: DocumentKind, settings: Settings, now: datetime) -> datetime:
    days = (
        settings.offer_default_expiry_days
        if kind == DocumentKind.OFFER
        else settings.invoice_default_expiry_days
    )
    return now + timedelta(days=days)


async def publish_document(
    kind: DocumentKind,
    data: PublishRequest,
    *,
    store: DocumentStore,
    blob_store: BlobStore,
    settings: Settings,
    now: datetime,
    pdf: bytes | None = None,
) -> DocumentRecord:
    pdf_key = None
    if pdf:
        pdf_key = generate_pdf_key(kind.value)
        await blob_store.put(pdf_key, pdf)

    fields = PublishFields(
        published_at=now,
        expires_at=data.expires_at or default_expiry(kind, settings, now),
        snapshot=data.snapshot,
        customer_ref=data.customer_ref,
        customer_label=data.customer_label,
        pdf_key=pdf_key,
    )
    record = await store.publish(kind, hash_token(data.token), fields)
    logger.info("Published %s %s", kind.value, record.document_id)
    return record


def _snapshot_field(snapshot: Any, field: str) -> Any:
    if isinstance(snapshot, dict):
        return snapshot.get(field)
    return None


def document_status(record: DocumentRecord, now: datetime) -> str:
    expired = record.is_expired(now)
    if record.kind == DocumentKind.OFFER:
        if expired:
            return "expired"
        if record.decision is not None:
            return record.decision.decision.value
        return "open"
    status = _snapshot_field(record.snapshot, "status")
    if isinstance(status, str) and status.strip():
        return status.strip()
    return "expired" if expired else "open"


def build_view(record: DocumentRecord, now: datetime) -> DocumentView:
    fields = dict(
        document_id=record.document_id,
        kind=record.kind,
        published_at=record.published_at,
        expires_at=record.expires_at,
        expired=record.is_expired(now),
        status=document_status(record, now),
        snapshot=record.snapshot,
        has_pdf=bool(record.pdf_key),
    )
    if record.kind == DocumentKind.OFFER:
        return OfferView(decision=record.decision, **fields)
    return DocumentView(**fields)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _as_amount(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def build_list_item(
    record: DocumentRecord, now: datetime, fallback_label: str | None = None
) -> DocumentListItem:
    snapshot = record.snapshot
    return DocumentListItem(
        document_id=record.document_id,
        kind=record.kind,
        number=_as_text(_snapshot_field(snapshot, "number")),
        client=_as_text(_snapshot_field(snapshot, "client") or fallback_label),
        date=_as_text(_snapshot_field(snapshot, "date")),
        due_date=_as_text(_snapshot_field(snapshot, "dueDate")),
        amount=_as_amount(_snapshot_field(snapshot, "amount")),
        status=document_status(record, now),
        has_pdf=bool(record.pdf_key),
        published_at=record.published_at,
        expires_at=record.expires_at,
        url=document_url(record.document_id),
    )
