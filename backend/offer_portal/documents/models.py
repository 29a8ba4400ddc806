from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from offer_portal.database import Base, TimestampMixin
from offer_portal.documents.schemas import DecisionValue, DocumentKind


class PortalDocument(TimestampMixin, Base):
    __tablename__ = "portal_documents"
    __table_args__ = (
        Index("ix_portal_documents_customer_published", "customer_ref", "published_at"),
    )

    token_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    document_id: Mapped[str] = mapped_column(
        String(64), unique=True, index=True, nullable=False
    )
    kind: Mapped[DocumentKind] = mapped_column(
        Enum(DocumentKind, values_callable=lambda kinds: [k.value for k in kinds]),
        nullable=False,
    )
    customer_ref: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    published_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    snapshot: Mapped[Any] = mapped_column(JSON, nullable=True)
    pdf_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Decision (offers only); written once by a conditional update
    decision: Mapped[DecisionValue | None] = mapped_column(
        Enum(DecisionValue, values_callable=lambda values: [v.value for v in values]),
        nullable=True,
    )
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    accepted_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    decision_text_version: Mapped[str | None] = mapped_column(String(64), nullable=True)
