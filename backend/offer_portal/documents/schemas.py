import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DocumentKind(str, enum.Enum):
    OFFER = "offer"
    INVOICE = "invoice"


class DecisionValue(str, enum.Enum):
    ACCEPTED = "accepted"
    DECLINED = "declined"


class DecisionRecord(CamelModel):
    decided_at: datetime
    decision: DecisionValue
    accepted_name: str
    accepted_email: str
    decision_text_version: str


class DocumentRecord(CamelModel):
    document_id: str
    token_hash: str
    kind: DocumentKind
    published_at: datetime
    expires_at: datetime
    customer_ref: str
    customer_label: str | None = None
    snapshot: Any = None
    pdf_key: str | None = None
    decision: DecisionRecord | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now

    def is_open_offer(self, now: datetime) -> bool:
        return (
            self.kind == DocumentKind.OFFER
            and self.decision is None
            and not self.is_expired(now)
        )


class PublishFields(BaseModel):
    """Fields a publisher supplies; customer_ref/label are resolved by the store."""

    published_at: datetime
    expires_at: datetime
    snapshot: Any = None
    customer_ref: str | None = None
    customer_label: str | None = None
    pdf_key: str | None = None


class DocumentPage(BaseModel):
    items: list[DocumentRecord]
    next_cursor: str | None = None


class PublishRequest(CamelModel):
    token: str = Field(min_length=16, max_length=512)
    snapshot: Any = None
    expires_at: datetime | None = None
    customer_ref: str | None = Field(None, min_length=1, max_length=255)
    customer_label: str | None = Field(None, max_length=255)

    @field_validator("expires_at", "customer_ref", "customer_label", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value


class PublishResponse(CamelModel):
    document_id: str
    kind: DocumentKind
    customer_ref: str
    url: str


class DocumentView(CamelModel):
    document_id: str
    kind: DocumentKind
    published_at: datetime
    expires_at: datetime
    expired: bool
    status: str
    snapshot: Any = None
    has_pdf: bool


class OfferView(DocumentView):
    decision: DecisionRecord | None = None


class DocumentListItem(CamelModel):
    document_id: str
    kind: DocumentKind
    number: str = ""
    client: str = ""
    date: str = ""
    due_date: str = ""
    amount: float = 0.0
    status: str
    has_pdf: bool
    published_at: datetime
    expires_at: datetime
    url: str
