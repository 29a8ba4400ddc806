from dataclasses import dataclass
from typing import Any

from pydantic import Field, field_validator

from offer_portal.documents.schemas import CamelModel, DecisionRecord, DecisionValue


class DecisionSubmission(CamelModel):
    decision: DecisionValue
    accepted_name: str = Field(min_length=1, max_length=255)
    accepted_email: str = Field(min_length=1, max_length=255)
    decision_text_version: str = Field(min_length=1, max_length=64)

    @field_validator(
        "decision", "accepted_name", "accepted_email", "decision_text_version", mode="before"
    )
    @classmethod
    def _strip(cls, value: Any) -> Any:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("accepted_email", mode="after")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.lower()


@dataclass(frozen=True)
class FormGuard:
    """Browser-supplied proof that a form post came from our own page view."""

    origin: str | None
    referer: str | None
    csrf_cookie: str | None
    csrf_field: str | None


class DecisionResponse(CamelModel):
    decision: DecisionRecord
