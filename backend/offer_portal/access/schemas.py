import enum
from dataclasses import dataclass
from datetime import datetime

from pydantic import Field, field_validator

from offer_portal.documents.schemas import CamelModel


class AccessTokenRecord(CamelModel):
    token_hash: str
    customer_ref: str
    customer_label: str | None = None
    created_at: datetime
    expires_at: datetime
    revoked_at: datetime | None = None


class AccessStatus(str, enum.Enum):
    NOT_FOUND = "not_found"
    REVOKED = "revoked"
    EXPIRED = "expired"
    VALID = "valid"


@dataclass(frozen=True)
class AccessDecision:
    status: AccessStatus
    customer_ref: str | None = None
    customer_label: str | None = None

    @property
    def is_valid(self) -> bool:
        return self.status == AccessStatus.VALID


@dataclass(frozen=True)
class IssuedAccessLink:
    token: str
    expires_at: datetime


class AccessLinkRequest(CamelModel):
    customer_ref: str = Field(min_length=1, max_length=255)
    customer_label: str | None = Field(None, max_length=255)
    expires_in_days: int | None = Field(None, ge=1, le=365)

    @field_validator("customer_ref", mode="after")
    @classmethod
    def _strip_ref(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("customerRef must not be blank")
        return value


class AccessLinkRevokeRequest(CamelModel):
    customer_ref: str = Field(min_length=1, max_length=255)


class AccessLinkResponse(CamelModel):
    token: str
    public_url: str
    expires_at: datetime
