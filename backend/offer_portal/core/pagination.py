import base64
import binascii
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import Query

from offer_portal.core.exceptions import ValidationError

MAX_PAGE_SIZE = 200


@dataclass
class CursorParams:
    kind: str = "all"
    limit: int = 50
    cursor: str | None = None


@dataclass(frozen=True)
class Watermark:
    """Position of the last item handed out: (published_at, document_id)."""

    published_at: datetime
    document_id: str


def get_cursor_pagination(
    kind: str = Query("all", pattern="^(offer|invoice|all)$", description="Document kind"),
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE, description="Items per page"),
    cursor: str | None = Query(None, max_length=256, description="Opaque cursor"),
) -> CursorParams:
    return CursorParams(kind=kind, limit=limit, cursor=cursor or None)


def clamp_limit(limit: int) -> int:
    return max(1, min(MAX_PAGE_SIZE, int(limit)))


def encode_cursor(published_at: datetime, document_id: str) -> str:
    raw = f"{published_at.astimezone(timezone.utc).isoformat()}|{document_id}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(cursor: str | None) -> Watermark | None:
    if not cursor:
        return None
    padded = cursor + "=" * (-len(cursor) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
        stamp, document_id = raw.split("|", 1)
        published_at = datetime.fromisoformat(stamp)
    except (binascii.Error, UnicodeError, ValueError):
        raise ValidationError("Invalid cursor.")
    if published_at.tzinfo is None:
        published_at = published_at.replace(tzinfo=timezone.utc)
    return Watermark(published_at=published_at.astimezone(timezone.utc), document_id=document_id)
