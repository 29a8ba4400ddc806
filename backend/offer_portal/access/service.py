from __future__ import annotations

import logging
from datetime import timedelta

from offer_portal.access.schemas import (
    AccessDecision,
    AccessStatus,
    AccessTokenRecord,
    IssuedAccessLink,
)
from offer_portal.access.store import AccessTokenStore
from offer_portal.auth.utils import generate_access_token, hash_token
from offer_portal.core.clock import Clock, utc_now
from offer_portal.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

MAX_TTL_DAYS = 365


class AccessLinkManager:
    """Issues, rotates, revokes and resolves customer access links.

    A raw token leaves this class exactly once, as the return value of
    issue() or rotate(); only its hash is persisted.
    """

    def __init__(
        self,
        store: AccessTokenStore,
        default_ttl_days: int = 90,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._default_ttl_days = default_ttl_days
        self._clock = clock

    def _new_record(
        self, customer_ref: str, label: str | None, ttl_days: int | None
    ) -> tuple[str, AccessTokenRecord]:
        days = self._default_ttl_days if ttl_days is None else ttl_days
        if not 1 <= days <= MAX_TTL_DAYS:
            raise ValidationError(f"ttl_days must be between 1 and {MAX_TTL_DAYS}.")
        if not customer_ref or not customer_ref.strip():
            raise ValidationError("customerRef is required.")

        token = generate_access_token()
        now = self._clock()
        record = AccessTokenRecord(
            token_hash=hash_token(token),
            customer_ref=customer_ref.strip(),
            customer_label=(label or "").strip() or None,
            created_at=now,
            expires_at=now + timedelta(days=days),
        )
        return token, record

    async def issue(
        self, customer_ref: str, label: str | None = None, ttl_days: int | None = None
    ) -> IssuedAccessLink:
        token, record = self._new_record(customer_ref, label, ttl_days)
        await self._store.create(record)
        logger.info("Issued access link for %s", record.customer_ref)
        return IssuedAccessLink(token=token, expires_at=record.expires_at)

    async def rotate(
        self, customer_ref: str, label: str | None = None, ttl_days: int | None = None
    ) -> IssuedAccessLink:
        token, record = self._new_record(customer_ref, label, ttl_days)
        revoked = await self._store.replace(record, revoked_at=record.created_at)
        logger.info(
            "Rotated access link for %s (%d previous revoked)", record.customer_ref, revoked
        )
        return IssuedAccessLink(token=token, expires_at=record.expires_at)

    async def revoke(self, customer_ref: str) -> int:
        revoked = await self._store.revoke_all(customer_ref.strip(), self._clock())
        logger.info("Revoked %d access link(s) for %s", revoked, customer_ref)
        return revoked

    async def resolve(self, token: str) -> AccessDecision:
        record = await self._store.get_by_token_hash(hash_token(token))
        if record is None:
            return AccessDecision(status=AccessStatus.NOT_FOUND)
        if record.revoked_at is not None:
            return AccessDecision(status=AccessStatus.REVOKED)
        if record.expires_at < self._clock():
            return AccessDecision(status=AccessStatus.EXPIRED)
        return AccessDecision(
            status=AccessStatus.VALID,
            customer_ref=record.customer_ref,
            customer_label=record.customer_label,
        )
