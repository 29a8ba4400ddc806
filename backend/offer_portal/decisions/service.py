"""Recording a customer's accept/decline decision on an offer.

An offer is Open until the first valid decision moves it to Decided; expiry is
checked at request time and blocks the transition. Form posts must prove they
come from our own page (origin + CSRF cookie); JSON posts are treated as a
programmatic channel and skip that check. Rate limiting runs before this
service, in the route dependency.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import pydantic

from offer_portal.core.clock import Clock, utc_now
from offer_portal.core.exceptions import (
    CsrfInvalidError,
    ExpiredError,
    NotFoundError,
    OriginInvalidError,
    ValidationError,
    validation_details,
)
from offer_portal.decisions.csrf import csrf_matches, origin_matches
from offer_portal.decisions.schemas import DecisionSubmission, FormGuard
from offer_portal.documents.schemas import DecisionRecord, DocumentKind, DocumentRecord
from offer_portal.documents.store import DocumentStore

logger = logging.getLogger(__name__)


def parse_submission(payload: Mapping[str, Any]) -> DecisionSubmission:
    try:
        return DecisionSubmission.model_validate(dict(payload))
    except pydantic.ValidationError as exc:
        raise ValidationError(
            "Invalid decision payload.", details=validation_details(exc.errors())
        )


class DecisionWorkflow:
    def __init__(self, store: DocumentStore, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    async def open_offer(self, document_id: str) -> DocumentRecord:
        """Return the offer if it can still take a decision, else raise 404/410."""
        record = await self._store.get_by_document_id(document_id)
        if record is None or record.kind != DocumentKind.OFFER:
            raise NotFoundError()
        if record.is_expired(self._clock()):
            raise ExpiredError()
        return record

    async def submit(
        self,
        document_id: str,
        payload: Mapping[str, Any],
        *,
        guard: FormGuard | None,
        expected_origin: str,
        offer: DocumentRecord | None = None,
    ) -> DecisionRecord:
        """Validate and commit a decision; returns the stored (possibly earlier) one.

        ``guard`` is None for JSON submissions. ``offer`` is the record already
        returned by :meth:`open_offer` for this request, if the caller has one.
        """
        if offer is None or offer.document_id != document_id:
            await self.open_offer(document_id)
        now = self._clock()

        if guard is not None:
            if not origin_matches(expected_origin, guard.origin, guard.referer):
                logger.warning("Rejected decision form for %s: origin mismatch", document_id)
                raise OriginInvalidError()
            if not csrf_matches(guard.csrf_cookie, guard.csrf_field):
                logger.warning("Rejected decision form for %s: CSRF mismatch", document_id)
                raise CsrfInvalidError()

        submission = parse_submission(payload)
        candidate = DecisionRecord(
            decided_at=now,
            decision=submission.decision,
            accepted_name=submission.accepted_name,
            accepted_email=submission.accepted_email,
            decision_text_version=submission.decision_text_version,
        )
        stored = await self._store.set_decision_once(document_id, candidate)
        if stored == candidate:
            logger.info("Recorded %s decision for document %s", stored.decision.value, document_id)
        else:
            logger.info("Document %s already decided, keeping first decision", document_id)
        return stored
