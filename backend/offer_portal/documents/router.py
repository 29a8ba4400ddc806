"""Publishing and the opaque /d/{documentId} document routes.

Customers only ever see document ids. The publish token is accepted on the
legacy /offers/{token} and /invoices/{token} routes, which redirect to the
opaque URL (or serve the PDF / decision status directly).
"""

import json
import logging
from typing import Annotated

import pydantic
from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from offer_portal.auth.utils import generate_csrf_token, hash_token
from offer_portal.config import Settings
from offer_portal.core.clock import Clock
from offer_portal.core.exceptions import NotFoundError, ValidationError, validation_details
from offer_portal.core.ratelimit import READ_BUCKET
from offer_portal.core.requests import (
    JSON_TYPE,
    form_fields,
    read_json_object,
    read_upload,
    require_known_body,
    wants_html,
)
from offer_portal.decisions.csrf import issue_csrf_cookie
from offer_portal.dependencies import (
    get_blob_store,
    get_clock,
    get_document_store,
    get_public_origin,
    get_settings,
    rate_limit,
    require_publisher,
)
from offer_portal.documents.pages import render_template
from offer_portal.documents.schemas import (
    DocumentKind,
    DocumentRecord,
    PublishRequest,
    PublishResponse,
)
from offer_portal.documents.service import (
    build_view,
    document_url,
    publish_document,
)
from offer_portal.documents.storage import BlobStore
from offer_portal.documents.store import DocumentStore

logger = logging.getLogger(__name__)

router = APIRouter()

MIN_TOKEN_LENGTH = 16
DEFAULT_DECISION_TEXT_VERSION = "v1"

_KIND_LABELS = {DocumentKind.OFFER: "Offer", DocumentKind.INVOICE: "Invoice"}


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------


async def _read_publish_request(request: Request) -> tuple[PublishRequest, bytes | None]:
    pdf = None
    if require_known_body(request) == JSON_TYPE:
        body = await read_json_object(request)
    else:
        form = await request.form()
        body = form_fields(form)
        raw_snapshot = body.get("snapshot")
        if raw_snapshot:
            try:
                body["snapshot"] = json.loads(raw_snapshot)
            except json.JSONDecodeError:
                raise ValidationError("snapshot must be JSON text.")
        pdf = await read_upload(form, "pdf")

    try:
        return PublishRequest.model_validate(body), pdf
    except pydantic.ValidationError as exc:
        raise ValidationError("Invalid publish payload.", details=validation_details(exc.errors()))


async def _publish(
    kind: DocumentKind,
    request: Request,
    store: DocumentStore,
    blob_store: BlobStore,
    settings: Settings,
    clock: Clock,
) -> dict:
    data, pdf = await _read_publish_request(request)
    record = await publish_document(
        kind,
        data,
        store=store,
        blob_store=blob_store,
        settings=settings,
        now=clock(),
        pdf=pdf,
    )
    response = PublishResponse(
        document_id=record.document_id,
        kind=record.kind,
        customer_ref=record.customer_ref,
        url=document_url(record.document_id),
    )
    return {"data": response.model_dump(by_alias=True, mode="json")}


@router.post("/offers", dependencies=[Depends(require_publisher)])
async def publish_offer(
    request: Request,
    store: Annotated[DocumentStore, Depends(get_document_store)],
    blob_store: Annotated[BlobStore, Depends(get_blob_store)],
    settings: Annotated[Settings, Depends(get_settings)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> dict:
    """Publish (or re-publish) an offer snapshot under a back-office token."""
    return await _publish(DocumentKind.OFFER, request, store, blob_store, settings, clock)


@router.post("/invoices", dependencies=[Depends(require_publisher)])
async def publish_invoice(
    request: Request,
    store: Annotated[DocumentStore, Depends(get_document_store)],
    blob_store: Annotated[BlobStore, Depends(get_blob_store)],
    settings: Annotated[Settings, Depends(get_settings)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> dict:
    """Publish (or re-publish) an invoice snapshot under a back-office token."""
    return await _publish(DocumentKind.INVOICE, request, store, blob_store, settings, clock)


# ---------------------------------------------------------------------------
# Opaque document routes
# ---------------------------------------------------------------------------


async def _get_document(store: DocumentStore, document_id: str) -> DocumentRecord:
    record = await store.get_by_document_id(document_id)
    if record is None:
        raise NotFoundError()
    return record


async def _pdf_response(record: DocumentRecord, blob_store: BlobStore) -> Response:
    data = await blob_store.get(record.pdf_key) if record.pdf_key else None
    if data is None:
        raise NotFoundError()
    return Response(
        content=data,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'inline; filename="{record.kind.value}.pdf"',
            "X-Frame-Options": "SAMEORIGIN",
        },
    )


def _decision_text_version(record: DocumentRecord) -> str:
    if isinstance(record.snapshot, dict):
        version = record.snapshot.get("decisionTextVersion")
        if isinstance(version, str) and version.strip():
            return version.strip()
    return DEFAULT_DECISION_TEXT_VERSION


@router.get("/d/{document_id}", dependencies=[Depends(rate_limit(READ_BUCKET))])
async def view_document(
    document_id: str,
    request: Request,
    store: Annotated[DocumentStore, Depends(get_document_store)],
    settings: Annotated[Settings, Depends(get_settings)],
    clock: Annotated[Clock, Depends(get_clock)],
    public_origin: Annotated[str, Depends(get_public_origin)],
):
    record = await _get_document(store, document_id)
    now = clock()
    view = build_view(record, now)
    if not wants_html(request):
        return {"data": view.model_dump(by_alias=True, mode="json")}

    # Each page view of an open offer gets its own form token.
    csrf_token = generate_csrf_token() if record.is_open_offer(now) else None
    html = render_template(
        "document.html",
        view=view,
        kind_label=_KIND_LABELS[record.kind],
        snapshot=record.snapshot,
        decision=record.decision,
        csrf_token=csrf_token,
        decision_text_version=_decision_text_version(record),
    )
    response = HTMLResponse(html)
    if csrf_token is not None:
        issue_csrf_cookie(
            response,
            record.document_id,
            csrf_token,
            secure=public_origin.startswith("https://"),
            max_age=settings.csrf_cookie_max_age_seconds,
        )
    return response


@router.get("/d/{document_id}/pdf", dependencies=[Depends(rate_limit(READ_BUCKET))])
async def download_document_pdf(
    document_id: str,
    store: Annotated[DocumentStore, Depends(get_document_store)],
    blob_store: Annotated[BlobStore, Depends(get_blob_store)],
) -> Response:
    record = await _get_document(store, document_id)
    return await _pdf_response(record, blob_store)


# ---------------------------------------------------------------------------
# Legacy token routes
# ---------------------------------------------------------------------------


async def _get_by_token(store: DocumentStore, token: str, kind: DocumentKind) -> DocumentRecord:
    if len(token) < MIN_TOKEN_LENGTH:
        raise NotFoundError()
    record = await store.get_by_token_hash(hash_token(token))
    if record is None or record.kind != kind:
        raise NotFoundError()
    return record


def _legacy_redirect(record: DocumentRecord) -> RedirectResponse:
    return RedirectResponse(url=document_url(record.document_id), status_code=302)


@router.get("/offers/{token}", dependencies=[Depends(rate_limit(READ_BUCKET))])
async def legacy_offer(
    token: str,
    store: Annotated[DocumentStore, Depends(get_document_store)],
) -> RedirectResponse:
    return _legacy_redirect(await _get_by_token(store, token, DocumentKind.OFFER))


@router.get("/invoices/{token}", dependencies=[Depends(rate_limit(READ_BUCKET))])
async def legacy_invoice(
    token: str,
    store: Annotated[DocumentStore, Depends(get_document_store)],
) -> RedirectResponse:
    return _legacy_redirect(await _get_by_token(store, token, DocumentKind.INVOICE))


@router.get("/offers/{token}/pdf", dependencies=[Depends(rate_limit(READ_BUCKET))])
async def legacy_offer_pdf(
    token: str,
    store: Annotated[DocumentStore, Depends(get_document_store)],
    blob_store: Annotated[BlobStore, Depends(get_blob_store)],
) -> Response:
    record = await _get_by_token(store, token, DocumentKind.OFFER)
    return await _pdf_response(record, blob_store)


@router.get("/invoices/{token}/pdf", dependencies=[Depends(rate_limit(READ_BUCKET))])
async def legacy_invoice_pdf(
    token: str,
    store: Annotated[DocumentStore, Depends(get_document_store)],
    blob_store: Annotated[BlobStore, Depends(get_blob_store)],
) -> Response:
    record = await _get_by_token(store, token, DocumentKind.INVOICE)
    return await _pdf_response(record, blob_store)


@router.get("/offers/{token}/status", dependencies=[Depends(rate_limit(READ_BUCKET))])
async def legacy_offer_status(
    token: str,
    store: Annotated[DocumentStore, Depends(get_document_store)],
) -> dict:
    """Decision polling for the back office, keyed by the publish token."""
    record = await _get_by_token(store, token, DocumentKind.OFFER)
    decision = record.decision.model_dump(by_alias=True, mode="json") if record.decision else None
    return {"data": {"decision": decision}}
