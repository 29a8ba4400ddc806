"""Customer access links and the customer's document listing."""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse

from offer_portal.access.schemas import (
    AccessDecision,
    AccessLinkRequest,
    AccessLinkResponse,
    AccessLinkRevokeRequest,
    AccessStatus,
    IssuedAccessLink,
)
from offer_portal.access.service import AccessLinkManager
from offer_portal.core.clock import Clock
from offer_portal.core.exceptions import ExpiredError, NotFoundError, RevokedError
from offer_portal.core.pagination import CursorParams, get_cursor_pagination
from offer_portal.core.ratelimit import READ_BUCKET
from offer_portal.dependencies import (
    get_access_links,
    get_clock,
    get_document_store,
    get_public_origin,
    rate_limit,
    require_publisher,
)
from offer_portal.documents.pages import render_template
from offer_portal.documents.schemas import DocumentListItem
from offer_portal.documents.service import build_list_item
from offer_portal.documents.store import DocumentStore

router = APIRouter()


def _link_response(link: IssuedAccessLink, public_origin: str) -> dict:
    response = AccessLinkResponse(
        token=link.token,
        public_url=f"{public_origin}/customers/{link.token}",
        expires_at=link.expires_at,
    )
    return {"data": response.model_dump(by_alias=True, mode="json")}


@router.post("/access-links", dependencies=[Depends(require_publisher)])
async def issue_access_link(
    data: AccessLinkRequest,
    access_links: Annotated[AccessLinkManager, Depends(get_access_links)],
    public_origin: Annotated[str, Depends(get_public_origin)],
) -> dict:
    link = await access_links.issue(data.customer_ref, data.customer_label, data.expires_in_days)
    return _link_response(link, public_origin)


@router.post("/access-links/rotate", dependencies=[Depends(require_publisher)])
async def rotate_access_link(
    data: AccessLinkRequest,
    access_links: Annotated[AccessLinkManager, Depends(get_access_links)],
    public_origin: Annotated[str, Depends(get_public_origin)],
) -> dict:
    """Revoke every live link of the customer and hand out a fresh one."""
    link = await access_links.rotate(data.customer_ref, data.customer_label, data.expires_in_days)
    return _link_response(link, public_origin)


@router.post("/access-links/revoke", dependencies=[Depends(require_publisher)])
async def revoke_access_links(
    data: AccessLinkRevokeRequest,
    access_links: Annotated[AccessLinkManager, Depends(get_access_links)],
) -> dict:
    revoked = await access_links.revoke(data.customer_ref)
    return {"data": {"revoked": revoked}}


def _require_access(decision: AccessDecision) -> AccessDecision:
    if decision.status == AccessStatus.REVOKED:
        raise RevokedError()
    if decision.status == AccessStatus.EXPIRED:
        raise ExpiredError()
    if not decision.is_valid:
        raise NotFoundError()
    return decision


async def _list_documents(
    token: str,
    pagination: CursorParams,
    access_links: AccessLinkManager,
    store: DocumentStore,
    now: datetime,
) -> tuple[AccessDecision, list[DocumentListItem], str | None]:
    access = _require_access(await access_links.resolve(token))
    page = await store.list_by_customer_ref(
        access.customer_ref,
        kind=pagination.kind,
        limit=pagination.limit,
        cursor=pagination.cursor,
    )
    items = [build_list_item(record, now, access.customer_label) for record in page.items]
    return access, items, page.next_cursor


@router.get("/{token}/documents", dependencies=[Depends(rate_limit(READ_BUCKET))])
async def list_customer_documents(
    token: str,
    pagination: Annotated[CursorParams, Depends(get_cursor_pagination)],
    access_links: Annotated[AccessLinkManager, Depends(get_access_links)],
    store: Annotated[DocumentStore, Depends(get_document_store)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> dict:
    access, items, next_cursor = await _list_documents(
        token, pagination, access_links, store, clock()
    )
    return {
        "data": {
            "customerLabel": access.customer_label,
            "items": [item.model_dump(by_alias=True, mode="json") for item in items],
            "nextCursor": next_cursor,
        }
    }


@router.get(
    "/{token}",
    response_class=HTMLResponse,
    dependencies=[Depends(rate_limit(READ_BUCKET))],
)
async def customer_portal_page(
    token: str,
    pagination: Annotated[CursorParams, Depends(get_cursor_pagination)],
    access_links: Annotated[AccessLinkManager, Depends(get_access_links)],
    store: Annotated[DocumentStore, Depends(get_document_store)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> HTMLResponse:
    access, items, next_cursor = await _list_documents(
        token, pagination, access_links, store, clock()
    )
    return HTMLResponse(
        render_template(
            "portal.html",
            customer_label=access.customer_label,
            items=items,
            kind=pagination.kind,
            limit=pagination.limit,
            next_cursor=next_cursor,
        )
    )
