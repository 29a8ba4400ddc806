from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from offer_portal.core.ratelimit import DECISION_BUCKET
from offer_portal.core.requests import (
    JSON_TYPE,
    form_fields,
    read_json_object,
    require_known_body,
    wants_html,
)
from offer_portal.decisions.csrf import CSRF_COOKIE_NAME, CSRF_FIELD_NAME
from offer_portal.decisions.schemas import DecisionResponse, FormGuard
from offer_portal.decisions.service import DecisionWorkflow
from offer_portal.dependencies import get_public_origin, get_workflow, rate_limit
from offer_portal.documents.service import document_url

router = APIRouter()


@router.post("/d/{document_id}/decision", dependencies=[Depends(rate_limit(DECISION_BUCKET))])
async def submit_decision(
    document_id: str,
    request: Request,
    workflow: Annotated[DecisionWorkflow, Depends(get_workflow)],
    public_origin: Annotated[str, Depends(get_public_origin)],
):
    """Accept or decline an offer. The first recorded decision is final."""
    offer = await workflow.open_offer(document_id)
    if require_known_body(request) == JSON_TYPE:
        payload = await read_json_object(request)
        guard = None
    else:
        payload = form_fields(await request.form())
        guard = FormGuard(
            origin=request.headers.get("origin"),
            referer=request.headers.get("referer"),
            csrf_cookie=request.cookies.get(CSRF_COOKIE_NAME),
            csrf_field=payload.pop(CSRF_FIELD_NAME, None),
        )

    decision = await workflow.submit(
        document_id, payload, guard=guard, expected_origin=public_origin, offer=offer
    )

    if guard is not None and wants_html(request):
        return RedirectResponse(url=document_url(document_id), status_code=303)
    return {"data": DecisionResponse(decision=decision).model_dump(by_alias=True, mode="json")}
