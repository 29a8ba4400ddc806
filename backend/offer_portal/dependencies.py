import logging
from typing import Annotated, Optional

from fastapi import Depends, Request
from fastapi.security import APIKeyHeader

from offer_portal.access.service import AccessLinkManager
from offer_portal.auth.service import PublishAuthOutcome, check_publish_key
from offer_portal.config import Settings
from offer_portal.core.clock import Clock
from offer_portal.core.exceptions import (
    PublishKeyRequiredError,
    RateLimitedError,
    UnauthorizedError,
)
from offer_portal.core.ratelimit import RateLimiter, client_identifier
from offer_portal.decisions.service import DecisionWorkflow
from offer_portal.documents.storage import BlobStore
from offer_portal.documents.store import DocumentStore

logger = logging.getLogger(__name__)

publish_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_document_store(request: Request) -> DocumentStore:
    return request.app.state.document_store


def get_blob_store(request: Request) -> BlobStore:
    return request.app.state.blob_store


def get_access_links(request: Request) -> AccessLinkManager:
    return request.app.state.access_links


def get_workflow(request: Request) -> DecisionWorkflow:
    return request.app.state.decision_workflow


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


async def require_publisher(
    settings: Annotated[Settings, Depends(get_settings)],
    api_key: Annotated[Optional[str], Depends(publish_key_header)],
) -> None:
    outcome = check_publish_key(settings, api_key)
    if outcome == PublishAuthOutcome.MISCONFIGURED:
        logger.warning("Publish request refused: no publish API key configured")
        raise PublishKeyRequiredError()
    if outcome == PublishAuthOutcome.UNAUTHORIZED:
        raise UnauthorizedError()


def rate_limit(bucket: str):
    """Dependency factory that charges one request against ``bucket`` for the caller."""

    async def check_rate(
        request: Request,
        settings: Annotated[Settings, Depends(get_settings)],
        limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
    ) -> None:
        client_id = client_identifier(request, settings.trusted_ip_header)
        result = limiter.check(bucket, client_id)
        if not result.allowed:
            logger.warning("Rate limited %s request from %s", bucket, client_id)
            raise RateLimitedError(result.retry_after)

    return check_rate


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


def get_public_origin(
    request: Request, settings: Annotated[Settings, Depends(get_settings)]
) -> str:
    """Configured public base URL, else the origin this request arrived on."""
    if settings.normalized_base_url:
        return settings.normalized_base_url
    return f"{request.url.scheme}://{request.url.netloc}"
