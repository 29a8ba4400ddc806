from __future__ import annotations

import enum
import logging

from offer_portal.auth.utils import constant_time_equals
from offer_portal.config import Settings

logger = logging.getLogger(__name__)


class PublishAuthOutcome(str, enum.Enum):
    ALLOW = "allow"
    UNAUTHORIZED = "unauthorized"
    MISCONFIGURED = "misconfigured"


def check_publish_key(settings: Settings, presented_key: str | None) -> PublishAuthOutcome:
    """Gate a publisher write with the shared publish key.

    Strict mode without a configured key fails closed on every call so the
    operator sees a 503 instead of an auth layer that silently switched off.
    Without strict mode and without a key the deployment is explicitly open.
    """
    configured = settings.normalized_publish_key
    if settings.require_publish_api_key and not configured:
        return PublishAuthOutcome.MISCONFIGURED
    if not configured:
        return PublishAuthOutcome.ALLOW
    if presented_key and constant_time_equals(presented_key, configured):
        return PublishAuthOutcome.ALLOW
    return PublishAuthOutcome.UNAUTHORIZED


def publish_auth_health(settings: Settings) -> str:
    configured = bool(settings.normalized_publish_key)
    if settings.require_publish_api_key and not configured:
        return "misconfigured"
    return "enabled" if configured else "disabled"
