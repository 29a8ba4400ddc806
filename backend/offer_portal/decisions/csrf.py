"""Origin and double-submit CSRF checks for the decision form."""

from urllib.parse import urlsplit

from starlette.responses import Response

from offer_portal.auth.utils import constant_time_equals

CSRF_COOKIE_NAME = "csrfToken"
CSRF_FIELD_NAME = "csrfToken"

_DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_origin(url: str | None) -> str | None:
    """Reduce a URL to scheme://host[:port], dropping default ports."""
    if not url:
        return None
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if scheme not in _DEFAULT_PORTS or not host:
        return None
    if ":" in host:
        host = f"[{host}]"
    if port is None or port == _DEFAULT_PORTS[scheme]:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


def origin_matches(expected_origin: str, origin: str | None, referer: str | None) -> bool:
    expected = normalize_origin(expected_origin)
    if expected is None:
        return False
    presented = normalize_origin(origin) if origin else normalize_origin(referer)
    return presented == expected


def csrf_matches(cookie_value: str | None, field_value: str | None) -> bool:
    if not cookie_value or not field_value:
        return False
    return constant_time_equals(cookie_value, field_value)


def issue_csrf_cookie(
    response: Response, document_id: str, token: str, *, secure: bool, max_age: int
) -> None:
    """Bind a page-view token to the document path as a double-submit cookie."""
    response.set_cookie(
        CSRF_COOKIE_NAME,
        token,
        max_age=max_age,
        path=f"/d/{document_id}",
        secure=secure,
        httponly=True,
        samesite="strict",
    )
