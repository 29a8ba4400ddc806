import json
from typing import Any

from starlette.datastructures import FormData, UploadFile
from starlette.requests import Request

from offer_portal.core.exceptions import UnsupportedMediaTypeError, ValidationError

JSON_TYPE = "application/json"
FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def media_type(request: Request) -> str:
    return request.headers.get("content-type", "").split(";")[0].strip().lower()


def wants_html(request: Request) -> bool:
    if request.query_params.get("view") == "1":
        return True
    return "text/html" in request.headers.get("accept", "").lower()


async def read_json_object(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Request body is not valid JSON.")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object.")
    return body


def form_fields(form: FormData) -> dict[str, str]:
    """Plain text fields of a submitted form; uploaded files are skipped."""
    return {key: value for key, value in form.items() if isinstance(value, str)}


async def read_upload(form: FormData, field: str) -> bytes | None:
    upload = form.get(field)
    if not isinstance(upload, UploadFile):
        return None
    data = await upload.read()
    await upload.close()
    return data or None


def require_known_body(request: Request) -> str:
    kind = media_type(request)
    if kind != JSON_TYPE and kind not in FORM_TYPES:
        raise UnsupportedMediaTypeError()
    return kind
