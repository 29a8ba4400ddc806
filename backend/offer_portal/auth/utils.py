from __future__ import annotations

import hashlib
import hmac
import secrets


def hash_token(token: str) -> str:
    """One-way hash of a bearer token for storage and lookup."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_access_token() -> str:
    # 24 random bytes, 192 bits of entropy.
    return secrets.token_urlsafe(24)


def generate_document_id() -> str:
    """Opaque document id, unrelated to any publish token."""
    return secrets.token_hex(16)


def generate_csrf_token() -> str:
    return secrets.token_urlsafe(32)


def constant_time_equals(left: str, right: str) -> bool:
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))
