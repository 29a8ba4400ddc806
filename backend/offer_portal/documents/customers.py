"""Deterministic customer grouping for published documents."""

from typing import Any

from offer_portal.auth.utils import hash_token


def _snapshot_str(snapshot: Any, field: str) -> str | None:
    if not isinstance(snapshot, dict):
        return None
    value = snapshot.get(field)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def infer_customer_ref(snapshot: Any, token_hash: str) -> str:
    client_id = _snapshot_str(snapshot, "clientId")
    if client_id:
        return f"client:{client_id}"
    email = _snapshot_str(snapshot, "clientEmail")
    if email:
        return f"email:{hash_token(email.lower())}"
    # token_hash is already sha256(token), so this is a stable hash of the token
    return f"anon:{token_hash[:16]}"


def infer_customer_label(snapshot: Any) -> str | None:
    return _snapshot_str(snapshot, "client")


def resolve_customer_ref(explicit: str | None, snapshot: Any, token_hash: str) -> str:
    if explicit and explicit.strip():
        return explicit.strip()
    return infer_customer_ref(snapshot, token_hash)


def resolve_customer_label(explicit: str | None, snapshot: Any) -> str | None:
    if explicit and explicit.strip():
        return explicit.strip()
    return infer_customer_label(snapshot)
