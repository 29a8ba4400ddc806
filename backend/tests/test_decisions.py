from datetime import timedelta

import pytest

from conftest import BASE_URL
from offer_portal.core.exceptions import (
    CsrfInvalidError,
    ExpiredError,
    NotFoundError,
    OriginInvalidError,
    ValidationError,
)
from offer_portal.decisions.csrf import normalize_origin, origin_matches
from offer_portal.decisions.schemas import FormGuard
from offer_portal.decisions.service import DecisionWorkflow
from offer_portal.documents.schemas import DecisionValue, DocumentKind, PublishFields
from offer_portal.documents.store import MemoryDocumentStore


def _form(decision: str = "accepted", **overrides) -> dict:
    form = {
        "decision": decision,
        "acceptedName": "Ada Lovelace",
        "acceptedEmail": "Ada@Example.COM",
        "decisionTextVersion": "v1",
    }
    form.update(overrides)
    return form


def _post_form(client, document_id, csrf_token, form=None, headers=None):
    request_headers = {"Origin": BASE_URL, "Cookie": f"csrfToken={csrf_token}"}
    request_headers.update(headers or {})
    body = {**(form or _form()), "csrfToken": csrf_token}
    return client.post(f"/d/{document_id}/decision", data=body, headers=request_headers, follow_redirects=False)


# ---------------------------------------------------------------------------
# Origin helpers
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("https://Offers.Example.test/d/abc?x=1", "https://offers.example.test"),
        ("https://offers.example.test:443", "https://offers.example.test"),
        ("http://localhost:80/", "http://localhost"),
        ("http://localhost:3001", "http://localhost:3001"),
        ("ftp://offers.example.test", None),
        ("not a url", None),
        ("", None),
        (None, None),
    ],
)
def test_normalize_origin(raw, expected):
    assert normalize_origin(raw) == expected


def test_origin_falls_back_to_referer_only_when_origin_absent():
    assert origin_matches(BASE_URL, None, f"{BASE_URL}/d/abc")
    assert not origin_matches(BASE_URL, "https://evil.example", f"{BASE_URL}/d/abc")
    assert not origin_matches(BASE_URL, None, None)


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


@pytest.fixture
async def offer(clock):
    store = MemoryDocumentStore()
    record = await store.publish(
        DocumentKind.OFFER,
        "a" * 64,
        PublishFields(
            published_at=clock.now,
            expires_at=clock.now + timedelta(days=1),
            snapshot={"number": "AN-1"},
        ),
    )
    return store, record


async def test_workflow_checks_expiry_before_origin(offer, clock):
    store, record = offer
    workflow = DecisionWorkflow(store, clock=clock)
    clock.advance(days=2)
    guard = FormGuard(origin="https://evil.example", referer=None, csrf_cookie=None, csrf_field=None)

    with pytest.raises(ExpiredError):
        await workflow.submit(record.document_id, _form(), guard=guard, expected_origin=BASE_URL)


async def test_workflow_checks_origin_before_csrf_and_payload(offer, clock):
    store, record = offer
    workflow = DecisionWorkflow(store, clock=clock)
    guard = FormGuard(origin="https://evil.example", referer=None, csrf_cookie="x", csrf_field="y")

    with pytest.raises(OriginInvalidError):
        await workflow.submit(record.document_id, {}, guard=guard, expected_origin=BASE_URL)

    guard = FormGuard(origin=BASE_URL, referer=None, csrf_cookie="x", csrf_field="y")
    with pytest.raises(CsrfInvalidError):
        await workflow.submit(record.document_id, {}, guard=guard, expected_origin=BASE_URL)


async def test_workflow_json_channel_skips_form_guard(offer, clock):
    store, record = offer
    workflow = DecisionWorkflow(store, clock=clock)

    stored = await workflow.submit(
        record.document_id, _form("declined"), guard=None, expected_origin=BASE_URL
    )

    assert stored.decision == DecisionValue.DECLINED
    assert stored.accepted_email == "ada@example.com"
    assert stored.decided_at == clock.now


class CountingStore(MemoryDocumentStore):
    def __init__(self) -> None:
        super().__init__()
        self.lookups = 0

    async def get_by_document_id(self, document_id):
        self.lookups += 1
        return await super().get_by_document_id(document_id)


async def test_workflow_reuses_loaded_offer(clock):
    store = CountingStore()
    record = await store.publish(
        DocumentKind.OFFER,
        "c" * 64,
        PublishFields(published_at=clock.now, expires_at=clock.now + timedelta(days=1)),
    )
    workflow = DecisionWorkflow(store, clock=clock)

    loaded = await workflow.open_offer(record.document_id)
    stored = await workflow.submit(
        record.document_id, _form(), guard=None, expected_origin=BASE_URL, offer=loaded
    )

    assert stored.decision == DecisionValue.ACCEPTED
    assert store.lookups == 1


async def test_workflow_rejects_unknown_document(offer, clock):
    store, _ = offer
    workflow = DecisionWorkflow(store, clock=clock)

    with pytest.raises(NotFoundError):
        await workflow.submit("b" * 32, _form(), guard=None, expected_origin=BASE_URL)


@pytest.mark.parametrize(
    "payload",
    [
        _form("maybe"),
        _form(acceptedName="   "),
        _form(acceptedEmail=""),
        _form(decisionTextVersion=None),
        {"decision": "accepted"},
    ],
)
async def test_workflow_validates_payload(offer, clock, payload):
    store, record = offer
    workflow = DecisionWorkflow(store, clock=clock)

    with pytest.raises(ValidationError):
        await workflow.submit(record.document_id, payload, guard=None, expected_origin=BASE_URL)


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


def test_form_decision_is_recorded(client, publish, open_form):
    offer = publish()
    csrf = open_form(offer["documentId"])

    resp = _post_form(client, offer["documentId"], csrf)

    assert resp.status_code == 200
    decision = resp.json()["data"]["decision"]
    assert decision["decision"] == "accepted"
    assert decision["acceptedName"] == "Ada Lovelace"
    assert decision["acceptedEmail"] == "ada@example.com"
    assert decision["decisionTextVersion"] == "v1"

    view = client.get(f"/d/{offer['documentId']}").json()["data"]
    assert view["status"] == "accepted"
    assert view["decision"] == decision


def test_form_preferring_html_is_redirected(client, publish, open_form):
    offer = publish()
    csrf = open_form(offer["documentId"])

    resp = _post_form(
        client,
        offer["documentId"],
        csrf,
        headers={"Accept": "text/html,application/xhtml+xml"},
    )

    assert resp.status_code == 303
    assert resp.headers["location"] == f"/d/{offer['documentId']}"


def test_foreign_origin_is_rejected(client, publish, open_form):
    offer = publish()
    csrf = open_form(offer["documentId"])

    resp = _post_form(client, offer["documentId"], csrf, headers={"Origin": "https://evil.example"})

    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "origin_invalid"


def test_missing_origin_and_referer_is_rejected(client, publish, open_form):
    offer = publish()
    csrf = open_form(offer["documentId"])

    resp = client.post(
        f"/d/{offer['documentId']}/decision",
        data={**_form(), "csrfToken": csrf},
        headers={"Cookie": f"csrfToken={csrf}"},
    )

    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "origin_invalid"


def test_referer_is_used_when_origin_is_absent(client, publish, open_form):
    offer = publish()
    csrf = open_form(offer["documentId"])

    resp = client.post(
        f"/d/{offer['documentId']}/decision",
        data={**_form(), "csrfToken": csrf},
        headers={
            "Referer": f"{BASE_URL}/d/{offer['documentId']}",
            "Cookie": f"csrfToken={csrf}",
        },
    )

    assert resp.status_code == 200


def test_default_port_in_origin_is_accepted(client, publish, open_form):
    offer = publish()
    csrf = open_form(offer["documentId"])

    resp = _post_form(
        client, offer["documentId"], csrf, headers={"Origin": "https://offers.example.test:443"}
    )

    assert resp.status_code == 200


def test_missing_csrf_cookie_is_rejected(client, publish, open_form):
    offer = publish()
    csrf = open_form(offer["documentId"])

    resp = client.post(
        f"/d/{offer['documentId']}/decision",
        data={**_form(), "csrfToken": csrf},
        headers={"Origin": BASE_URL},
    )

    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "csrf_invalid"


def test_mismatched_csrf_token_is_rejected(client, publish, open_form):
    offer = publish()
    csrf = open_form(offer["documentId"])

    resp = client.post(
        f"/d/{offer['documentId']}/decision",
        data={**_form(), "csrfToken": "forged-value"},
        headers={"Origin": BASE_URL, "Cookie": f"csrfToken={csrf}"},
    )

    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "csrf_invalid"


def test_json_submission_skips_form_checks(client, publish):
    offer = publish()

    resp = client.post(f"/d/{offer['documentId']}/decision", json=_form("declined"))

    assert resp.status_code == 200
    assert resp.json()["data"]["decision"]["decision"] == "declined"


@pytest.mark.parametrize(
    "first_form, second_form",
    [
        (_form("accepted", acceptedName="Alice"), _form("declined", acceptedName="Mallory")),
        (_form("declined", acceptedName="Mallory"), _form("accepted", acceptedName="Alice")),
    ],
)
def test_first_decision_wins_over_http(client, publish, first_form, second_form):
    offer = publish()
    url = f"/d/{offer['documentId']}/decision"

    first = client.post(url, json=first_form)
    second = client.post(url, json=second_form)

    assert first.status_code == second.status_code == 200
    kept = second.json()["data"]["decision"]
    assert kept == first.json()["data"]["decision"]
    assert kept["decision"] == first_form["decision"]
    assert kept["acceptedName"] == first_form["acceptedName"]

    view = client.get(f"/d/{offer['documentId']}").json()["data"]
    assert view["status"] == first_form["decision"]
    assert view["decision"] == kept


def test_expired_offer_is_gone(client, publish, clock):
    offer = publish()
    clock.advance(days=31)

    resp = client.post(f"/d/{offer['documentId']}/decision", json=_form())

    assert resp.status_code == 410
    assert resp.json()["error"]["code"] == "expired"


def test_explicit_expiry_is_honoured(client, publish, clock):
    offer = publish(expiresAt=(clock.now + timedelta(hours=1)).isoformat())
    clock.advance(hours=2)

    assert client.post(f"/d/{offer['documentId']}/decision", json=_form()).status_code == 410


def test_invoices_and_unknown_documents_cannot_be_decided(client, publish):
    invoice = publish("invoices")

    for document_id in (invoice["documentId"], "0" * 32):
        resp = client.post(f"/d/{document_id}/decision", json=_form())
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"


def test_invalid_payload_is_422(client, publish):
    offer = publish()
    url = f"/d/{offer['documentId']}/decision"

    resp = client.post(url, json=_form("maybe"))
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "validation_error"

    resp = client.post(url, content=b"[1, 2]", headers={"Content-Type": "application/json"})
    assert resp.status_code == 422


def test_unsupported_content_type_is_415(client, publish):
    offer = publish()

    resp = client.post(
        f"/d/{offer['documentId']}/decision",
        content=b"decision=accepted",
        headers={"Content-Type": "text/plain"},
    )

    assert resp.status_code == 415
    assert resp.json()["error"]["code"] == "unsupported_media_type"


def test_decision_bucket_is_rate_limited(make_client, settings, clock):
    client = make_client(settings.model_copy(update={"decision_rate_limit": 2}))
    url = "/d/unknown-document/decision"
    headers = {"cf-connecting-ip": "198.51.100.20"}

    assert client.post(url, json=_form(), headers=headers).status_code == 404
    assert client.post(url, json=_form(), headers=headers).status_code == 404
    resp = client.post(url, json=_form(), headers=headers)

    assert resp.status_code == 429
    assert "retry-after" in resp.headers


# ---------------------------------------------------------------------------
# CSRF cookie issuance
# ---------------------------------------------------------------------------


def test_open_offer_page_mints_scoped_cookie(client, publish):
    offer = publish()

    resp = client.get(f"/d/{offer['documentId']}", headers={"Accept": "text/html"})

    cookie = resp.headers["set-cookie"].lower()
    assert "csrftoken=" in cookie
    assert "httponly" in cookie
    assert "samesite=strict" in cookie
    assert "secure" in cookie
    assert f"path=/d/{offer['documentId']}" in cookie
    assert "max-age=7200" in cookie
    assert resp.cookies.get("csrfToken") in resp.text


def test_each_page_view_gets_a_fresh_token(client, publish, open_form):
    offer = publish()

    assert open_form(offer["documentId"]) != open_form(offer["documentId"])


def test_no_cookie_for_decided_expired_or_invoice(client, publish, clock):
    decided = publish()
    client.post(f"/d/{decided['documentId']}/decision", json=_form())
    invoice = publish("invoices")
    expiring = publish(expiresAt=(clock.now + timedelta(hours=3)).isoformat())
    clock.advance(hours=4)

    for document_id in (decided["documentId"], invoice["documentId"], expiring["documentId"]):
        resp = client.get(f"/d/{document_id}", params={"view": "1"})
        assert resp.status_code == 200
        assert "set-cookie" not in resp.headers
        assert 'name="csrfToken"' not in resp.text
