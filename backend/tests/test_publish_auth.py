import pytest

from conftest import PUBLISH_KEY
from offer_portal.auth.service import PublishAuthOutcome, check_publish_key, publish_auth_health
from offer_portal.config import Settings


def _settings(key: str = "", strict: bool = True) -> Settings:
    return Settings(publish_api_key=key, require_publish_api_key=strict)


@pytest.mark.parametrize(
    "key, strict, presented, expected",
    [
        ("", True, None, PublishAuthOutcome.MISCONFIGURED),
        ("", True, "anything", PublishAuthOutcome.MISCONFIGURED),
        ("   ", True, None, PublishAuthOutcome.MISCONFIGURED),
        ("", False, None, PublishAuthOutcome.ALLOW),
        ("s3cret", False, None, PublishAuthOutcome.UNAUTHORIZED),
        ("s3cret", True, "s3cret", PublishAuthOutcome.ALLOW),
        ("s3cret", True, "S3CRET", PublishAuthOutcome.UNAUTHORIZED),
        ("s3cret", True, "", PublishAuthOutcome.UNAUTHORIZED),
        (" s3cret ", True, "s3cret", PublishAuthOutcome.ALLOW),
    ],
)
def test_check_publish_key(key, strict, presented, expected):
    assert check_publish_key(_settings(key, strict), presented) == expected


def test_publish_auth_health():
    assert publish_auth_health(_settings("", True)) == "misconfigured"
    assert publish_auth_health(_settings("", False)) == "disabled"
    assert publish_auth_health(_settings("k", True)) == "enabled"
    assert publish_auth_health(_settings("k", False)) == "enabled"


PUBLISHER_ROUTES = [
    ("/offers", {"token": "t" * 24, "snapshot": {}}),
    ("/invoices", {"token": "t" * 24, "snapshot": {}}),
    ("/customers/access-links", {"customerRef": "client:1"}),
    ("/customers/access-links/rotate", {"customerRef": "client:1"}),
    ("/customers/access-links/revoke", {"customerRef": "client:1"}),
]


@pytest.mark.parametrize("path, body", PUBLISHER_ROUTES)
def test_strict_mode_without_key_fails_closed(make_client, settings, path, body):
    client = make_client(settings.model_copy(update={"publish_api_key": ""}))

    resp = client.post(path, json=body, headers={"X-API-Key": "whatever"})

    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "publish_api_key_required"


@pytest.mark.parametrize("path, body", PUBLISHER_ROUTES)
def test_missing_or_wrong_key_is_challenged(client, path, body):
    for headers in ({}, {"X-API-Key": "wrong-key"}):
        resp = client.post(path, json=body, headers=headers)

        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"
        assert resp.headers["www-authenticate"] == 'ApiKey realm="publish"'


@pytest.mark.parametrize("path, body", PUBLISHER_ROUTES)
def test_correct_key_is_accepted(client, path, body):
    resp = client.post(path, json=body, headers={"X-API-Key": PUBLISH_KEY})
    assert resp.status_code == 200


def test_open_mode_allows_publishing_without_key(make_client, settings):
    client = make_client(
        settings.model_copy(update={"publish_api_key": "", "require_publish_api_key": False})
    )

    resp = client.post("/offers", json={"token": "t" * 24, "snapshot": {}})
    assert resp.status_code == 200


def test_setup_page_reports_health_without_leaking_key(client):
    resp = client.get("/admin/setup")

    assert resp.status_code == 200
    assert "text/html" in resp.headers["content-type"]
    assert "enabled" in resp.text
    assert PUBLISH_KEY not in resp.text


def test_setup_page_flags_misconfiguration(make_client, settings):
    client = make_client(settings.model_copy(update={"publish_api_key": ""}))
    assert "misconfigured" in client.get("/admin/setup").text
