# tests/test_webhook.py
"""
Webhook routes through FastAPI's TestClient, with the engine swapped for one
backed by the in-memory stores.
"""
import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient

import chatbot
from conversation import TEXTS


@pytest.fixture
def client(engine, monkeypatch):
    monkeypatch.setattr(chatbot, "engine", engine)
    return TestClient(chatbot.app)


def _signed(body, secret=None):
    secret = secret or chatbot.settings.app_secret
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha1).hexdigest()
    return {"X-Hub-Signature": f"sha1={digest}", "Content-Type": "application/json"}


def _page_body(*events):
    return json.dumps({"object": "page", "entry": [{"id": "PAGE", "time": 1, "messaging": list(events)}]}).encode("utf-8")


class TestVerification:

    def test_handshake_echoes_challenge(self, client):
        resp = client.get("/webhook", params={"hub.mode": "subscribe", "hub.verify_token": chatbot.settings.validation_token, "hub.challenge": "12345"})
        assert resp.status_code == 200
        assert resp.text == "12345"

    def test_wrong_token_is_rejected(self, client):
        resp = client.get("/webhook", params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "12345"})
        assert resp.status_code == 403

    def test_wrong_mode_is_rejected(self, client):
        resp = client.get("/webhook", params={"hub.mode": "unsubscribe", "hub.verify_token": chatbot.settings.validation_token})
        assert resp.status_code == 403


class TestSignature:

    def test_valid_signature(self):
        body = b'{"object":"page"}'
        header = _signed(body)["X-Hub-Signature"]
        assert chatbot.verify_request_signature(body, header, chatbot.settings.app_secret)

    def test_missing_signature_is_tolerated(self, caplog):
        assert chatbot.verify_request_signature(b"{}", None, "secret")
        assert "Couldn't validate the signature" in caplog.text

    def test_mismatch_is_rejected(self):
        assert not chatbot.verify_request_signature(b"{}", "sha1=deadbeef", "secret")

    def test_unsupported_method_is_rejected(self):
        assert not chatbot.verify_request_signature(b"{}", "md5=abc", "secret")


class TestReceive:

    def test_events_are_acknowledged_and_dispatched(self, client, users, messenger):
        users.add("U1")
        body = _page_body(
            {"sender": {"id": "U1"}, "recipient": {"id": "PAGE"}, "message": {"mid": "m1", "text": "typing on"}},
            {"sender": {"id": "U1"}, "recipient": {"id": "PAGE"}, "read": {"watermark": 1}},
        )
        resp = client.post("/webhook", content=body, headers=_signed(body))
        assert resp.status_code == 200
        assert resp.json() == {"status": "EVENT_RECEIVED"}
        assert messenger.sent == [("action", "U1", "typing_on")]

    def test_report_round_trip_over_http(self, client, users, reports, messages, messenger, moderator):
        users.add("U1")
        for event in (
            {"postback": {"payload": "DOMESTIC"}},
            {"message": {"mid": "m1", "text": "he shouted at me"}},
            {"message": {"mid": "m2", "text": "end"}},
        ):
            body = _page_body({"sender": {"id": "U1"}, "recipient": {"id": "PAGE"}, **event})
            assert client.post("/webhook", content=body, headers=_signed(body)).status_code == 200
        assert reports.rows[0].type == "DOMESTIC"
        assert [m.text for m in messages.rows] == ["he shouted at me"]
        assert users.rows["U1"].is_reporting == 0
        assert messenger.texts_to("MOD1") == ["he shouted at me"]
        assert messenger.texts_to("U1")[-1] == TEXTS["report_closed"]

    def test_failing_event_does_not_block_batch(self, client, engine, users, messenger, monkeypatch):
        users.add("U1")

        def flaky(event):
            raise RuntimeError("unexpected")

        monkeypatch.setattr(engine, "handle_postback", flaky)
        body = _page_body(
            {"sender": {"id": "U1"}, "recipient": {"id": "PAGE"}, "postback": {"payload": "REPORT"}},
            {"sender": {"id": "U1"}, "recipient": {"id": "PAGE"}, "message": {"mid": "m1", "text": "typing off"}},
        )
        resp = client.post("/webhook", content=body, headers=_signed(body))
        assert resp.status_code == 200
        assert messenger.sent == [("action", "U1", "typing_off")]

    def test_bad_signature_is_forbidden(self, client, messenger):
        body = _page_body({"sender": {"id": "U1"}, "recipient": {"id": "PAGE"}, "message": {"mid": "m1", "text": "menu"}})
        resp = client.post("/webhook", content=body, headers=_signed(body, secret="other"))
        assert resp.status_code == 403
        assert messenger.sent == []

    def test_non_page_object_is_ignored(self, client, messenger):
        body = json.dumps({"object": "user", "entry": []}).encode("utf-8")
        resp = client.post("/webhook", content=body, headers=_signed(body))
        assert resp.status_code == 200
        assert resp.json() == {"status": "ignored"}

    def test_invalid_json(self, client):
        body = b"not json"
        resp = client.post("/webhook", content=body, headers=_signed(body))
        assert resp.status_code == 400


def test_authorize_redirects_with_code(client):
    resp = client.get("/authorize", params={"account_linking_token": "tok", "redirect_uri": "https://m.me/cb?x=1"}, follow_redirects=False)
    assert resp.status_code in (302, 307)
    assert resp.headers["location"] == "https://m.me/cb?x=1&authorization_code=1234567890"


def test_healthcheck(client):
    assert client.get("/healthz").json()["status"] == "ok"


def test_root_log_level_follows_settings():
    import logging
    assert logging.getLogger().level == logging.getLevelName(chatbot.settings.log_level.upper())
