"""
tests/test_api_account.py -- Integration tests for /api/v1/account/*.

Every mutation needs a live session and the current password.
"""

from __future__ import annotations

from conftest import OTP_SECRET, current_code, login_as


class TestChangeUsername:
    def test_rename(self, seeded_client):
        c, service, token = seeded_client
        login_as(c, token)
        resp = c.put("/api/v1/account/username", json={"current_password": "password-1", "new_username": "alicia"})
        assert resp.status_code == 200
        assert resp.json()["message"] == "Username changed. Please log in again."
        assert service.store.find("alicia") is not None
        # The old token names a user that no longer exists.
        assert service.resolve_identity(token) is None

    def test_rename_wrong_password(self, seeded_client):
        c, service, token = seeded_client
        login_as(c, token)
        resp = c.put("/api/v1/account/username", json={"current_password": "nope", "new_username": "alicia"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"
        assert service.store.find("alice") is not None

    def test_rename_collision(self, seeded_client):
        c, service, token = seeded_client
        service.setup("bob", "password-2", allow_existing=True)
        login_as(c, token)
        resp = c.put("/api/v1/account/username", json={"current_password": "password-1", "new_username": "bob"})
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_rename_requires_session(self, seeded_client):
        c, _, _ = seeded_client
        resp = c.put("/api/v1/account/username", json={"current_password": "password-1", "new_username": "x"})
        assert resp.status_code == 303


class TestChangePassword:
    def test_change(self, seeded_client):
        c, service, token = seeded_client
        login_as(c, token)
        resp = c.put("/api/v1/account/password", json={"current_password": "password-1", "new_password": "password-new"})
        assert resp.status_code == 200
        assert resp.json() == {"message": "Password updated."}
        service.login("alice", "password-new")

    def test_empty_new_password(self, seeded_client):
        c, _, token = seeded_client
        login_as(c, token)
        resp = c.put("/api/v1/account/password", json={"current_password": "password-1", "new_password": ""})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_wrong_current_password(self, seeded_client):
        c, _, token = seeded_client
        login_as(c, token)
        resp = c.put("/api/v1/account/password", json={"current_password": "x", "new_password": "password-new"})
        assert resp.status_code == 401


class TestOtp:
    def test_disable(self, otp_client):
        c, service, token = otp_client
        login_as(c, token)
        resp = c.post("/api/v1/account/otp/disable", json={"current_password": "password-2"})
        assert resp.status_code == 200
        assert service.store.find("bob").otp_secret is None

    def test_disable_wrong_password(self, otp_client):
        c, service, token = otp_client
        login_as(c, token)
        resp = c.post("/api/v1/account/otp/disable", json={"current_password": "nope"})
        assert resp.status_code == 401
        assert service.store.find("bob").otp_secret == OTP_SECRET

    def test_regenerate(self, otp_client):
        c, service, token = otp_client
        login_as(c, token)
        resp = c.post("/api/v1/account/otp/regenerate", json={"current_password": "password-2"})
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()
        assert data["secret"] != OTP_SECRET
        assert service.store.find("bob").otp_secret == data["secret"]
        # The new secret is live immediately.
        service.login("bob", "password-2", current_code(data["secret"]))


class TestRateLimit:
    def test_password_reverification_throttled(self, seeded_client):
        c, service, token = seeded_client
        login_as(c, token)
        for _ in range(5):
            resp = c.post("/api/v1/account/otp/disable", json={"current_password": "guess-guess"})
            assert resp.status_code == 401
        resp = c.post("/api/v1/account/otp/disable", json={"current_password": "password-1"})
        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "rate_limited"
