"""Tests for PIN login, session protection, error bodies and headers."""

import pytest


class TestLogin:

    def test_correct_pin(self, client):
        resp = client.post("/api/auth/login", json={"pin": "123456"})
        assert resp.status_code == 200
        assert resp.get_json() == {"success": True}

    def test_wrong_pin(self, client):
        resp = client.post("/api/auth/login", json={"pin": "000000"})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Invalid PIN"

    def test_missing_pin(self, client):
        resp = client.post("/api/auth/login", json={})
        assert resp.status_code == 400

    def test_logout_ends_session(self, auth_client):
        assert auth_client.get("/api/leads").status_code == 200
        assert auth_client.post("/api/auth/logout").status_code == 200
        assert auth_client.get("/api/leads").status_code == 401


class TestProtectedRoutes:

    @pytest.mark.parametrize("method,url", [
        ("get", "/api/leads"),
        ("post", "/api/leads"),
        ("get", "/api/leads/search?q=a"),
        ("get", "/api/gmail/status"),
        ("post", "/api/gmail/send"),
        ("post", "/api/meta/sync-leads"),
        ("get", "/api/stats"),
        ("get", "/api/settings/business-context"),
    ])
    def test_requires_login(self, client, method, url):
        resp = getattr(client, method)(url)
        assert resp.status_code == 401
        assert resp.get_json() == {"error": "Unauthorized"}

    def test_public_routes_do_not_need_session(self, client):
        # machine-to-machine routes use their own secrets
        assert client.get("/api/meta/webhook").status_code == 403
        assert client.get("/api/cron/follow-up").status_code == 401


class TestResponses:

    def test_unknown_route_is_json_404(self, client):
        resp = client.get("/api/nope")
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "Not found"}

    def test_wrong_method_is_json_405(self, client):
        resp = client.put("/api/auth/login")
        assert resp.status_code == 405

    def test_security_headers(self, client):
        resp = client.post("/api/auth/login", json={"pin": "000000"})
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert "frame-ancestors 'none'" in resp.headers["Content-Security-Policy"]
