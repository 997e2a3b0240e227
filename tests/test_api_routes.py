"""
tests/test_api_routes.py -- Integration tests for the HTTP surface.

These tests exercise the full stack: FastAPI routing -> guard dependencies
-> AuthService -> SQLite stores -> response model serialization. Every test
starts from an empty database (function-scoped `client` fixture), so the
first registration in each test is the bootstrap account.

Coverage:
  - register / login / logout / me happy paths and contracts
  - session cookie attributes
  - 401 (no session, stale session, bad credentials), 403, 404, 409, 422
  - RBAC gate on /admin/users
  - the end-to-end promotion scenario
  - forced logout
  - error envelope on unmatched routes and methods
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from conftest import login, register


def use_session(client: TestClient, token: str | None) -> None:
    """Make subsequent requests carry exactly this session cookie."""
    client.cookies.clear()
    if token is not None:
        client.cookies.set("session_id", token)


def _set_cookie_headers(resp) -> list[str]:
    return [v for k, v in resp.headers.multi_items() if k.lower() == "set-cookie"]


class TestRegister:
    def test_first_account_is_privileged(self, client: TestClient) -> None:
        resp = register(client, "a@x.com", "secret1")
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert set(data) == {"id", "handle", "role", "createdAt"}
        assert data["handle"] == "a@x.com"
        assert data["role"] == "privileged"

    def test_second_account_is_standard(self, client: TestClient) -> None:
        register(client, "a@x.com", "secret1")
        resp = register(client, "b@x.com", "secret2")
        assert resp.status_code == 201
        assert resp.json()["role"] == "standard"

    def test_duplicate_handle_conflict(self, client: TestClient) -> None:
        register(client, "a@x.com", "secret1")
        resp = register(client, "a@x.com", "another1")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "duplicate_handle"

    def test_email_password_aliases(self, client: TestClient) -> None:
        resp = client.post("/auth/register", json={"email": "a@x.com", "password": "secret1"})
        assert resp.status_code == 201
        assert resp.json()["handle"] == "a@x.com"

    def test_short_secret_rejected(self, client: TestClient) -> None:
        resp = register(client, "a@x.com", "123")
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_overlong_secret_rejected(self, client: TestClient) -> None:
        resp = register(client, "a@x.com", "x" * 73)
        assert resp.status_code == 422

    def test_validation_error_does_not_echo_secret(self, client: TestClient) -> None:
        resp = client.post("/auth/register", json={"handle": "", "secret": "topsecret-value"})
        assert resp.status_code == 422
        assert "topsecret-value" not in resp.text

    def test_register_does_not_log_in(self, client: TestClient) -> None:
        resp = register(client, "a@x.com", "secret1")
        assert not _set_cookie_headers(resp)


class TestLogin:
    def test_round_trip(self, client: TestClient) -> None:
        created = register(client, "a@x.com", "secret1").json()
        resp = client.post("/auth/login", json={"handle": "a@x.com", "secret": "secret1"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == created["id"]
        assert data["handle"] == created["handle"]
        assert data["role"] == "privileged"
        assert data["createdAt"] == created["createdAt"]
        assert resp.headers["cache-control"] == "no-store"

    def test_session_cookie_attributes(self, client: TestClient) -> None:
        register(client, "a@x.com", "secret1")
        resp = client.post("/auth/login", json={"handle": "a@x.com", "secret": "secret1"})
        cookies = [h for h in _set_cookie_headers(resp) if h.startswith("session_id=")]
        assert len(cookies) == 1
        header = cookies[0].lower()
        assert "httponly" in header
        assert "samesite=strict" in header
        assert "max-age=3600" in header

    def test_response_has_no_secret_material(self, client: TestClient) -> None:
        register(client, "a@x.com", "secret1")
        resp = client.post("/auth/login", json={"handle": "a@x.com", "secret": "secret1"})
        assert "secret" not in resp.json()
        assert "$2" not in resp.text

    def test_wrong_secret_and_unknown_handle_identical(self, client: TestClient) -> None:
        register(client, "a@x.com", "secret1")
        wrong = client.post("/auth/login", json={"handle": "a@x.com", "secret": "nope"})
        unknown = client.post("/auth/login", json={"handle": "ghost@x.com", "secret": "secret1"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "invalid_credentials"

    def test_relogin_invalidates_previous_session(self, client: TestClient) -> None:
        register(client, "a@x.com", "secret1")
        first = login(client, "a@x.com", "secret1")
        second = login(client, "a@x.com", "secret1")
        use_session(client, first)
        assert client.get("/me").status_code == 401
        use_session(client, second)
        assert client.get("/me").status_code == 200


class TestMe:
    def test_me_with_cookie(self, client: TestClient) -> None:
        created = register(client, "a@x.com", "secret1").json()
        token = login(client, "a@x.com", "secret1")
        use_session(client, token)
        resp = client.get("/me")
        assert resp.status_code == 200
        assert resp.json() == {"id": created["id"], "handle": "a@x.com", "role": "privileged"}

    def test_me_with_bearer_header(self, client: TestClient) -> None:
        register(client, "a@x.com", "secret1")
        token = login(client, "a@x.com", "secret1")
        resp = client.get("/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200

    def test_me_without_session(self, client: TestClient) -> None:
        resp = client.get("/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "no_session"

    def test_me_with_unknown_token(self, client: TestClient) -> None:
        use_session(client, "forged-token")
        resp = client.get("/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_session"

    def test_me_after_expiry(self, client: TestClient, clock) -> None:
        register(client, "a@x.com", "secret1")
        token = login(client, "a@x.com", "secret1")
        clock.advance(3600)
        use_session(client, token)
        assert client.get("/me").status_code == 401


class TestLogout:
    def test_logout_clears_session_and_cookie(self, client: TestClient) -> None:
        register(client, "a@x.com", "secret1")
        token = login(client, "a@x.com", "secret1")
        use_session(client, token)
        resp = client.post("/auth/logout")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Logged out."}
        cleared = [h for h in _set_cookie_headers(resp) if h.startswith("session_id=")]
        assert cleared and any("max-age=0" in h.lower() or "expires=" in h.lower() for h in cleared)
        use_session(client, token)
        assert client.get("/me").status_code == 401

    def test_logout_twice_same_outcome(self, client: TestClient) -> None:
        register(client, "a@x.com", "secret1")
        token = login(client, "a@x.com", "secret1")
        use_session(client, token)
        first = client.post("/auth/logout")
        use_session(client, token)
        second = client.post("/auth/logout")
        assert first.status_code == second.status_code == 200
        assert first.json() == second.json()

    def test_logout_without_session(self, client: TestClient) -> None:
        resp = client.post("/auth/logout")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "no_session"


class TestAdmin:
    def _bootstrap(self, client: TestClient) -> tuple[dict, dict, str, str]:
        admin = register(client, "a@x.com", "secret1").json()
        user = register(client, "b@x.com", "secret2").json()
        admin_token = login(client, "a@x.com", "secret1")
        user_token = login(client, "b@x.com", "secret2")
        return admin, user, admin_token, user_token

    def test_privileged_lists_users(self, client: TestClient) -> None:
        admin, user, admin_token, _ = self._bootstrap(client)
        use_session(client, admin_token)
        resp = client.get("/admin/users")
        assert resp.status_code == 200
        assert resp.json() == [admin, user]

    def test_standard_is_forbidden(self, client: TestClient) -> None:
        _, _, _, user_token = self._bootstrap(client)
        use_session(client, user_token)
        resp = client.get("/admin/users")
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "insufficient_permissions"

    def test_unauthenticated_is_401_not_403(self, client: TestClient) -> None:
        self._bootstrap(client)
        use_session(client, None)
        assert client.get("/admin/users").status_code == 401
        assert client.patch("/admin/users/1/role", json={"role": "standard"}).status_code == 401

    def test_update_role_unknown_user(self, client: TestClient) -> None:
        _, _, admin_token, _ = self._bootstrap(client)
        use_session(client, admin_token)
        resp = client.patch("/admin/users/9999/role", json={"role": "privileged"})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    def test_update_role_invalid_value(self, client: TestClient) -> None:
        _, user, admin_token, _ = self._bootstrap(client)
        use_session(client, admin_token)
        resp = client.patch(f"/admin/users/{user['id']}/role", json={"role": "superuser"})
        assert resp.status_code == 422

    def test_standard_cannot_change_roles(self, client: TestClient) -> None:
        _, user, _, user_token = self._bootstrap(client)
        use_session(client, user_token)
        resp = client.patch(f"/admin/users/{user['id']}/role", json={"role": "privileged"})
        assert resp.status_code == 403

    def test_last_privileged_cannot_demote_self(self, client: TestClient) -> None:
        admin, _, admin_token, _ = self._bootstrap(client)
        use_session(client, admin_token)
        resp = client.patch(f"/admin/users/{admin['id']}/role", json={"role": "standard"})
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "last_privileged"

    def test_promotion_scenario(self, client: TestClient) -> None:
        """a (privileged) promotes b; b can then list users after logging in."""
        admin = register(client, "a@x.com", "secret1").json()
        b = register(client, "b@x.com", "secret2").json()
        assert admin["role"] == "privileged"
        assert b["role"] == "standard"

        admin_token = login(client, "a@x.com", "secret1")
        use_session(client, admin_token)
        resp = client.patch(f"/admin/users/{b['id']}/role", json={"role": "privileged"})
        assert resp.status_code == 200
        assert resp.json() == {**b, "role": "privileged"}

        b_token = login(client, "b@x.com", "secret2")
        use_session(client, b_token)
        resp = client.get("/admin/users")
        assert resp.status_code == 200
        assert {u["handle"] for u in resp.json()} == {"a@x.com", "b@x.com"}

    def test_demotion_takes_effect_on_next_request(self, client: TestClient) -> None:
        _, user, admin_token, user_token = self._bootstrap(client)
        use_session(client, admin_token)
        client.patch(f"/admin/users/{user['id']}/role", json={"role": "privileged"})
        use_session(client, user_token)
        assert client.get("/admin/users").status_code == 200
        use_session(client, admin_token)
        client.patch(f"/admin/users/{user['id']}/role", json={"role": "standard"})
        use_session(client, user_token)
        assert client.get("/admin/users").status_code == 403

    def test_revoke_sessions(self, client: TestClient) -> None:
        _, user, admin_token, user_token = self._bootstrap(client)
        use_session(client, admin_token)
        resp = client.delete(f"/admin/users/{user['id']}/sessions")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Sessions revoked.", "revoked": 1}
        use_session(client, user_token)
        assert client.get("/me").status_code == 401


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["components"] == {"app": "ok", "database": "ok"}


class TestErrorEnvelope:
    def test_unknown_route(self, client: TestClient) -> None:
        resp = client.get("/no/such/route")
        assert resp.status_code == 404
        assert resp.json() == {"error": {"code": "http_404", "message": "Not Found"}}

    def test_wrong_method(self, client: TestClient) -> None:
        resp = client.get("/auth/login")
        assert resp.status_code == 405
        assert resp.json()["error"]["code"] == "http_405"
        assert "POST" in resp.headers["allow"]


def test_request_logging_wraps_cors() -> None:
    from fastapi.middleware.cors import CORSMiddleware
    from starlette.middleware.base import BaseHTTPMiddleware

    from api.main import app

    # user_middleware is ordered outermost first.
    assert [m.cls for m in app.user_middleware] == [BaseHTTPMiddleware, CORSMiddleware]
