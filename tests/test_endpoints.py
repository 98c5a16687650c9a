"""End-to-end tests for the portal API through the ASGI test client."""

import pytest

from gatehouse.auth.database import DatabasePrincipalRepository
from gatehouse.config import AppConfig
from gatehouse.factory import create_app
from gatehouse.testing import TestClient

from conftest import ADMIN_PASSWORD, ALICE_PASSWORD, alice_hash

ORIGIN = "https://portal.example.com"


async def _login(client: TestClient, email: str = "alice@example.com", password: str = ALICE_PASSWORD):
    return await client.post("/api/auth/login", json={"identity": email, "secret": password})


async def _logged_in_token(client: TestClient) -> str:
    response = await _login(client)
    assert response.status == 200
    return response.json()["data"]["csrf_token"]


class TestHealth:
    async def test_reports_service(self, portal) -> None:
        async with TestClient(portal) as client:
            response = await client.get("/api/health")
        assert response.status == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["service"] == "gatehouse"
        assert body["env"] == "test"
        assert body["server_time"].endswith("+00:00")

    async def test_anonymous_traffic_creates_no_session(self, portal, session_store) -> None:
        async with TestClient(portal) as client:
            await client.get("/api/health")
            await client.get("/api/auth/me")
            assert client.cookies == {}
        assert len(session_store) == 0


class TestCsrfToken:
    async def test_stable_within_session(self, portal) -> None:
        async with TestClient(portal) as client:
            first = (await client.get("/api/csrf-token")).json()["data"]["csrf_token"]
            second = (await client.get("/api/csrf-token")).json()["data"]["csrf_token"]
        assert first == second

    async def test_issues_session_cookie(self, portal) -> None:
        async with TestClient(portal) as client:
            response = await client.get("/api/csrf-token")
            assert "crm_session" in client.cookies
        cookie = response.header("set-cookie")
        assert "HttpOnly" in cookie
        assert "SameSite=Lax" in cookie


class TestLogin:
    async def test_success(self, portal) -> None:
        async with TestClient(portal) as client:
            response = await _login(client)
            me = await client.get("/api/auth/me")
        assert response.status == 200
        data = response.json()["data"]
        assert data["principal"]["email"] == "alice@example.com"
        assert "password_hash" not in data["principal"]
        assert len(data["csrf_token"]) == 64
        assert me.json()["data"]["principal"]["id"] == 1

    async def test_rotates_session_id(self, portal) -> None:
        async with TestClient(portal) as client:
            await client.get("/api/csrf-token")
            before = client.cookies["crm_session"]
            await _login(client)
            assert client.cookies["crm_session"] != before

    async def test_legacy_field_names(self, portal) -> None:
        async with TestClient(portal) as client:
            response = await client.post(
                "/api/auth/login",
                json={"email": "alice@example.com", "password": ALICE_PASSWORD},
            )
        assert response.status == 200

    async def test_form_body(self, portal) -> None:
        async with TestClient(portal) as client:
            response = await client.post(
                "/api/auth/login",
                data={"identity": "alice@example.com", "secret": ALICE_PASSWORD},
            )
        assert response.status == 200

    async def test_wrong_password(self, portal) -> None:
        async with TestClient(portal) as client:
            response = await _login(client, password="wrong-password")
            me = await client.get("/api/auth/me")
        assert response.status == 401
        assert response.json() == {
            "error": "invalid_credentials",
            "message": "Invalid email or password.",
        }
        assert me.json()["data"]["principal"] is None

    async def test_unknown_and_inactive_look_the_same(self, portal) -> None:
        async with TestClient(portal) as client:
            unknown = await _login(client, email="ghost@example.com")
            inactive = await _login(client, email="dormant@example.com")
        assert unknown.status == inactive.status == 401
        assert unknown.json() == inactive.json()

    @pytest.mark.parametrize(
        ("body", "message"),
        [
            ({}, "identity is required."),
            ({"identity": "   ", "secret": "x"}, "identity is required."),
            ({"identity": "alice@example.com"}, "secret is required."),
            ({"identity": "a" * 191, "secret": "x"}, "identity exceeds max length."),
            ({"identity": "alice@example.com", "secret": "x" * 256}, "secret exceeds max length."),
        ],
    )
    async def test_validation(self, portal, body, message) -> None:
        async with TestClient(portal) as client:
            response = await client.post("/api/auth/login", json=body)
        assert response.status == 422
        assert response.json()["message"] == message

    async def test_malformed_json_is_a_validation_error(self, portal) -> None:
        async with TestClient(portal) as client:
            response = await client.post(
                "/api/auth/login",
                body=b"{not json",
                headers={"content-type": "application/json"},
            )
        assert response.status == 422

    async def test_multipart_without_boundary_is_a_validation_error(self, portal) -> None:
        async with TestClient(portal) as client:
            response = await client.post(
                "/api/auth/login",
                body=b"identity=a&secret=b",
                headers={"content-type": "multipart/form-data"},
            )
        assert response.status == 422
        assert response.json()["error"] == "validation_error"


class TestThrottledLogin:
    async def test_fifth_failure_locks_out(self, portal) -> None:
        async with TestClient(portal) as client:
            for _ in range(5):
                assert (await _login(client, password="wrong-password")).status == 401
            response = await _login(client, password="wrong-password")
        assert response.status == 429
        assert response.header("retry-after") == "900"
        body = response.json()
        assert body["error"] == "too_many_attempts"
        assert body["retry_after_seconds"] == 900

    async def test_lockout_beats_correct_password(self, portal, principals) -> None:
        async with TestClient(portal) as client:
            for _ in range(5):
                await _login(client, password="wrong-password")
            response = await _login(client)
            me = await client.get("/api/auth/me")
        assert response.status == 429
        assert me.json()["data"]["principal"] is None
        assert principals.last_login(1) is None

    async def test_lockout_expires(self, portal, clock) -> None:
        async with TestClient(portal) as client:
            for _ in range(5):
                await _login(client, password="wrong-password")
            clock.advance(600)
            assert (await _login(client)).status == 429
            clock.advance(301)
            assert (await _login(client)).status == 200

    async def test_retry_after_counts_down(self, portal, clock) -> None:
        async with TestClient(portal) as client:
            for _ in range(5):
                await _login(client, password="wrong-password")
            clock.advance(100)
            response = await _login(client)
        assert response.header("retry-after") == "800"

    async def test_throttle_event(self, portal, events) -> None:
        async with TestClient(portal) as client:
            for _ in range(6):
                await _login(client, password="wrong-password")
        throttled = [e for e in events if e.name == "auth.login.throttled"]
        assert len(throttled) == 1
        assert throttled[0].path == "/api/auth/login"

    async def test_success_resets_identity_counter(self, portal) -> None:
        async with TestClient(portal) as client:
            for _ in range(4):
                await _login(client, password="wrong-password")
            assert (await _login(client)).status == 200
            # The origin key keeps its four failures, so continue from elsewhere
            elsewhere = ("198.51.100.9", 1)
            for _ in range(4):
                response = await client.post(
                    "/api/auth/login",
                    json={"identity": "alice@example.com", "secret": "wrong-password"},
                    client=elsewhere,
                )
                assert response.status == 401

    async def test_origin_lock_survives_other_identity_success(self, portal) -> None:
        shared = ("203.0.113.5", 1234)
        async with TestClient(portal, client=shared) as client:
            for n in range(5):
                await _login(client, email=f"guess{n}@example.com", password="x")
            # Another user behind the same address is refused as well
            assert (await _login(client, email="root@example.com", password=ADMIN_PASSWORD)).status == 429
            other = await client.post(
                "/api/auth/login",
                json={"identity": "root@example.com", "secret": ADMIN_PASSWORD},
                client=("198.51.100.7", 1),
            )
        assert other.status == 200


class TestLogout:
    async def test_requires_csrf(self, portal) -> None:
        async with TestClient(portal) as client:
            await _logged_in_token(client)
            response = await client.post("/api/auth/logout")
            me = await client.get("/api/auth/me")
        assert response.status == 403
        assert response.json()["error"] == "csrf_mismatch"
        assert me.json()["data"]["principal"] is not None

    async def test_mismatched_csrf(self, portal) -> None:
        async with TestClient(portal) as client:
            await _logged_in_token(client)
            response = await client.post("/api/auth/logout", headers={"X-CSRF-Token": "0" * 64})
        assert response.status == 403

    async def test_requires_authentication(self, portal) -> None:
        async with TestClient(portal) as client:
            token = (await client.get("/api/csrf-token")).json()["data"]["csrf_token"]
            response = await client.post("/api/auth/logout", headers={"X-CSRF-Token": token})
        assert response.status == 401
        assert response.json()["error"] == "unauthorized"

    async def test_success(self, portal, session_store) -> None:
        async with TestClient(portal) as client:
            token = await _logged_in_token(client)
            response = await client.post("/api/auth/logout", headers={"X-CSRF-Token": token})
            assert "crm_session" not in client.cookies
            me = await client.get("/api/auth/me")
        assert response.status == 200
        assert response.json() == {"data": {"logged_out": True}}
        assert me.json()["data"]["principal"] is None
        assert len(session_store) == 0

    async def test_csrf_in_form_field(self, portal) -> None:
        async with TestClient(portal) as client:
            token = await _logged_in_token(client)
            response = await client.post("/api/auth/logout", data={"_csrf": token})
        assert response.status == 200

    async def test_broken_multipart_body_is_a_csrf_mismatch(self, portal) -> None:
        async with TestClient(portal) as client:
            await _logged_in_token(client)
            response = await client.post(
                "/api/auth/logout",
                body=b"--not-the-boundary\r\nbroken",
                headers={"content-type": "multipart/form-data; boundary=gatehouse"},
            )
        assert response.status == 403
        assert response.json()["error"] == "csrf_mismatch"

    async def test_old_token_dies_with_session(self, portal) -> None:
        async with TestClient(portal) as client:
            token = await _logged_in_token(client)
            await client.post("/api/auth/logout", headers={"X-CSRF-Token": token})
            await _login(client)
            response = await client.post("/api/auth/logout", headers={"X-CSRF-Token": token})
        assert response.status == 403


class TestMe:
    async def test_deactivated_principal_is_signed_out(self, portal, principals) -> None:
        async with TestClient(portal) as client:
            await _login(client)
            principals.set_active(1, False)
            me = await client.get("/api/auth/me")
        assert me.json()["data"]["principal"] is None


class TestChangePassword:
    async def test_success(self, portal) -> None:
        async with TestClient(portal) as client:
            token = await _logged_in_token(client)
            response = await client.put(
                "/api/auth/password",
                headers={"X-CSRF-Token": token},
                json={
                    "current_password": ALICE_PASSWORD,
                    "new_password": "brand-new-secret",
                    "confirm_password": "brand-new-secret",
                },
            )
            assert response.status == 200
            assert response.json() == {"data": {"updated": True}}

            await client.post("/api/auth/logout", headers={"X-CSRF-Token": token})
            assert (await _login(client, password="brand-new-secret")).status == 200

    async def test_wrong_current(self, portal) -> None:
        async with TestClient(portal) as client:
            token = await _logged_in_token(client)
            response = await client.put(
                "/api/auth/password",
                headers={"X-CSRF-Token": token},
                json={
                    "current_password": "nope",
                    "new_password": "brand-new-secret",
                    "confirm_password": "brand-new-secret",
                },
            )
        assert response.status == 422
        assert response.json()["message"] == "Current password is incorrect."

    async def test_missing_field(self, portal) -> None:
        async with TestClient(portal) as client:
            token = await _logged_in_token(client)
            response = await client.put(
                "/api/auth/password",
                headers={"X-CSRF-Token": token},
                json={"current_password": ALICE_PASSWORD},
            )
        assert response.status == 422
        assert response.json()["message"] == "new_password is required."

    async def test_anonymous(self, portal) -> None:
        async with TestClient(portal) as client:
            response = await client.put("/api/auth/password", json={})
        assert response.status == 401


class TestCrossCutting:
    async def test_unknown_route(self, portal) -> None:
        async with TestClient(portal) as client:
            response = await client.get("/api/nope")
        assert response.status == 404
        assert response.json() == {"error": "not_found", "message": "Route not found."}

    async def test_wrong_method(self, portal) -> None:
        async with TestClient(portal) as client:
            response = await client.get("/api/auth/login")
        assert response.status == 404

    async def test_preflight(self, portal) -> None:
        async with TestClient(portal) as client:
            response = await client.options("/api/auth/login", headers={"Origin": ORIGIN})
        assert response.status == 204
        assert response.body == b""
        assert response.header("access-control-allow-origin") == ORIGIN
        assert response.header("access-control-allow-credentials") == "true"
        assert "X-CSRF-Token" in response.header("access-control-allow-headers")

    async def test_preflight_on_unknown_path(self, portal) -> None:
        async with TestClient(portal) as client:
            response = await client.options("/anything/at/all")
        assert response.status == 204

    async def test_disallowed_origin_not_echoed(self, portal) -> None:
        async with TestClient(portal) as client:
            response = await client.get("/api/health", headers={"Origin": "https://evil.example"})
        assert response.header("access-control-allow-origin") is None

    async def test_headers_on_error_responses(self, portal) -> None:
        async with TestClient(portal) as client:
            response = await client.get("/api/nope", headers={"Origin": ORIGIN})
        assert response.header("x-content-type-options") == "nosniff"
        assert response.header("x-frame-options") == "DENY"
        assert response.header("access-control-allow-origin") == ORIGIN

    async def test_json_content_type(self, portal) -> None:
        async with TestClient(portal) as client:
            response = await client.get("/api/health")
        assert response.content_type.startswith("application/json")


class TestDatabaseBackedPortal:
    async def test_login_with_sqlite_backends(self, tmp_path) -> None:
        config = AppConfig(secret_key="k", database_url=f"sqlite:///{tmp_path / 'portal.db'}")
        app = create_app(config)
        async with TestClient(app) as client:
            repo = DatabasePrincipalRepository(app.db)
            await repo.create(email="alice@example.com", password_hash=alice_hash())

            assert (await _login(client, password="wrong-password")).status == 401
            assert await app.db.fetch_val("SELECT COUNT(*) FROM auth_throttle") == 3

            assert (await _login(client)).status == 200
            assert await app.db.fetch_val("SELECT COUNT(*) FROM sessions") == 1
            me = await client.get("/api/auth/me")
            assert me.json()["data"]["principal"]["email"] == "alice@example.com"

    async def test_file_throttle_dir(self, tmp_path, principals) -> None:
        config = AppConfig(secret_key="k", throttle_dir=str(tmp_path / "throttle"))
        app = create_app(config, principals=principals)
        async with TestClient(app) as client:
            await _login(client, password="wrong-password")
        assert len(list((tmp_path / "throttle").glob("*.json"))) == 3
