"""
GovGate — Request Pipeline Tests (end to end)
=============================================

What:  Runs requests through the full application: request context, sessions,
       the pipeline middleware and the gateway's own routes.
How:   HTTPX AsyncClient over ASGITransport; the client keeps the session
       cookie, so a sequence of calls behaves like one browser.

What we test:
    ✅ Login without a CSRF token → 403 JSON
    ✅ Six rapid login attempts → the 6th is 429 with Retry-After
    ✅ Route prefixes pick their middleware groups
    ✅ Handler-set security headers survive post-processing
    ✅ Admin endpoints require an admin identity
    ✅ Strict mode refuses to build an app with unknown groups
"""

import pytest
from starlette.responses import PlainTextResponse

from govgate.exceptions import UnknownGroupError
from govgate.main import create_app
from govgate.middleware.pipeline import PipelineMiddleware
from govgate.middleware.registry import MiddlewareRegistry

ADMIN = {"X-API-Key": "admin-key-456"}
USER = {"X-API-Key": "user-key-123"}


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_login_without_csrf_token_is_forbidden(self, test_client):
        response = await test_client.post("/api/auth/login", json={"api_key": "user-key-123"})
        assert response.status_code == 403
        assert response.json()["error"] == "CSRF token validation failed"
        assert response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_sixth_rapid_login_is_rate_limited(self, test_client):
        token = (await test_client.get("/api/auth/csrf-token")).json()["token"]
        statuses = []
        for _ in range(6):
            response = await test_client.post(
                "/api/auth/login",
                json={"api_key": "wrong-key"},
                headers={"X-CSRF-Token": token},
            )
            statuses.append(response.status_code)
        assert statuses == [401, 401, 401, 401, 401, 429]
        assert int(response.headers["Retry-After"]) > 0
        # The rejection still went through security_headers (priority 90 > 80)
        assert response.headers["X-Frame-Options"] == "SAMEORIGIN"

    @pytest.mark.asyncio
    async def test_login_and_logout(self, test_client):
        token = (await test_client.get("/api/auth/csrf-token")).json()["token"]
        login = await test_client.post(
            "/api/auth/login", json={"api_key": "admin-key-456"}, headers={"X-CSRF-Token": token}
        )
        assert login.json() == {"authenticated": True, "user_id": "1", "roles": ["admin"]}

        # The session cookie now authenticates admin calls
        stats = await test_client.get("/api/admin/middleware")
        assert stats.status_code == 200

        logout = await test_client.post("/api/auth/logout", headers={"X-CSRF-Token": token})
        assert logout.json()["authenticated"] is False
        assert (await test_client.get("/api/admin/middleware")).status_code == 401

    @pytest.mark.asyncio
    async def test_request_id_is_propagated(self, test_client):
        response = await test_client.get("/health", headers={"X-Request-ID": "trace-42"})
        assert response.headers["X-Request-ID"] == "trace-42"


class TestRouteGroups:
    def test_longest_prefix_wins(self):
        pipeline = PipelineMiddleware(
            app=None,
            registry=MiddlewareRegistry(),
            route_groups={"/api/": ["api"], "/api/admin/": ["api", "admin"], "/": ["web"]},
        )
        assert pipeline.groups_for("/api/admin/middleware") == ["api", "admin"]
        assert pipeline.groups_for("/api/records") == ["api"]
        assert pipeline.groups_for("/about") == ["web"]

    def test_unmatched_path_runs_nothing(self):
        pipeline = PipelineMiddleware(app=None, registry=MiddlewareRegistry(), route_groups={"/api/": ["api"]})
        assert pipeline.groups_for("/health") == []

    @pytest.mark.asyncio
    async def test_api_prefix_requires_authentication(self, test_client):
        response = await test_client.get("/api/records")
        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized"

    @pytest.mark.asyncio
    async def test_api_key_passes_to_router(self, test_client):
        response = await test_client.get("/api/records", headers=USER)
        # No such route: the router answers, not a stage
        assert response.status_code == 404
        assert response.headers["X-RateLimit-Limit"] == "1000"

    @pytest.mark.asyncio
    async def test_health_bypasses_pipeline(self, test_client):
        response = await test_client.get("/health")
        body = response.json()
        assert body["status"] == "healthy"
        assert body["middleware"] == 8
        assert "X-RateLimit-Limit" not in response.headers


class TestHeaderNonClobber:
    @pytest.mark.asyncio
    async def test_handler_header_survives(self, app, test_client):
        @app.get("/framed")
        async def framed():
            return PlainTextResponse("framed", headers={"X-Frame-Options": "DENY"})

        response = await test_client.get("/framed")
        assert response.status_code == 200
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"


class TestAdminRoutes:
    @pytest.mark.asyncio
    async def test_non_admin_is_forbidden(self, test_client):
        response = await test_client.get("/api/admin/rate-limits", headers=USER)
        assert response.status_code == 403
        assert response.json()["message"] == "Administrator privileges required"

    @pytest.mark.asyncio
    async def test_rate_limit_stats_and_clear(self, test_client):
        await test_client.get("/api/records", headers=USER)
        stats = (await test_client.get("/api/admin/rate-limits", headers=ADMIN)).json()
        assert stats["active_limits"]["api"]["127.0.0.1"] >= 1
        assert stats["limits"]["auth"] == {"requests": 5, "window": 900}

        cleared = await test_client.delete("/api/admin/rate-limits/127.0.0.1", headers=ADMIN)
        assert cleared.json()["cleared"] >= 1

    @pytest.mark.asyncio
    async def test_clear_all(self, test_client):
        await test_client.get("/api/records", headers=USER)
        response = await test_client.delete("/api/admin/rate-limits", headers=ADMIN)
        assert response.status_code == 200
        stats = (await test_client.get("/api/admin/rate-limits", headers=ADMIN)).json()
        # Only the stats call itself has been counted since the clear
        assert stats["total_clients"] == 1

    @pytest.mark.asyncio
    async def test_update_limit(self, test_client):
        response = await test_client.put(
            "/api/admin/rate-limits/auth", json={"requests": 10, "window": 600}, headers=ADMIN
        )
        assert response.status_code == 200
        assert response.json()["limits"]["auth"] == {"requests": 10, "window": 600}

    @pytest.mark.asyncio
    async def test_invalid_limit_is_rejected(self, test_client):
        response = await test_client.put(
            "/api/admin/rate-limits/auth", json={"requests": 0, "window": 600}, headers=ADMIN
        )
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_middleware_stats(self, test_client):
        body = (await test_client.get("/api/admin/middleware", headers=ADMIN)).json()
        assert body["total_middleware"] == 8
        assert body["middleware_by_priority"]["csrf"] == 100
        assert body["missing"] == {}

    @pytest.mark.asyncio
    async def test_security_headers_report(self, test_client):
        body = (await test_client.get("/api/admin/security-headers", headers=ADMIN)).json()
        assert body["security_score"] == 100
        assert body["csp_enabled"] is True


class TestAppFactory:
    def test_strict_mode_rejects_unknown_group(self, test_settings):
        settings = test_settings.model_copy(
            update={"middleware_strict": True, "route_groups": {"/api/": ["ghost"]}}
        )
        with pytest.raises(UnknownGroupError):
            create_app(settings)

    def test_apps_do_not_share_limiters(self, test_settings):
        first = create_app(test_settings)
        second = create_app(test_settings)
        assert first.state.registry.resolve("rate_limit").limiter is not (
            second.state.registry.resolve("rate_limit").limiter
        )

    def test_single_cors_origin_is_applied_to_policy(self, test_settings):
        settings = test_settings.model_copy(update={"cors_origins": "https://portal.gov.example"})
        app = create_app(settings)
        policy = app.state.registry.resolve("security_headers").policy
        assert policy.api_headers["Access-Control-Allow-Origin"] == "https://portal.gov.example"
