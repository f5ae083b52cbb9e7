"""Unit tests for the page route guard and the session dependency."""

from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from keygate.api.deps import RequireSession
from keygate.api.main import create_app
from keygate.api.middleware import is_guarded
from keygate.auth.sessions import SESSION_TTL
from tests.helpers.auth import make_service, make_test_settings


class TestIsGuarded:
    @pytest.mark.parametrize(
        "path",
        ["/", "/calendar", "/calendar/", "/calendar/2026/01"],
    )
    def test_guarded(self, path):
        assert is_guarded(path, ["/", "/calendar"])

    @pytest.mark.parametrize(
        "path",
        ["/login", "/about", "/calendarx", "/static/app.js"],
    )
    def test_not_guarded(self, path):
        assert not is_guarded(path, ["/", "/calendar"])

    def test_trailing_slash_in_config(self):
        assert is_guarded("/calendar/week", ["/calendar/"])


@pytest.fixture
def app(clock):
    settings = make_test_settings()
    app = create_app(settings)
    app.state.auth_service = make_service(settings, clock=clock)

    @app.get("/api/v1/private")
    async def private(session: RequireSession):
        return {"user_id": session.user_id}

    return app


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def token(app):
    return app.state.auth_service.sessions.issue(7, "alice")


@pytest.mark.asyncio
class TestSessionGuard:
    @pytest.mark.parametrize("path", ["/", "/calendar", "/calendar/2026/01"])
    async def test_anonymous_redirected_to_login(self, client, path):
        response = await client.get(path)

        assert response.status_code == 307
        assert response.headers["location"] == "/login"

    async def test_authenticated_passes_through(self, client, token):
        response = await client.get("/calendar", headers={"Cookie": f"session={token}"})

        # No page routes are mounted, so passing the guard means a 404
        assert response.status_code == 404

    async def test_bearer_token_accepted(self, client, token):
        response = await client.get("/", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 404

    async def test_login_redirects_signed_in_user_home(self, client, token):
        response = await client.get("/login", headers={"Cookie": f"session={token}"})

        assert response.status_code == 307
        assert response.headers["location"] == "/"

    async def test_login_open_to_anonymous(self, client):
        response = await client.get("/login")

        assert response.status_code == 404

    async def test_expired_session_redirected(self, client, token, clock):
        clock.advance(SESSION_TTL + timedelta(seconds=1))

        response = await client.get("/", headers={"Cookie": f"session={token}"})

        assert response.status_code == 307
        assert response.headers["location"] == "/login"

    async def test_expired_session_can_reach_login(self, client, token, clock):
        clock.advance(SESSION_TTL)

        response = await client.get("/login", headers={"Cookie": f"session={token}"})

        assert response.status_code == 404

    async def test_garbage_cookie_redirected(self, client):
        response = await client.get("/", headers={"Cookie": "session=not-a-token"})

        assert response.status_code == 307

    async def test_unguarded_page_untouched(self, client):
        response = await client.get("/about")

        assert response.status_code == 404

    async def test_api_is_not_redirected(self, client):
        response = await client.get("/api/v1/auth/me")

        assert response.status_code == 401


@pytest.mark.asyncio
class TestRequireSession:
    async def test_valid_session(self, client, token):
        response = await client.get("/api/v1/private", headers={"Cookie": f"session={token}"})

        assert response.status_code == 200
        assert response.json() == {"user_id": 7}

    async def test_missing_session(self, client):
        response = await client.get("/api/v1/private")

        assert response.status_code == 401
        assert response.json()["error"]["type"] == "session_invalid"

    async def test_expired_session(self, client, token, clock):
        clock.advance(SESSION_TTL)

        response = await client.get("/api/v1/private", headers={"Cookie": f"session={token}"})

        assert response.status_code == 401
        assert response.json()["error"]["type"] == "session_expired"
