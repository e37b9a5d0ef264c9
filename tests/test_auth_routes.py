from dataclasses import replace
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from coach.core.config import get_settings
from coach.database.models import Role
from coach.services.google_oauth import GoogleOAuthClient, OAuthExchangeError, get_google_oauth
from tests.helpers import make_user

PROFILE = {
    "sub": "google-123",
    "email": "grace@example.com",
    "name": "Grace Hopper",
    "picture": "https://example.com/grace.png",
}


@pytest.fixture
def oauth_settings():
    return replace(
        get_settings(),
        google_client_id="client-id",
        google_client_secret="client-secret",
        google_callback_url="http://testserver/api/auth/google/callback",
    )


def _google(token_status=200, token_body=None, profile=None, raises=None):
    """MockTransport handler standing in for Google's token and userinfo endpoints."""
    def handler(request):
        if raises is not None:
            raise raises
        if request.url.path == "/token":
            return httpx.Response(token_status, json=token_body or {"access_token": "access-abc"})
        assert request.headers["Authorization"] == "Bearer access-abc"
        return httpx.Response(200, json=profile or PROFILE)

    return handler


@pytest.fixture
def use_google(app, oauth_settings):
    def _use(handler):
        app.dependency_overrides[get_google_oauth] = lambda: GoogleOAuthClient(
            oauth_settings, httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )

    yield _use
    app.dependency_overrides.pop(get_google_oauth, None)


def _begin_login(client):
    response = client.get("/api/auth/google", follow_redirects=False)
    assert response.status_code == 302
    query = parse_qs(urlparse(response.headers["location"]).query)
    assert query["client_id"] == ["client-id"]
    return query["state"][0]


def _callback(client, **params):
    return client.get("/api/auth/google/callback", params=params, follow_redirects=False)


def _login_error(response):
    assert response.status_code == 302
    location = urlparse(response.headers["location"])
    assert location.path == "/login"
    return parse_qs(location.query)["error"][0]


def test_callback_signs_in_new_user(client, use_google):
    use_google(_google())
    state = _begin_login(client)

    response = _callback(client, code="code-1", state=state)

    assert response.status_code == 302
    assert response.headers["location"] == get_settings().frontend_url
    me = client.get("/auth/me").json()
    assert me["user"]["name"] == "Grace Hopper"
    assert me["user"]["role"] == "USER"
    assert me["user"]["external_identities"] == [{"provider": "google", "email": "grace@example.com"}]
    assert me["merged_from"] is None


def test_callback_folds_guest_into_existing_account(client, db, use_google, sign_in):
    use_google(_google())
    _callback(client, code="code-1", state=_begin_login(client))
    account_id = client.get("/auth/me").json()["user"]["id"]

    client.cookies.clear()
    guest_id = make_user(db, Role.GUEST)
    sign_in(guest_id)
    _callback(client, code="code-2", state=_begin_login(client))

    me = client.get("/auth/me").json()
    assert me["user"]["id"] == account_id
    assert me["merged_from"] == guest_id
    assert client.get("/auth/me").json()["merged_from"] is None


def test_callback_with_mismatched_state(client, use_google):
    use_google(_google())
    _begin_login(client)

    assert _login_error(_callback(client, code="code-1", state="forged")) == "invalid_state"
    assert client.get("/auth/me").json()["user"] is None


def test_callback_without_login_state(client, use_google):
    use_google(_google())

    assert _login_error(_callback(client, code="code-1", state="anything")) == "invalid_state"


def test_callback_with_google_error(client, use_google):
    use_google(_google())
    state = _begin_login(client)

    assert _login_error(_callback(client, error="access_denied", state=state)) == "access_denied"


def test_callback_state_is_single_use(client, use_google):
    use_google(_google())
    state = _begin_login(client)
    _callback(client, code="code-1", state=state)
    client.post("/api/auth/logout")

    assert _login_error(_callback(client, code="code-1", state=state)) == "invalid_state"


@pytest.mark.parametrize("handler", [
    _google(token_status=400, token_body={"error": "invalid_grant"}),
    _google(token_body={"token_type": "Bearer"}),
    _google(profile={"email": "grace@example.com"}),
    _google(raises=httpx.ConnectError("network down")),
    _google(raises=httpx.ReadTimeout("too slow")),
], ids=["rejected-code", "no-access-token", "incomplete-profile", "connect-error", "timeout"])
def test_callback_exchange_failure_redirects(client, use_google, handler):
    use_google(handler)
    state = _begin_login(client)

    assert _login_error(_callback(client, code="code-1", state=state)) == "google_fetch_failed"
    assert client.get("/auth/me").json()["user"] is None


@pytest.mark.asyncio
async def test_fetch_user_info_wraps_malformed_body(oauth_settings):
    def handler(request):
        return httpx.Response(200, content=b"<html>not json</html>")

    client = GoogleOAuthClient(oauth_settings, httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    with pytest.raises(OAuthExchangeError) as exc_info:
        await client.fetch_user_info("code-1")
    assert isinstance(exc_info.value.__cause__, ValueError)


@pytest.mark.asyncio
async def test_fetch_user_info_wraps_transport_errors(oauth_settings):
    client = GoogleOAuthClient(
        oauth_settings,
        httpx.AsyncClient(transport=httpx.MockTransport(_google(raises=httpx.ConnectError("network down")))),
    )

    with pytest.raises(OAuthExchangeError) as exc_info:
        await client.fetch_user_info("code-1")
    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
