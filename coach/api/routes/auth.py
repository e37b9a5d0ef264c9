"""
Auth Routes - Google sign-in, sign-out and the current user.

Endpoints:
- GET  /api/auth/google          : Redirect to Google's account picker
- GET  /api/auth/google/callback : Finish sign-in, then redirect to the frontend
- POST /api/auth/logout          : Clear the session cookie
- GET  /auth/me                  : Current user and a one-shot merge notice
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from coach.api.access import Caller, Tier, login, logout, require, session_user_id
from coach.core.config import get_settings
from coach.core.logging_config import get_logger
from coach.core.tokens import compare_tokens, generate_token
from coach.models.schemas import SuccessResponse
from coach.services.auth_service import AuthService, get_auth_service
from coach.services.google_oauth import GoogleOAuthClient, OAuthExchangeError, get_google_oauth

logger = get_logger(__name__)

router = APIRouter(tags=["Auth"])

OAUTH_STATE_KEY = "oauth_state"
MERGED_FROM_KEY = "merged_from"


class CurrentUser(BaseModel):
    id: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    role: str
    external_identities: List[Dict[str, Any]]
    contact_methods: List[Dict[str, Any]]
    session_count: int


class MeResponse(BaseModel):
    user: Optional[CurrentUser] = None
    merged_from: Optional[str] = None


def _login_error(reason: str) -> RedirectResponse:
    return RedirectResponse(f"{get_settings().frontend_url}/login?error={reason}", status_code=302)


@router.get(
    "/api/auth/google",
    summary="Start Google sign-in",
    description="Redirects to Google. Returns 503 when OAuth is not configured.",
)
async def google_login(
    request: Request,
    oauth: GoogleOAuthClient = Depends(get_google_oauth),
    caller: Caller = Depends(require(Tier.PUBLIC)),
) -> RedirectResponse:
    state = generate_token()
    url = oauth.authorization_url(state)
    request.session[OAUTH_STATE_KEY] = state
    return RedirectResponse(url, status_code=302)


@router.get(
    "/api/auth/google/callback",
    summary="Google OAuth callback",
    description="""
    Exchanges the authorization code, reconciles the Google account with the
    anonymous session user (upgrade or merge) and signs the browser in.

    Always redirects: to the frontend on success, to `/login?error=...` otherwise.
    """,
)
async def google_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    oauth: GoogleOAuthClient = Depends(get_google_oauth),
    auth_service: AuthService = Depends(get_auth_service),
    caller: Caller = Depends(require(Tier.PUBLIC)),
) -> RedirectResponse:
    # 503 rather than a redirect when OAuth is off
    oauth.require_config()

    expected_state = request.session.pop(OAUTH_STATE_KEY, None)
    if error:
        logger.warning(f"Google returned an OAuth error: {error}")
        return _login_error("access_denied")
    if not code or not state or not expected_state or not compare_tokens(state, expected_state):
        logger.warning("OAuth callback with missing or mismatched state")
        return _login_error("invalid_state")

    try:
        user_info = await oauth.fetch_user_info(code)
    except OAuthExchangeError as e:
        logger.error(f"OAuth exchange failed: {e}")
        return _login_error("google_fetch_failed")

    try:
        result = auth_service.authenticate_google(user_info, session_user_id(request))
    except Exception as e:
        logger.exception(f"OAuth callback error: {e}")
        return _login_error("oauth_failed")

    login(request, result.user["id"])
    if result.merged_from:
        request.session[MERGED_FROM_KEY] = result.merged_from

    return RedirectResponse(get_settings().frontend_url, status_code=302)


@router.post("/api/auth/logout", response_model=SuccessResponse, summary="Sign out")
async def sign_out(request: Request, caller: Caller = Depends(require(Tier.PUBLIC))) -> SuccessResponse:
    logout(request)
    return SuccessResponse()


@router.get(
    "/auth/me",
    response_model=MeResponse,
    summary="Current user",
    description="""
    Returns the signed-in user, or `user: null`.

    `merged_from` is set once after a sign-in that folded an anonymous
    account into this one, then cleared.
    """,
)
async def me(
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
    caller: Caller = Depends(require(Tier.PUBLIC)),
) -> MeResponse:
    merged_from = request.session.pop(MERGED_FROM_KEY, None)

    if not caller.user_id:
        return MeResponse()

    profile = auth_service.get_profile(caller.user_id)
    if profile is None:
        # User was deleted; drop the stale cookie
        logout(request)
        return MeResponse()

    return MeResponse(user=CurrentUser(**profile), merged_from=merged_from)
