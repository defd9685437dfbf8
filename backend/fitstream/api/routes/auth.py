import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse

from fitstream.core.config import Settings, get_settings
from fitstream.core.deps import get_current_identity, get_session_resolver
from fitstream.core.errors import ConfigError, UpstreamError
from fitstream.core.session import ACCESS_COOKIE, REFRESH_COOKIE, Identity, SessionResolver
from fitstream.schemas.auth import MeResponse
from fitstream.services.supabase_auth import SupabaseAuthClient, get_supabase_auth

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

REFRESH_COOKIE_MAX_AGE = 60 * 60 * 24 * 30
AUTH_ERROR_PATH = "auth/auth-code-error"


def safe_next_path(value: str | None) -> str:
    """Only same-site relative paths are valid redirect targets."""
    if not value or not value.startswith("/") or value.startswith("//") or "\\" in value:
        return "/"
    return value


@router.get("/callback")
def auth_callback(
    request: Request,
    settings: Settings = Depends(get_settings),
    auth_client: SupabaseAuthClient = Depends(get_supabase_auth),
    resolver: SessionResolver = Depends(get_session_resolver),
):
    """Finish the OAuth round trip: trade the one-time code for a Supabase session."""
    code = request.query_params.get("code")
    next_path = safe_next_path(request.query_params.get("next"))
    error_url = f"{settings.site_url}{AUTH_ERROR_PATH}"

    if not code:
        logger.warning("Auth callback called without a code parameter")
        return RedirectResponse(url=error_url)

    verifier_cookie = f"{resolver.ssr_cookie_name}-code-verifier"
    code_verifier = request.cookies.get(verifier_cookie)
    try:
        session = auth_client.exchange_code_for_session(code, code_verifier)
    except (UpstreamError, ConfigError) as exc:
        logger.warning("Auth callback code exchange failed: %s", exc.message)
        return RedirectResponse(url=error_url)

    resp = RedirectResponse(url=f"{settings.site_url}{next_path.lstrip('/')}")
    secure = settings.ENVIRONMENT.lower() != "development"
    resp.set_cookie(
        ACCESS_COOKIE,
        session.access_token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=session.expires_in or 3600,
    )
    if session.refresh_token:
        resp.set_cookie(
            REFRESH_COOKIE,
            session.refresh_token,
            httponly=True,
            samesite="lax",
            secure=secure,
            max_age=REFRESH_COOKIE_MAX_AGE,
        )
    resp.delete_cookie(verifier_cookie)
    if session.user:
        logger.info("Session established for user %s", session.user.id)
    return resp


@router.post("/signout")
def sign_out(
    request: Request,
    auth_client: SupabaseAuthClient = Depends(get_supabase_auth),
    resolver: SessionResolver = Depends(get_session_resolver),
):
    token = resolver.extract_token(request)
    if token:
        try:
            auth_client.sign_out(token)
        except (UpstreamError, ConfigError) as exc:
            # Local cookies are cleared regardless; the token expires on its own.
            logger.warning("Supabase sign-out failed: %s", exc.message)
    resp = JSONResponse({"status": "ok"})
    resp.delete_cookie(ACCESS_COOKIE)
    resp.delete_cookie(REFRESH_COOKIE)
    return resp


@router.get("/me", response_model=MeResponse)
def me(identity: Identity = Depends(get_current_identity)):
    return identity
