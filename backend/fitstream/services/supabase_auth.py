"""Supabase Auth calls this service needs: PKCE code exchange, token lookup and sign-out."""
import logging
from dataclasses import dataclass
from functools import lru_cache

from supabase import AuthApiError, AuthError, Client, ClientOptions, create_client

from fitstream.core.config import Settings, get_settings
from fitstream.core.errors import ConfigError, UpstreamError

logger = logging.getLogger(__name__)

# Supabase answers these for tokens it does not accept.
_REJECTED_TOKEN_STATUSES = (401, 403)


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str | None = None


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    refresh_token: str | None
    expires_in: int | None
    user: AuthUser | None


class SupabaseAuthClient:
    def __init__(self, settings: Settings):
        self._url = settings.SUPABASE_URL
        self._anon_key = settings.SUPABASE_ANON_KEY

    def _client(self) -> Client:
        if not self._url or not self._anon_key:
            raise ConfigError("Supabase auth is not configured")
        # A fresh client per call: the SDK keeps whatever session it last saw in memory.
        return create_client(
            self._url,
            self._anon_key,
            options=ClientOptions(persist_session=False, auto_refresh_token=False),
        )

    def exchange_code_for_session(self, auth_code: str, code_verifier: str | None) -> AuthSession:
        client = self._client()
        try:
            res = client.auth.exchange_code_for_session({"auth_code": auth_code, "code_verifier": code_verifier or ""})
        except AuthError as exc:
            logger.warning("Supabase code exchange rejected: %s", exc)
            raise UpstreamError("Supabase token exchange failed") from exc

        session = res.session
        if session is None or not session.access_token:
            raise UpstreamError("Supabase token exchange failed")
        user = session.user or res.user
        return AuthSession(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            expires_in=session.expires_in,
            user=AuthUser(id=user.id, email=user.email) if user else None,
        )

    def get_user(self, access_token: str) -> AuthUser | None:
        """Ask Supabase who owns the token; None when the token is not accepted."""
        client = self._client()
        try:
            res = client.auth.get_user(access_token)
        except AuthApiError as exc:
            if exc.status in _REJECTED_TOKEN_STATUSES:
                return None
            raise UpstreamError("Supabase user lookup failed") from exc
        except AuthError as exc:
            raise UpstreamError("Supabase user lookup failed") from exc

        user = res.user if res else None
        if user is None or not user.id:
            return None
        return AuthUser(id=user.id, email=user.email)

    def sign_out(self, access_token: str) -> None:
        client = self._client()
        try:
            client.auth.admin.sign_out(access_token)
        except AuthApiError as exc:
            # Already expired or revoked, which is the goal anyway.
            if exc.status in (*_REJECTED_TOKEN_STATUSES, 404):
                return
            raise UpstreamError("Supabase sign-out failed") from exc
        except AuthError as exc:
            raise UpstreamError("Supabase sign-out failed") from exc


@lru_cache
def get_supabase_auth() -> SupabaseAuthClient:
    return SupabaseAuthClient(get_settings())
