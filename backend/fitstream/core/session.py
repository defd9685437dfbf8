"""Resolve the Supabase-authenticated identity behind a request.

There is one contract: `SessionResolver.resolve(request)` returns the
caller's `Identity` or None. Where the token came from (bearer header,
our own session cookie, or the Supabase SSR cookie) stays in here.
"""
import logging
from dataclasses import dataclass

from fastapi import Request
from jose import JWTError

from fitstream.core.config import Settings
from fitstream.core.errors import ConfigError, UpstreamError
from fitstream.core.security import decode_access_token, decode_session_cookie
from fitstream.services.supabase_auth import SupabaseAuthClient

logger = logging.getLogger(__name__)

ACCESS_COOKIE = "sb-access-token"
REFRESH_COOKIE = "sb-refresh-token"


@dataclass(frozen=True)
class Identity:
    id: str
    email: str | None = None


class SessionResolver:
    def __init__(self, settings: Settings, auth_client: SupabaseAuthClient):
        self._jwt_secret = settings.SUPABASE_JWT_SECRET
        self._audience = settings.SUPABASE_JWT_AUDIENCE
        self._ssr_cookie = f"sb-{settings.supabase_project_ref}-auth-token"
        self._auth_client = auth_client

    @property
    def ssr_cookie_name(self) -> str:
        return self._ssr_cookie

    def extract_token(self, request: Request) -> str | None:
        authorization = request.headers.get("authorization") or ""
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()

        token = request.cookies.get(ACCESS_COOKIE)
        if token:
            return token

        # Large SSR sessions are split across `<name>.0`, `<name>.1`, ...
        raw = request.cookies.get(self._ssr_cookie)
        if raw is None:
            chunks = []
            while (chunk := request.cookies.get(f"{self._ssr_cookie}.{len(chunks)}")) is not None:
                chunks.append(chunk)
            raw = "".join(chunks) or None
        return decode_session_cookie(raw) if raw else None

    def resolve(self, request: Request) -> Identity | None:
        token = self.extract_token(request)
        if not token:
            return None
        if self._jwt_secret:
            return self._verify_locally(token)
        return self._verify_remotely(token)

    def _verify_locally(self, token: str) -> Identity | None:
        try:
            claims = decode_access_token(token, self._jwt_secret, self._audience)
        except JWTError as exc:
            logger.info("Rejected session token: %s", exc)
            return None
        subject = claims.get("sub")
        if not subject:
            return None
        return Identity(id=str(subject), email=claims.get("email"))

    def _verify_remotely(self, token: str) -> Identity | None:
        try:
            user = self._auth_client.get_user(token)
        except (UpstreamError, ConfigError) as exc:
            logger.warning("Could not verify session with Supabase: %s", exc.message)
            return None
        return Identity(id=user.id, email=user.email) if user else None
