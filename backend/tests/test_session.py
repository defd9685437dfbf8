import base64
import json

from starlette.requests import Request

from conftest import FakeSupabaseAuth, make_token
from fitstream.core.config import get_settings
from fitstream.core.session import Identity, SessionResolver
from fitstream.services.supabase_auth import AuthUser

SSR_COOKIE = "sb-testref-auth-token"


def make_request(headers: dict[str, str] | None = None, cookies: dict[str, str] | None = None) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    if cookies:
        raw.append((b"cookie", "; ".join(f"{k}={v}" for k, v in cookies.items()).encode()))
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw})


def resolver(**overrides) -> SessionResolver:
    settings = get_settings().model_copy(update=overrides)
    return SessionResolver(settings, FakeSupabaseAuth())


def ssr_cookie_value(token: str) -> str:
    session = json.dumps({"access_token": token, "refresh_token": "r1", "token_type": "bearer"})
    return "base64-" + base64.urlsafe_b64encode(session.encode()).decode().rstrip("=")


def test_bearer_token_resolves_identity():
    request = make_request(headers={"Authorization": f"Bearer {make_token('u1', 'a@example.com')}"})

    assert resolver().resolve(request) == Identity(id="u1", email="a@example.com")


def test_access_cookie_resolves_identity():
    request = make_request(cookies={"sb-access-token": make_token("u2")})

    assert resolver().resolve(request).id == "u2"


def test_supabase_ssr_cookie_resolves_identity():
    request = make_request(cookies={SSR_COOKIE: ssr_cookie_value(make_token("u3"))})

    assert resolver().resolve(request).id == "u3"


def test_chunked_ssr_cookie_resolves_identity():
    value = ssr_cookie_value(make_token("u4"))
    middle = len(value) // 2
    request = make_request(cookies={f"{SSR_COOKIE}.0": value[:middle], f"{SSR_COOKIE}.1": value[middle:]})

    assert resolver().resolve(request).id == "u4"


def test_missing_token_is_absent():
    assert resolver().resolve(make_request()) is None


def test_expired_token_is_absent():
    request = make_request(headers={"Authorization": f"Bearer {make_token(expires_in=-60)}"})

    assert resolver().resolve(request) is None


def test_wrong_audience_is_absent():
    request = make_request(headers={"Authorization": f"Bearer {make_token(audience='anon')}"})

    assert resolver().resolve(request) is None


def test_garbage_cookie_is_absent():
    request = make_request(cookies={SSR_COOKIE: "base64-!!!not-json"})

    assert resolver().resolve(request) is None


def test_without_jwt_secret_supabase_is_asked():
    auth = FakeSupabaseAuth()
    auth.users["opaque-token"] = AuthUser(id="u5", email="u5@example.com")
    settings = get_settings().model_copy(update={"SUPABASE_JWT_SECRET": ""})
    remote = SessionResolver(settings, auth)

    assert remote.resolve(make_request(headers={"Authorization": "Bearer opaque-token"})) == Identity("u5", "u5@example.com")
    assert remote.resolve(make_request(headers={"Authorization": "Bearer unknown"})) is None
