import base64
import json

from jose import jwt

# Supabase signs session access tokens with the project JWT secret (HS256).
SUPABASE_JWT_ALGORITHMS = ["HS256"]
BASE64_PREFIX = "base64-"


def decode_access_token(token: str, secret: str, audience: str) -> dict:
    return jwt.decode(token, secret, algorithms=SUPABASE_JWT_ALGORITHMS, audience=audience)


def decode_session_cookie(value: str) -> str | None:
    """Pull the access token out of a Supabase SSR `sb-<ref>-auth-token` cookie value.

    The value is JSON, optionally base64url encoded behind a `base64-` prefix. Older
    helpers stored a list whose first element is the access token.
    """
    raw = value
    if raw.startswith(BASE64_PREFIX):
        encoded = raw[len(BASE64_PREFIX):]
        try:
            raw = base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4)).decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            return None
    try:
        data = json.loads(raw)
    except ValueError:
        return None

    if isinstance(data, dict):
        token = data.get("access_token")
    elif isinstance(data, list) and data:
        token = data[0]
    else:
        token = None
    return token if isinstance(token, str) and token else None
