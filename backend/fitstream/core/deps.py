from fastapi import Depends, Request

from fitstream.core.config import Settings, get_settings
from fitstream.core.errors import Unauthenticated
from fitstream.core.session import Identity, SessionResolver
from fitstream.services.supabase_auth import SupabaseAuthClient, get_supabase_auth


def get_session_resolver(
    settings: Settings = Depends(get_settings),
    auth_client: SupabaseAuthClient = Depends(get_supabase_auth),
) -> SessionResolver:
    return SessionResolver(settings, auth_client)


def get_optional_identity(
    request: Request,
    resolver: SessionResolver = Depends(get_session_resolver),
) -> Identity | None:
    return resolver.resolve(request)


def get_current_identity(identity: Identity | None = Depends(get_optional_identity)) -> Identity:
    if identity is None:
        raise Unauthenticated()
    return identity
