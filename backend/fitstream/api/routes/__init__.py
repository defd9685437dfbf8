from fitstream.api.routes import auth, billing

__all__ = [
    "auth",
    "billing",
]
