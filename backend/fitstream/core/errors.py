"""Error taxonomy shared by services and routes.

Each error carries the HTTP status it maps to and a message that is safe to
return to clients; internal details belong in the logs only.
"""


class AppError(Exception):
    """Base app exception."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidRequest(AppError):
    """Client input failed validation."""

    status_code = 400
    default_message = "Invalid request"


class Unauthenticated(AppError):
    """No authenticated session accompanies the request."""

    status_code = 401
    default_message = "User not authenticated"


class MalformedEvent(AppError):
    """A verified webhook event is missing fields required to reconcile it."""

    status_code = 400
    default_message = "Missing required data in event"


class SignatureInvalid(AppError):
    """Webhook rejected before dispatch; Stripe does not retry 4xx."""

    status_code = 400
    default_message = "Invalid webhook signature"


class UpstreamError(AppError):
    """Stripe or Supabase call failed."""

    status_code = 500
    default_message = "Upstream service error"


class PersistenceError(AppError):
    """Database read or write failed; webhook deliveries are retried."""

    status_code = 500
    default_message = "Database error"


class ConfigError(AppError):
    """A required secret or identifier is not configured."""

    status_code = 500
    default_message = "Service is not configured"
