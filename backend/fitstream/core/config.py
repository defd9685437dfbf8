from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Ignore unknown env vars so the frontend's .env (NEXT_PUBLIC_* keys) can be shared.
    # When running from `backend/`, users often edit the repo-root .env; load both.
    model_config = SettingsConfigDict(env_file=(".env", "../.env"), case_sensitive=True, extra="ignore")

    PROJECT_NAME: str = "Fitstream"
    ENVIRONMENT: str = "development"
    API_PREFIX: str = ""
    LOG_LEVEL: str = "INFO"

    BACKEND_CORS_ORIGINS: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    ALLOWED_HOSTS: list[str] = Field(default_factory=lambda: ["localhost", "127.0.0.1"])
    ENABLE_API_DOCS: bool = False

    # Public base URL of the site; used for Stripe redirect targets and auth redirects.
    SITE_URL: str = "http://localhost:3000/"

    DATABASE_URL: str = ""
    POSTGRES_SERVER: str = "db"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "postgres"
    AUTO_CREATE_TABLES: bool = True

    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: str = ""
    # Project JWT secret; when set, access tokens are verified locally instead of asking Supabase.
    SUPABASE_JWT_SECRET: str = ""
    SUPABASE_JWT_AUDIENCE: str = "authenticated"

    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_API_VERSION: str = ""
    STRIPE_TIMEOUT_SECONDS: int = 20
    STRIPE_MAX_NETWORK_RETRIES: int = 2
    CHECKOUT_MODE: str = "subscription"
    CHECKOUT_RATE_LIMIT: str = "10/minute"

    STRIPE_PRICE_ID_BASIC: str = ""
    STRIPE_PRICE_ID_STANDARD: str = ""
    STRIPE_PRICE_ID_PREMIUM: str = ""

    @field_validator("API_PREFIX")
    @classmethod
    def _normalize_prefix(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if value and not value.startswith("/"):
            raise ValueError("API_PREFIX must start with '/'")
        return value

    @field_validator("CHECKOUT_MODE")
    @classmethod
    def _validate_mode(cls, value: str) -> str:
        if value not in {"subscription", "payment"}:
            raise ValueError("CHECKOUT_MODE must be 'subscription' or 'payment'")
        return value

    @model_validator(mode="after")
    def _prod_guards(self):
        if self.ENVIRONMENT.lower() == "production":
            if self.ENABLE_API_DOCS:
                raise ValueError("ENABLE_API_DOCS must be false in production")
            if any(h == "*" for h in self.ALLOWED_HOSTS):
                raise ValueError('ALLOWED_HOSTS must not contain "*" in production')
            if not self.STRIPE_WEBHOOK_SECRET:
                raise ValueError("STRIPE_WEBHOOK_SECRET is required in production")
        return self

    @property
    def site_url(self) -> str:
        url = self.SITE_URL.strip() or "http://localhost:3000/"
        if "http" not in url:
            url = f"https://{url}"
        if not url.endswith("/"):
            url = f"{url}/"
        return url

    @property
    def supabase_project_ref(self) -> str:
        # https://<ref>.supabase.co -> <ref>; used to find the SSR auth cookies.
        host = self.SUPABASE_URL.split("://", 1)[-1].split("/", 1)[0]
        return host.split(".", 1)[0]

    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
