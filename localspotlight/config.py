from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = "sqlite:///./localspotlight.db"
    public_base_url: str = "http://localhost:3000"
    cookie_secure: bool = True
    log_level: str = "INFO"

    # Hosted auth platform (GoTrue-compatible REST API)
    supabase_url: str = "http://127.0.0.1:54321"
    supabase_anon_key: str | None = None
    supabase_service_role_key: str | None = None
    supabase_jwt_secret: str | None = None

    # Google Business Profile OAuth
    google_client_id: str | None = None
    google_client_secret: str | None = None
    google_redirect_uri: str | None = None
    google_refresh_token_secret: str | None = None

    # AI providers
    openai_api_key: str | None = None
    runware_api_key: str | None = None

    # Cron / service secrets
    publish_posts_cron_secret: str | None = None
    automation_cron_secret: str | None = None
    cron_secret: str | None = None

    # Poller
    publish_function_url: str | None = None
    scheduler_interval_seconds: int = 10

    # Optional remote log shipping
    axiom_token: str | None = None
    axiom_dataset: str | None = None
    axiom_org_id: str | None = None
    axiom_url: str = "https://api.axiom.co"

    @property
    def resolved_publish_function_url(self) -> str:
        if self.publish_function_url:
            return self.publish_function_url
        return f"{self.public_base_url.rstrip('/')}/api/cron/publish-posts"


settings = Settings()

REQUIRED_SECRETS = [
    "supabase_jwt_secret",
    "supabase_service_role_key",
    "google_client_id",
    "google_client_secret",
    "google_refresh_token_secret",
    "openai_api_key",
    "publish_posts_cron_secret",
]


def missing_secrets() -> list[str]:
    return [name.upper() for name in REQUIRED_SECRETS if not getattr(settings, name)]
