from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: Optional[str] = None  # Required for admin auth calls and the api-keys edge function

    # OpenAI (platform key, used when an agent has no user key)
    openai_api_key: Optional[str] = None
    default_chat_model: str = "gpt-4o-mini"
    nlp_model: str = "gpt-4o"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536

    # Email (Resend); without a key emails are only logged
    resend_api_key: Optional[str] = None
    email_from: str = "noreply@ai-spot.app"
    feedback_receiver: Optional[str] = None

    # Website scraping for knowledge sources
    scrape_timeout_seconds: float = 15.0
    scrape_user_agent: str = "Mozilla/5.0 (compatible; AISpotBot/1.0)"
    scraper_api_key: Optional[str] = None  # page fetches go through ScraperAPI when set
    scraper_api_timeout_seconds: float = 30.0

    # Booking reminders
    enable_reminder_scheduler: bool = False
    reminder_interval_seconds: int = 300

    # App
    app_name: str = "ai-spot-backend"
    app_url: str = "http://localhost:3000"
    api_url: str = "http://localhost:8000"  # public base URL of this API, used in webhook URLs
    debug: bool = False
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    rate_limit: str = "100/minute"  # slowapi format, e.g. "100/minute"
    rate_limit_enabled: bool = True
    chat_rate_limit: int = 20  # chat messages per minute per user/session
    public_rate_limit: int = 100  # public test-link requests per minute per IP

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",
        extra="ignore"
    )


settings = Settings()
