from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: Optional[str] = None  # Used by the background unlock poller

    # Remote calls
    remote_timeout_seconds: float = 10.0

    # Groups
    join_code_max_attempts: int = 10

    # Capsules
    capsule_poller_enabled: bool = False
    capsule_poll_interval_seconds: float = 60.0
    attachment_dir: str = "./data/attachments"
    attachment_wait_seconds: float = 20.0
    notification_retention_days: float = 7.0  # ready capsules older than this are not announced again

    # App
    app_name: str = "keepsake"
    debug: bool = False
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000,http://127.0.0.1:5173"
    rate_limit: str = "100/minute"  # slowapi format, e.g. "100/minute"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",  # No prefix needed
        extra="ignore"
    )


settings = Settings()
