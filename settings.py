from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # `.env.prod` takes priority over `.env`
        env_file=(".env", ".env.prod")
    )

    # Auth / session. With auth disabled the X-User-Id header names the caller.
    auth_enabled: bool = False
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    access_token_ttl_minutes: int = 60
    admin_emails: List[str] = []

    # File storage
    upload_dir: str = "./storage"
    cv_max_bytes: int = 2 * 1024 * 1024
    image_max_bytes: int = 10 * 1024 * 1024

    # Outgoing mail
    mail_from: str = "noreply@jobboard.local"

    # Public base URL, used for post links in notification payloads
    app_base_url: str = "http://localhost:8000"  # Default for local dev
    cors_origins: List[str] = [
        "http://localhost",
        "http://localhost:8000",
        "http://127.0.0.1",
        "http://127.0.0.1:8000",
    ]


@lru_cache()
def get_settings() -> Settings:
    return Settings()
