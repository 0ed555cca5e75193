from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    APP_NAME: str = "formquiz"

    # En local : SQLite. Sur un hébergeur : DATABASE_URL (PostgreSQL)
    DATABASE_URL: str = Field(default="sqlite:///./formquiz.sqlite3")

    # Sécurité
    SECRET_KEY: str = Field(default="change-me-in-production-please-0123456789")
    JWT_ALGORITHM: str = "HS256"
    LOGIN_TOKEN_HOURS: int = 24
    QR_LOGIN_TOKEN_HOURS: int = 6
    BCRYPT_ROUNDS: int = 12
    COOKIE_SECURE: bool = False
    COOKIE_SAMESITE: str = "lax"

    # Cache (None = mémoire du process)
    CACHE_URL: Optional[str] = None
    CACHE_LIFETIME: int = 60 * 5
    CACHE_MAXSIZE: int = 10_000

    # Pagination
    HISTORY_PAGE_SIZE: int = 5
    FORM_PAGE_SIZE: int = 7
    FORM_PAGE_SIZE_MAX: int = 10

    WS_PATH: str = "/connection"
    LOG_LEVEL: str = "INFO"
    SEED_DEMO: bool = False

    @property
    def database_url(self) -> str:
        # Certains hébergeurs fournissent "postgres://...", SQLAlchemy veut "postgresql://..."
        if self.DATABASE_URL.startswith("postgres://"):
            return self.DATABASE_URL.replace("postgres://", "postgresql://", 1)
        return self.DATABASE_URL


settings = Settings()
