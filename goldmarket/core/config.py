from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

ALLOWED_ENVIRONMENTS = {"development", "production", "test"}


class Settings(BaseSettings):
    """Application settings loaded from environment with defaults.

    Environment variable mapping follows pydantic's rules (e.g., APP_NAME, DEBUG,
    DATA_DIR, DB_FILENAME, SESSION_TIMEOUT_SECONDS, RATE_LIMIT_MAX_REQUESTS).
    """

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Basic app metadata
    app_name: str = "Princess Gold Price Desk"
    debug: bool = False
    version: str = "1.0.0"
    environment: str = "production"

    # Data & persistence
    data_dir: Path = Path("data")
    db_filename: str = "goldmarket.sqlite3"
    db_path: Optional[Path] = None  # derived if not provided
    db_timeout_seconds: float = 10.0

    # Sessions & cookies
    session_timeout_seconds: int = 3600
    cookie_max_age_seconds: int = 86400
    cookie_secure: Optional[bool] = None  # derived from environment if not provided
    bcrypt_rounds: int = 12

    # Rate limiting / brute force (login limits may be overridden in store settings)
    rate_limit_window_seconds: int = 900
    rate_limit_max_requests: int = 100
    login_rate_limit_max_requests: int = 5
    auto_update_rate_limit_max_requests: int = 10
    max_login_attempts: int = 5
    lockout_duration_seconds: int = 900

    # CORS
    cors_origins: List[str] = ["http://localhost:5500", "http://127.0.0.1:5500"]

    # Bootstrap admin, created on first start when no admin exists
    admin_username: str = "admin"
    admin_password: str = "Admin@12345"
    admin_email: Optional[str] = "admin@princessgold.com"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    def init_post_load(self) -> None:
        """Finalize derived fields and ensure directories exist."""
        if self.environment not in ALLOWED_ENVIRONMENTS:
            raise ValueError(
                f"Unsupported environment '{self.environment}'. Allowed: {ALLOWED_ENVIRONMENTS}"
            )
        if self.db_path is None:
            self.db_path = self.data_dir / self.db_filename
        if self.cookie_secure is None:
            self.cookie_secure = self.environment == "production"
        # Ensure persistence directory exists
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    settings.init_post_load()
    return settings
