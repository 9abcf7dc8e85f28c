"""
# Configuration Management Module

Settings for the Community Microhelp API, built on **Pydantic Settings**.

## Loading Hierarchy

Values are resolved in this order (higher overrides lower):

1. Environment variables
2. The file named by `COMMUNITY_MICROHELP_CONFIG_PATH`
3. A `.cmh` file in the project root
4. A `.env` file in the project root
5. Field defaults

The discovered file is also fed through `python-dotenv` so that tooling run
outside the app (uvicorn reload workers, scripts) sees the same values.

## Usage

```python
from community_microhelp.config import get_settings
from community_microhelp.main import create_app

settings = get_settings()
app = create_app(settings)
```

Settings are never read from a module global by request handlers. The
instance built here is handed to `create_app` and exposed through
`request.app.state.settings`.
"""

from functools import lru_cache
import os
from pathlib import Path
from typing import Any, List, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Constants ---
CMH_FILENAME: str = ".cmh"
DEFAULT_ENV_FILENAME: str = ".env"
CONFIG_ENV_VAR: str = "COMMUNITY_MICROHELP_CONFIG_PATH"
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent.parent

VALID_ROLES = ("member", "moderator", "admin")


# --- Config file discovery (no logging) ---
def get_config_path() -> Optional[str]:
    """
    Determines the configuration file path based on a predefined precedence order.

    1.  **Environment Variable**: `COMMUNITY_MICROHELP_CONFIG_PATH` (if set and file exists).
    2.  **CMH Config**: `.cmh` file in the project root directory.
    3.  **Dotenv Config**: `.env` file in the project root directory.
    4.  **Fallback**: `None`, meaning environment variables only.

    Returns:
        Optional[str]: The absolute path to the configuration file, or `None` if not found.
    """
    env_path: Optional[str] = os.environ.get(CONFIG_ENV_VAR)
    if env_path and os.path.exists(env_path):
        return env_path
    cmh_path: Path = PROJECT_ROOT / CMH_FILENAME
    if cmh_path.exists():
        return str(cmh_path)
    env_path_file: Path = PROJECT_ROOT / DEFAULT_ENV_FILENAME
    if env_path_file.exists():
        return str(env_path_file)
    return None


CONFIG_PATH: Optional[str] = get_config_path()
if CONFIG_PATH:
    load_dotenv(dotenv_path=CONFIG_PATH, override=False)


class Settings(BaseSettings):
    """
    Application configuration settings model.

    **Configuration Groups:**
    *   **Server**: Host, port, debug mode, public URLs.
    *   **Security**: JWT keys and lifetimes, password pepper, bcrypt cost.
    *   **Database**: MongoDB connection details and pool sizing.
    *   **Features**: Email verification, dev-only role switching, debug tokens.
    *   **Limits**: Rate limits, upload limits, geo search bounds.
    *   **Email**: SMTP delivery for verification and reset links.
    *   **Logging**: Level and log directory.
    """

    model_config = SettingsConfigDict(
        env_file=CONFIG_PATH if CONFIG_PATH else None,
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="allow",
    )

    # Server configuration
    HOST: str = "0.0.0.0"
    PORT: int = 4000
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Public URL of this API, used to build absolute attachment URLs
    BASE_URL: str = "http://localhost:4000"
    # Client URL used in verification and password reset links
    APP_BASE_URL: str = "http://localhost:8081"

    # JWT configuration
    SECRET_KEY: SecretStr = Field(default=SecretStr(""), validate_default=True)
    REFRESH_TOKEN_SECRET_KEY: SecretStr = SecretStr("")
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 7 * 24 * 60
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30

    # Password hashing
    PASSWORD_PEPPER: SecretStr = SecretStr("")
    BCRYPT_ROUNDS: int = 10

    # MongoDB configuration
    MONGODB_URL: str = Field(default="", validate_default=True)
    MONGODB_DATABASE: str = "community_microhelp"
    MONGODB_CONNECTION_TIMEOUT: int = 10000
    MONGODB_SERVER_SELECTION_TIMEOUT: int = 5000
    MONGODB_MAX_POOL_SIZE: int = 50
    MONGODB_MIN_POOL_SIZE: int = 5
    MONGODB_USERNAME: Optional[str] = None
    MONGODB_PASSWORD: Optional[SecretStr] = None

    # Feature flags
    ALLOW_UNSAFE: bool = False  # enables PATCH /me/role
    REQUIRE_EMAIL_VERIFICATION: bool = True
    EXPOSE_DEBUG_TOKENS: bool = False  # never enable outside development
    METRICS_ENABLED: bool = True
    RATE_LIMIT_ENABLED: bool = True

    # Limits
    RATE_LIMIT: str = "200 per 15 seconds"
    MAX_UPLOAD_FILES: int = 5
    MAX_UPLOAD_SIZE_BYTES: int = 10 * 1024 * 1024
    DEFAULT_RADIUS_KM: float = 10.0
    MAX_RADIUS_KM: float = 100.0
    DEFAULT_POSTS_LIMIT: int = 50
    MAX_POSTS_LIMIT: int = 200

    # Token lifetimes
    EMAIL_VERIFICATION_TTL_HOURS: int = 24
    PASSWORD_RESET_TTL_MINUTES: int = 60

    # Uploads
    UPLOAD_DIR: str = str(PROJECT_ROOT / "uploads")

    # Email (SMTP)
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[SecretStr] = None
    SMTP_USE_SSL: bool = False
    SMTP_FROM: str = "no-reply@community-microhelp.local"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = str(PROJECT_ROOT / "logs")

    # CORS
    CORS_ORIGINS: str = "*"

    @field_validator("SECRET_KEY", mode="before")
    @classmethod
    def no_hardcoded_secrets(cls, v: Any, info: Any) -> Any:
        """
        Validates that the signing secret is set and not a placeholder.

        Raises:
            ValueError: If the value is empty or contains placeholder text.
        """
        if isinstance(v, SecretStr):
            v = v.get_secret_value()
        if not v or "change" in str(v).lower() or not str(v).strip():
            raise ValueError(f"{info.field_name} must be set via environment or .cmh and not hardcoded!")
        return v

    @field_validator("MONGODB_URL", mode="before")
    @classmethod
    def no_empty_urls(cls, v: Any, info: Any) -> Any:
        if not v or not str(v).strip():
            raise ValueError(f"{info.field_name} must be set via environment or .cmh and not empty!")
        return v

    @field_validator(
        "MAX_UPLOAD_FILES",
        "MAX_UPLOAD_SIZE_BYTES",
        "MAX_POSTS_LIMIT",
        "DEFAULT_POSTS_LIMIT",
        "ACCESS_TOKEN_EXPIRE_MINUTES",
        "BCRYPT_ROUNDS",
        mode="before",
    )
    @classmethod
    def positive_limits(cls, v: Any, info: Any) -> Any:
        if int(v) <= 0:
            raise ValueError(f"{info.field_name} must be a positive integer")
        return v

    @property
    def is_production(self) -> bool:
        """`True` when `ENVIRONMENT` is production and debug mode is off."""
        return self.ENVIRONMENT.lower() == "production" and not self.DEBUG

    @property
    def refresh_secret(self) -> str:
        """Refresh token signing key, falling back to `SECRET_KEY` when unset."""
        value = self.REFRESH_TOKEN_SECRET_KEY.get_secret_value()
        return value or self.SECRET_KEY.get_secret_value()

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Build the process-wide settings instance for the entry point."""
    return Settings()
