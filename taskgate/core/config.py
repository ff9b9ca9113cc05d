"""Configuration management for taskgate."""

from dateutil.relativedelta import relativedelta
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # SQLite Configuration
    sqlite_db_path: str = Field(default="./data/taskgate.db", description="Path to the SQLite database file")
    sqlite_busy_timeout_seconds: float = Field(
        default=5.0, description="How long a writer waits for the database lock before failing"
    )

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")

    # Deployment
    environment: str = Field(default="development", description="Deployment environment name")

    # Principal tokens
    secret_key: str = Field(default="dev-secret-change-me", description="Secret used to sign principal tokens")
    principal_token_max_age_seconds: int = Field(
        default=86400, description="Maximum age of a principal token before it must be reissued"
    )

    # Audit trail
    audit_log_list_limit: int = Field(default=100, description="Maximum number of audit entries returned by a listing")

    @property
    def is_production(self) -> bool:
        """Whether the service runs in production."""
        return self.environment.lower() == "production"

    def require_credential(self, field_name: str, service_name: str) -> str:
        """Validate that a required credential is set, raising a clear error if missing.

        Args:
            field_name: Name of the field to check
            service_name: Human-readable service name for error message

        Returns:
            The credential value

        Raises:
            ValueError: If the credential is None or empty
        """
        value = getattr(self, field_name)
        if not value:
            raise ValueError(
                f"{service_name} credential not configured. "
                f"Set {field_name.upper()} environment variable or add to .env file."
            )
        return value


# Application Constants
class Constants:
    """Application-wide constants."""

    # Task field limits
    TASK_TITLE_MAX_LENGTH: int = 200
    TASK_DESCRIPTION_MAX_LENGTH: int = 2000

    # Group field limits
    GROUP_NAME_MAX_LENGTH: int = 200
    GROUP_DESCRIPTION_MAX_LENGTH: int = 1000

    # User field limits
    FIRST_NAME_MAX_LENGTH: int = 100
    LAST_NAME_MAX_LENGTH: int = 200

    # Audit log limits
    AUDIT_DESCRIPTION_MAX_LENGTH: int = 2000

    # Due dates may be set at most this far ahead of today
    DUE_DATE_HORIZON: relativedelta = relativedelta(years=1)

    # Pagination
    DEFAULT_PER_PAGE_LIMIT: int = 100


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
