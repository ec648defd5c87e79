"""Application configuration loaded from environment variables.

Settings for the database connection and the verification code engine.
Uses pydantic-settings for validation and .env file support.
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_settings() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "verification_dev_password"  # nosec B105

# Upper bound matches the width of verification_codes.code
_MAX_CODE_LENGTH = 12


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "verification_engine"
    database_user: str = "verification_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD

    # Application
    environment: str = "development"

    # Verification codes
    verification_code_ttl_minutes: int = 10
    verification_code_length: int = 6
    # Minimum gap between successive sends for the same (email, purpose)
    verification_resend_interval_minutes: float = 1

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @model_validator(mode="after")
    def check_settings(self) -> "Settings":
        """Validate verification defaults and production security.

        Checks:
        - Code TTL must be positive (all environments)
        - Code length must fit the code column (all environments)
        - Resend interval must be non-negative (all environments)
        - Database password must not be the default in production
        """
        if self.verification_code_ttl_minutes <= 0:
            msg = (
                "VERIFICATION_CODE_TTL_MINUTES must be positive. "
                f"Got: {self.verification_code_ttl_minutes}"
            )
            raise ValueError(msg)

        if not 1 <= self.verification_code_length <= _MAX_CODE_LENGTH:
            msg = (
                f"VERIFICATION_CODE_LENGTH must be between 1 and {_MAX_CODE_LENGTH}. "
                f"Got: {self.verification_code_length}"
            )
            raise ValueError(msg)

        if self.verification_resend_interval_minutes < 0:
            msg = (
                "VERIFICATION_RESEND_INTERVAL_MINUTES cannot be negative. "
                f"Got: {self.verification_resend_interval_minutes}"
            )
            raise ValueError(msg)

        if (
            self.environment == "production"
            and self.database_password == _INSECURE_DEFAULT_PASSWORD
        ):
            msg = (
                "Cannot use default database password in production. "
                "Set DATABASE_PASSWORD environment variable to a secure value."
            )
            raise ValueError(msg)

        return self


settings = Settings()
