"""Application configuration."""
import sys
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql://compliance_user:compliance_pass@db:5432/compliance_db"

    # Environment configuration
    ENVIRONMENT: str = "development"  # "development" or "production"
    LOG_LEVEL: str = "INFO"

    # CORS configuration - comma-separated origins
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:5176"

    # Public base URL of the survey-taking frontend; tokens are appended as
    # {SURVEY_BASE_URL}/compliance-survey/{token}
    SURVEY_BASE_URL: str = "http://localhost:5176"

    # Bytes of randomness per survey access token (hex encoded, so 2x chars)
    SURVEY_TOKEN_BYTES: int = 32

    # External collaborator call limits
    DIRECTORY_TIMEOUT_SECONDS: float = 5.0
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0
    NOTIFICATION_MAX_WORKERS: int = 8

    class Config:
        env_file = ".env"

    def get_cors_origins(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    def survey_url(self, token: str) -> str:
        """Build the public survey URL for an access token."""
        return f"{self.SURVEY_BASE_URL.rstrip('/')}/compliance-survey/{token}"

    def validate_production_settings(self) -> None:
        """Validate settings for production environment.

        Raises SystemExit if critical settings are misconfigured.
        """
        if self.ENVIRONMENT == "production":
            if "localhost" in self.SURVEY_BASE_URL:
                print("FATAL: SURVEY_BASE_URL points at localhost in production!", file=sys.stderr)
                print("Set SURVEY_BASE_URL to the public survey frontend.", file=sys.stderr)
                sys.exit(1)

            if self.SURVEY_TOKEN_BYTES < 16:
                print("FATAL: SURVEY_TOKEN_BYTES must be at least 16 in production!", file=sys.stderr)
                sys.exit(1)


settings = Settings()
# Validate on startup
settings.validate_production_settings()
