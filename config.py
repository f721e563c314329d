"""
Environment configuration for the Portfolio API.

Values come from environment variables; a local .env file is read first
but never overrides variables that are already set.
"""
import os
from functools import lru_cache
from pathlib import Path
from typing import List

PLACEHOLDER_EMAIL_VALUES = {"smtp.example.com", "placeholder@example.com", "placeholder"}


def _load_dotenv():
    env_path = Path(__file__).parent / ".env"
    if env_path.exists():
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, value = line.split("=", 1)
                    key = key.strip()
                    value = value.strip()
                    if key and value and key not in os.environ:
                        os.environ[key] = value


_load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    def __init__(self):
        # Database
        self.database_url: str = os.environ.get("DATABASE_URL", "mongodb://localhost:27017")
        self.database_name: str = os.environ.get("DATABASE_NAME", "portfolio_hub")

        # Server
        self.environment: str = os.environ.get("ENVIRONMENT", "development").lower()
        self.log_level: str = os.environ.get("LOG_LEVEL", "INFO").upper()
        self.cors_origins: List[str] = [
            o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()
        ]
        self.app_url: str = os.environ.get("APP_URL", "http://localhost:3000").rstrip("/")

        # Sessions
        self.session_ttl_hours: int = int(os.environ.get("SESSION_TTL_HOURS", "168"))

        # Blob storage
        self.cloudinary_cloud_name: str = os.environ.get("CLOUDINARY_CLOUD_NAME", "")
        self.cloudinary_api_key: str = os.environ.get("CLOUDINARY_API_KEY", "")
        self.cloudinary_api_secret: str = os.environ.get("CLOUDINARY_API_SECRET", "")
        self.upload_folder: str = os.environ.get("UPLOAD_FOLDER", "portfoliohub")
        self.max_upload_bytes: int = int(os.environ.get("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))

        # Email
        self.email_server_host: str = os.environ.get("EMAIL_SERVER_HOST", "")
        self.email_server_port: int = int(os.environ.get("EMAIL_SERVER_PORT", "587"))
        self.email_server_user: str = os.environ.get("EMAIL_SERVER_USER", "")
        self.email_server_password: str = os.environ.get("EMAIL_SERVER_PASSWORD", "")
        self.email_from: str = os.environ.get("EMAIL_FROM", "no-reply@portfoliohub.com")

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def has_cloudinary_credentials(self) -> bool:
        """Check if all three Cloudinary credentials are configured."""
        return bool(self.cloudinary_cloud_name and self.cloudinary_api_key and self.cloudinary_api_secret)

    @property
    def uses_placeholder_email(self) -> bool:
        """True when SMTP credentials are missing or left at their placeholder values."""
        values = (self.email_server_host, self.email_server_user, self.email_server_password)
        return any(not v or v in PLACEHOLDER_EMAIL_VALUES for v in values)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
