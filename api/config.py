"""
API configuration settings.
"""

import json
from typing import Any, Dict, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class APIConfig(BaseSettings):
    """API configuration settings."""

    # API Settings
    api_title: str = "Boipoka Ebook API"
    api_version: str = "1.0.0"
    api_description: str = "Catalog, user and reading-list API for the Boipoka ebook library"

    # Server Settings
    host: str = "0.0.0.0"
    port: int = 5000
    debug: bool = False
    environment: str = "development"

    # Database Settings
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_database: str = "boipoka-ebook"
    books_collection: str = "books"
    users_collection: str = "users"
    reading_states_collection: str = "my-books"

    # Security Settings
    secret_key: Optional[str] = None  # SECRET_KEY, required at startup
    algorithm: str = "HS256"
    access_token_expire_days: int = 365
    cookie_name: str = "token"

    # Google Drive Settings
    google_service_account_json: Optional[str] = None
    google_drive_folder_id: Optional[str] = None

    # CORS Settings
    cors_origins: list = ["http://localhost:5173"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list = ["*"]
    cors_allow_headers: list = ["*"]

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: Optional[str] = None

    model_config = {
        "env_file": ".env",
        "extra": "ignore"  # Ignore extra fields from .env
    }

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        """Ensure environment is one we know how to configure cookies for."""
        valid = ["development", "production"]
        if v.lower() not in valid:
            raise ValueError(f"environment must be one of: {valid}")
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Ensure log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        """Ensure log format is valid."""
        valid_formats = ["json", "console"]
        if v.lower() not in valid_formats:
            raise ValueError(f"log_format must be one of: {valid_formats}")
        return v.lower()

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    def cookie_options(self) -> Dict[str, Any]:
        """Attributes for the session cookie; HttpOnly always, Secure and same-site only in production."""
        if self.is_production():
            return {"httponly": True, "secure": True, "samesite": "strict"}
        return {"httponly": True, "secure": False, "samesite": "lax"}

    def get_service_account_info(self) -> Optional[Dict[str, Any]]:
        """Parse the Google service account JSON, if configured."""
        if not self.google_service_account_json:
            return None
        return json.loads(self.google_service_account_json)


# Global config instance
config = APIConfig()
