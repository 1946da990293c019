"""
Application configuration.

Values come from environment variables (optionally loaded from a .env file).
"""

import os
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _split_csv(value: Optional[str], default: List[str]) -> List[str]:
    if not value:
        return default
    parts = [part.strip() for part in value.split(",") if part.strip()]
    return parts or default


class Settings:
    """Environment-driven settings for the portal API."""

    def __init__(self):
        self.supabase_url = os.getenv("SUPABASE_URL")
        self.supabase_publishable_key = (
            os.getenv("SUPABASE_PUBLISHABLE_KEY") or os.getenv("SUPABASE_ANON_KEY")
        )
        self.supabase_secret_key = (
            os.getenv("SUPABASE_SECRET_KEY") or os.getenv("SUPABASE_SERVICE_ROLE_KEY")
        )
        self.admin_setup_code = os.getenv("ADMIN_SETUP_CODE")
        self.cors_origins = _split_csv(
            os.getenv("CORS_ORIGINS"),
            ["http://localhost:3000", "http://localhost:5173"],
        )
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.signed_url_ttl_seconds = int(os.getenv("SIGNED_URL_TTL_SECONDS", "60"))


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the settings singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
