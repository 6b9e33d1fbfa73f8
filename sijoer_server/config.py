"""Settings loaded from environment variables."""

import os
from decimal import Decimal
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigurationError
from .models import AuthCredentials


class Settings(BaseModel):
    """Runtime configuration for the storefront client and servers."""

    supabase_url: str = Field(description="Base URL of the hosted backend")
    supabase_anon_key: str = Field(description="Public API key sent with every request")
    email: Optional[str] = None
    password: Optional[str] = None
    session_file: str = Field(default_factory=lambda: str(Path.home() / ".sijoer_session.json"))
    retry_attempts: int = Field(default=3, ge=1)
    retry_base_delay_ms: float = Field(default=1000, ge=0)
    retry_max_delay_ms: float = Field(default=5000, ge=0)
    catalog_cache_ttl: float = Field(default=300, ge=0, description="Seconds to keep catalog reads")
    free_shipping_threshold: Decimal = Decimal("199")
    shipping_fee: Decimal = Decimal("10")
    request_timeout: float = 30.0
    log_level: str = "INFO"

    @property
    def credentials(self) -> Optional[AuthCredentials]:
        """Auto-login credentials, if both are configured."""
        if self.email and self.password:
            return AuthCredentials(email=self.email, password=self.password)
        return None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from ``SIJOER_*`` environment variables.

        Raises:
            ConfigurationError: If the backend URL or key is missing, or a value is invalid
        """
        env = os.environ if environ is None else environ

        url = env.get("SIJOER_SUPABASE_URL")
        key = env.get("SIJOER_SUPABASE_ANON_KEY")
        if not url or not key:
            raise ConfigurationError(
                "Missing backend settings: set SIJOER_SUPABASE_URL and SIJOER_SUPABASE_ANON_KEY"
            )

        mapping = {
            "email": "SIJOER_EMAIL",
            "password": "SIJOER_PASSWORD",
            "session_file": "SIJOER_SESSION_FILE",
            "retry_attempts": "SIJOER_RETRY_ATTEMPTS",
            "retry_base_delay_ms": "SIJOER_RETRY_BASE_DELAY_MS",
            "retry_max_delay_ms": "SIJOER_RETRY_MAX_DELAY_MS",
            "catalog_cache_ttl": "SIJOER_CATALOG_CACHE_TTL",
            "free_shipping_threshold": "SIJOER_FREE_SHIPPING_THRESHOLD",
            "shipping_fee": "SIJOER_SHIPPING_FEE",
            "request_timeout": "SIJOER_REQUEST_TIMEOUT",
            "log_level": "SIJOER_LOG_LEVEL",
        }
        values = {"supabase_url": url.rstrip("/"), "supabase_anon_key": key}
        for field, var in mapping.items():
            if env.get(var):
                values[field] = env[var]

        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings: {e}") from e
