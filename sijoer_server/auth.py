"""Authentication manager for the Sijoer storefront."""

import json
import os
import time
from pathlib import Path
from typing import Any, Optional
import logging

from .models import SessionData

logger = logging.getLogger(__name__)


class AuthManager:
    """Manages authentication state and session persistence."""

    def __init__(self, session_file: Optional[str] = None) -> None:
        """
        Initialize the authentication manager.

        Args:
            session_file: Path to store session data. Defaults to ~/.sijoer_session.json
        """
        if session_file is None:
            session_file = str(Path.home() / ".sijoer_session.json")
        self.session_file = session_file
        self.session: SessionData = self._load_session()

        # Load a token from environment variables
        self._load_token_from_env()

    def _load_session(self) -> SessionData:
        """Load session data from file if it exists."""
        if os.path.exists(self.session_file):
            try:
                with open(self.session_file, "r") as f:
                    data = json.load(f)
                    return SessionData(**data)
            except (json.JSONDecodeError, ValueError) as e:
                logger.warning(f"Ignoring unreadable session file {self.session_file}: {e}")
        return SessionData()

    def _save_session(self) -> None:
        """Save session data to file."""
        with open(self.session_file, "w") as f:
            json.dump(self.session.model_dump(), f, default=str)
        # Set restrictive permissions on session file
        os.chmod(self.session_file, 0o600)

    def save_session(self, token_response: dict[str, Any], user_email: Optional[str] = None) -> None:
        """
        Save an authentication session from a token grant response.

        Args:
            token_response: Decoded body of the token endpoint
            user_email: User's email address, used when the response has none
        """
        user = token_response.get("user") or {}
        expires_at = token_response.get("expires_at")
        if expires_at is None and token_response.get("expires_in"):
            expires_at = int(time.time()) + int(token_response["expires_in"])

        self.session = SessionData(
            access_token=token_response.get("access_token"),
            refresh_token=token_response.get("refresh_token"),
            expires_at=expires_at,
            user_id=user.get("id"),
            user_email=user.get("email") or user_email,
            is_authenticated=bool(token_response.get("access_token")),
        )
        self._save_session()

    def get_session(self) -> SessionData:
        """Get current session data."""
        return self.session

    def clear_session(self) -> None:
        """Clear the current session."""
        self.session = SessionData()
        if os.path.exists(self.session_file):
            os.remove(self.session_file)

    def is_expired(self) -> bool:
        expires_at = self.session.expires_at
        return expires_at is not None and expires_at <= time.time()

    def is_authenticated(self) -> bool:
        """Check if there's an active, unexpired authenticated session."""
        return (
            self.session.is_authenticated
            and bool(self.session.access_token)
            and not self.is_expired()
        )

    def auth_headers(self) -> dict[str, str]:
        """Bearer header for the signed-in user, empty when signed out."""
        if not self.is_authenticated():
            return {}
        return {"Authorization": f"Bearer {self.session.access_token}"}

    def _load_token_from_env(self) -> None:
        """
        Load an access token from environment variables.

        - SIJOER_ACCESS_TOKEN: Bearer token of an existing session (required)
        - SIJOER_REFRESH_TOKEN: Refresh token (optional)
        - SIJOER_USER_ID: ID of the token's user (optional)
        - SIJOER_EMAIL: Email of the token's user (optional)
        """
        access_token = os.environ.get("SIJOER_ACCESS_TOKEN")
        if not access_token:
            logger.debug("No access token found in environment variables")
            return

        self.session = SessionData(
            access_token=access_token,
            refresh_token=os.environ.get("SIJOER_REFRESH_TOKEN"),
            user_id=os.environ.get("SIJOER_USER_ID"),
            user_email=os.environ.get("SIJOER_EMAIL"),
            is_authenticated=True,
        )
        self._save_session()
        logger.info("✓ Loaded access token from environment")
