"""
Tests for session persistence.
"""
import json
import os
import stat
import time

from sijoer_server.auth import AuthManager


def token_response(**overrides):
    data = {
        "access_token": "token-1",
        "refresh_token": "refresh-1",
        "expires_in": 3600,
        "user": {"id": "u1", "email": "a@example.com"},
    }
    data.update(overrides)
    return data


class TestAuthManager:
    """Saving, loading and expiring sessions."""

    def test_starts_signed_out(self, tmp_path):
        auth = AuthManager(str(tmp_path / "session.json"))

        assert not auth.is_authenticated()
        assert auth.auth_headers() == {}

    def test_save_session_persists(self, tmp_path):
        """Should write the session and reload it in a new manager"""
        path = tmp_path / "session.json"
        AuthManager(str(path)).save_session(token_response())

        reloaded = AuthManager(str(path))

        assert reloaded.is_authenticated()
        assert reloaded.session.user_id == "u1"
        assert reloaded.auth_headers() == {"Authorization": "Bearer token-1"}
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_expired_session_is_not_authenticated(self, tmp_path):
        auth = AuthManager(str(tmp_path / "session.json"))

        auth.save_session(token_response(expires_at=int(time.time()) - 10))

        assert not auth.is_authenticated()

    def test_clear_session_removes_file(self, tmp_path):
        path = tmp_path / "session.json"
        auth = AuthManager(str(path))
        auth.save_session(token_response())

        auth.clear_session()

        assert not path.exists()
        assert not auth.is_authenticated()

    def test_corrupted_file_is_ignored(self, tmp_path):
        path = tmp_path / "session.json"
        path.write_text("{not json")

        assert not AuthManager(str(path)).is_authenticated()

    def test_token_from_environment(self, tmp_path, monkeypatch):
        """Should import a token given through SIJOER_ACCESS_TOKEN"""
        monkeypatch.setenv("SIJOER_ACCESS_TOKEN", "env-token")
        monkeypatch.setenv("SIJOER_USER_ID", "u9")
        path = tmp_path / "session.json"

        auth = AuthManager(str(path))

        assert auth.is_authenticated()
        assert auth.session.user_id == "u9"
        assert json.loads(path.read_text())["access_token"] == "env-token"
