"""Tests for settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from zkcoord.config import Settings


class TestSettings:
    """Defaults, environment overrides and validation."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ("HOSTS", "LOCK_ROOT", "CALLBACK_WORKERS"):
            monkeypatch.delenv(f"ZKCOORD_{name}", raising=False)

        settings = Settings(_env_file=None)

        assert settings.hosts == "localhost:2181"
        assert settings.lock_root == "/_zklocking"
        assert settings.semaphore_root == "/_zksemaphore"
        assert settings.election_root == "/_zkelection"
        assert settings.callback_workers == 5

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """ZKCOORD_* variables configure the client."""
        monkeypatch.setenv("ZKCOORD_HOSTS", "zk1:2181,zk2:2181")
        monkeypatch.setenv("ZKCOORD_SESSION_TIMEOUT", "30")
        monkeypatch.setenv("ZKCOORD_LOCK_ROOT", "/locks")
        monkeypatch.setenv("ZKCOORD_ENABLE_METRICS", "false")

        settings = Settings(_env_file=None)

        assert settings.hosts == "zk1:2181,zk2:2181"
        assert settings.session_timeout == 30.0
        assert settings.lock_root == "/locks"
        assert settings.enable_metrics is False

    @pytest.mark.parametrize("root", ["relative", "/trailing/", "/"])
    def test_invalid_roots(self, root: str) -> None:
        with pytest.raises(ValidationError):
            Settings(lock_root=root)

    def test_callback_workers_at_least_one(self) -> None:
        with pytest.raises(ValidationError):
            Settings(callback_workers=0)
