"""Shared test fixtures and configuration for backend tests."""
import random

import pytest
from fastapi.testclient import TestClient

from relay.config import AppConfig, reset_config
from relay.transfers import TransferManager


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config(tmp_path) -> AppConfig:
    """Default config with uploads kept under tmp_path."""
    cfg = AppConfig()
    cfg.storage.upload_dir = str(tmp_path / "uploads")
    return cfg


@pytest.fixture
def manager(config, clock) -> TransferManager:
    return TransferManager(config, clock=clock, rng=random.Random(1234))


@pytest.fixture
def api_client(tmp_path, monkeypatch):
    """Provide a TestClient for a freshly built app.

    The app reads a settings file written into tmp_path, so uploads land
    there and the request ceiling is small enough to exercise.
    """
    settings_file = tmp_path / "peerlink.settings.yaml"
    settings_file.write_text(
        "storage:\n"
        "  upload_dir: uploads\n"
        "  max_request_bytes: 4096\n"
        "  chunk_size: 16\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("PEERLINK_SETTINGS", str(settings_file))
    monkeypatch.delenv("PORT", raising=False)
    reset_config()

    from relay.main import create_app

    with TestClient(create_app()) as client:
        yield client
    reset_config()
