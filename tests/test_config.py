# tests/test_config.py
import logging
import os
from pathlib import Path

import pytest

from weft.config import Settings, load_settings
from weft.logging import configure_logging


def test_defaults(monkeypatch: pytest.MonkeyPatch):
    for name in [k for k in os.environ if k.startswith("WEFT_")]:
        monkeypatch.delenv(name)

    settings = load_settings()

    assert settings == Settings()
    assert settings.state_path is None
    assert settings.pool_tick_s == 0.01


def test_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.setenv("WEFT_POOL_SIZE", "4")
    monkeypatch.setenv("WEFT_LOOP_INTERVAL_MS", "250")
    monkeypatch.setenv("WEFT_AUTO_UNPAUSE", "yes")
    monkeypatch.setenv("WEFT_STATE_PATH", str(tmp_path / "state.db"))
    monkeypatch.setenv("WEFT_LOG_LEVEL", "DEBUG")

    settings = load_settings()

    assert settings.pool_size == 4
    assert settings.loop_interval_s == 0.25
    assert settings.auto_unpause is True
    assert settings.state_path == tmp_path / "state.db"
    assert settings.log_level == "debug"


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("WEFT_POOL_SIZE", "many"),
        ("WEFT_POOL_SIZE", "0"),
        ("WEFT_AUTO_UNPAUSE", "maybe"),
    ],
)
def test_invalid_values_raise(monkeypatch: pytest.MonkeyPatch, name: str, value: str):
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError):
        load_settings()


def test_configure_logging_replaces_only_its_own_handler():
    root = logging.getLogger()
    foreign = logging.NullHandler()
    saved_level = root.level
    root.addHandler(foreign)
    try:
        configure_logging("debug")
        configure_logging("warning")

        ours = [h for h in root.handlers if h.get_name() == "weft-stdout"]
        assert len(ours) == 1
        assert ours[0].level == logging.WARNING
        assert foreign in root.handlers
    finally:
        for h in list(root.handlers):
            if h is foreign or h.get_name() == "weft-stdout":
                root.removeHandler(h)
        root.setLevel(saved_level)
