"""
Environment settings and logging setup.
"""

import pytest
import structlog

from slo_engine.log import configure_logging
from slo_engine.settings import Settings


def test_settings_defaults(monkeypatch):
    """Without ``SLO_*`` variables the defaults apply."""
    for var in ("SLO_BASE_URL", "SLO_LOG_LEVEL", "SLO_LOG_JSON"):
        monkeypatch.delenv(var, raising=False)
    settings = Settings(_env_file=None)
    assert settings.base_url is None
    assert settings.log_level == "INFO"
    assert settings.log_json is False


def test_settings_from_environment(monkeypatch):
    """``SLO_*`` variables override the defaults."""
    monkeypatch.setenv("SLO_BASE_URL", "http://target:8080")
    monkeypatch.setenv("SLO_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("SLO_LOG_JSON", "true")
    settings = Settings(_env_file=None)
    assert settings.base_url == "http://target:8080"
    assert settings.log_level == "DEBUG"
    assert settings.log_json is True


def test_json_logging_writes_to_stderr(capsys):
    """JSON logs go to stderr and respect the level filter."""
    configure_logging("INFO", json=True)
    structlog.get_logger("test").info("setup_complete", created=5)
    structlog.get_logger("test").debug("filtered_out")

    err = capsys.readouterr().err
    assert '"event": "setup_complete"' in err
    assert '"created": 5' in err
    assert "filtered_out" not in err


def test_unknown_log_level():
    """An unknown level name raises ``ValueError``."""
    with pytest.raises(ValueError):
        configure_logging("LOUD")
