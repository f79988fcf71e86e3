"""
Unit tests: built-in profiles and JSON run configurations load through
``load_config``; unknown names and invalid files raise ``ConfigError``.
"""

import json

import pytest

from slo_engine.errors import ConfigError
from slo_engine.loader import builtin_profiles, load_config


def test_builtin_profiles_are_listed():
    """``load`` and ``baseline`` ship with the package."""
    assert builtin_profiles() == ["baseline", "load"]


def test_load_profile_reproduces_stage_table():
    """``load`` ramps to 5000 workers over 16 minutes with the 20/75/5 mix."""
    config = load_config("load")
    assert [s.target for s in config.stages] == [100, 500, 1000, 2000, 5000, 0]
    assert config.profile.total_duration == 16 * 60
    assert config.scenarios == {"create_link": 0.20, "follow_redirect": 0.75, "not_found": 0.05}
    assert config.setup.pool_size == 20
    assert "http_req_duration: p(95)<500" in [str(r) for r in config.rules()]


def test_load_is_memoised():
    """Loading the same profile twice returns the cached object."""
    assert load_config("baseline") is load_config("baseline")


def test_load_from_file(tmp_path):
    """A JSON file path loads, with defaults for missing sections."""
    path = tmp_path / "tiny.json"
    path.write_text(json.dumps({"name": "tiny", "stages": [{"duration": "5s", "target": 1}]}))
    config = load_config(str(path))
    assert config.name == "tiny"
    assert config.setup.pool_size == 20


def test_unknown_profile():
    """Unknown profile names raise ``ConfigError``."""
    with pytest.raises(ConfigError):
        load_config("does-not-exist")


def test_invalid_file(tmp_path):
    """Invalid or missing files raise ``ConfigError``."""
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"stages": [], "thresholds": {"x": ["p95<1"]}}))
    with pytest.raises(ConfigError):
        load_config(path)
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.json")
