"""
Run-configuration loader with memoisation.

Behaviour
~~~~~~~~~
* A bare name (``"load"``, ``"baseline"``) resolves to the built-in profile
  ``slo_engine/profiles/<name>.json``.
* Anything else is treated as a path to a JSON file.
* Parsed :class:`~slo_engine.model.RunConfig` instances are cached in memory
  for subsequent calls; validation problems surface as :class:`ConfigError`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Union

from pydantic import ValidationError

from slo_engine.errors import ConfigError
from slo_engine.model import RunConfig

PROFILE_DIR = Path(__file__).parent / "profiles"
_CACHE: Dict[Union[str, Path], RunConfig] = {}


# Helper functions

def _resolve(src: Union[str, Path]) -> Path:
    """Map a built-in profile name to its file; pass paths through."""
    if isinstance(src, str) and "/" not in src and not src.endswith(".json"):
        candidate = PROFILE_DIR / f"{src}.json"
        if not candidate.exists():
            raise ConfigError(f"unknown profile {src!r}; built-ins: {', '.join(builtin_profiles())}")
        return candidate
    return Path(src)


def _from_disk(json_path: Path) -> RunConfig:
    try:
        raw = json_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read {json_path}: {exc}") from exc
    try:
        return RunConfig.model_validate_json(raw)
    except ValidationError as exc:
        raise ConfigError(f"invalid run configuration in {json_path}:\n{exc}") from exc


# Public loader

def builtin_profiles() -> List[str]:
    return sorted(p.stem for p in PROFILE_DIR.glob("*.json"))


def load_config(src: Union[str, Path]) -> RunConfig:
    """Load a :class:`RunConfig` by built-in profile name or file path."""
    if src in _CACHE:
        return _CACHE[src]
    config = _from_disk(_resolve(src))
    _CACHE[src] = config
    return config
