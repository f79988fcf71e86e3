"""Environment overrides via pydantic-settings (``SLO_`` prefix)."""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    base_url: Optional[str] = None
    log_level: str = "INFO"
    log_json: bool = False

    model_config = {"env_prefix": "SLO_", "env_file": ".env", "extra": "ignore"}
