"""Deal pipeline configuration via pydantic-settings."""

from __future__ import annotations

from pydantic_settings import BaseSettings


# (name, probability) pairs for pipelines created without explicit stages.
DEFAULT_STAGES: list[tuple[str, int]] = [
    ("Qualification", 10),
    ("Meeting", 25),
    ("Proposal", 50),
    ("Negotiation", 80),
    ("Closed Won", 100),
    ("Closed Lost", 0),
]


class DealflowSettings(BaseSettings):
    environment: str = "development"
    database_url: str = "sqlite+aiosqlite:///dealflow.db"
    echo_sql: bool = False

    # Days without a stage change before a deal is flagged as rotting
    stale_threshold_days: int = 14
    default_currency: str = "USD"

    model_config = {"env_prefix": "DEALFLOW_", "env_file": ".env", "extra": "ignore"}

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in {"prod", "production"}


settings = DealflowSettings()
