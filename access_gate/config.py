"""Access Gate — application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class GatewaySettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_prefix": "ACCESS_GATE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    # ── Access manager ─────────────────────────────────────────
    manager_address: str = "access-manager"
    admin_account: str = "admin"
    policy_file: str | None = None

    # ── Audit ledger ───────────────────────────────────────────
    ledger_database_url: str | None = None

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"


settings = GatewaySettings()
