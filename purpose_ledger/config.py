"""Purpose Ledger — Application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class PurposeLedgerSettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # ── Storage ────────────────────────────────────────────────
    database_url: str = "sqlite:///purpose_ledger.db"
    database_echo: bool = False

    # ── Roles ──────────────────────────────────────────────────
    owner_account: str = ""
    blacklister_account: str = ""

    # ── Token ──────────────────────────────────────────────────
    token_name: str = "Purpose Restricted Token"
    token_symbol: str = "PRT"
    token_decimals: int = 6

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def is_in_memory(self) -> bool:
        return self.database_url in ("sqlite://", "sqlite:///:memory:")


settings = PurposeLedgerSettings()
