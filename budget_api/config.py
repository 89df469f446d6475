"""
Runtime configuration.

Values come from environment variables. main.py loads ~/BudgetApp/.env and
then ./.env with python-dotenv before anything reads them, so both the
packaged app and a development checkout are covered.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Optional

APP_DIR = Path.home() / "BudgetApp"
DEFAULT_DATABASE_URL = f"sqlite:///{APP_DIR / 'budget.db'}"
DEFAULT_STUB_FIXTURE = Path(__file__).resolve().parent / "fixtures" / "liste_operations.sample.json"

# Header row of the "Liste des opérations" export (metadata block sits above it)
DEFAULT_HEADER_ROW = 9


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    enable_upload: bool = True
    enable_xlsx: bool = True
    disable_db: bool = False
    header_row: int = DEFAULT_HEADER_ROW
    max_upload_mb: int = 15
    stub_fixture: Path = field(default=DEFAULT_STUB_FIXTURE)
    default_currency: str = "CHF"
    port: int = 8000

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024

    @classmethod
    def from_env(cls) -> "Settings":
        stub_fixture: Optional[str] = os.getenv("IMPORT_STUB_FIXTURE")
        return cls(
            database_url=os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL,
            enable_upload=_flag("ENABLE_UPLOAD", True),
            enable_xlsx=_flag("ENABLE_XLSX", True),
            disable_db=_flag("DISABLE_DB", False),
            header_row=_int("IMPORT_HEADER_ROW", DEFAULT_HEADER_ROW),
            max_upload_mb=_int("IMPORT_MAX_UPLOAD_MB", 15),
            stub_fixture=Path(stub_fixture) if stub_fixture else DEFAULT_STUB_FIXTURE,
            default_currency=os.getenv("DEFAULT_CURRENCY") or "CHF",
            port=_int("BUDGET_APP_PORT", 8000),
        )


@lru_cache
def get_settings() -> Settings:
    """FastAPI dependency returning the process-wide settings."""
    return Settings.from_env()
