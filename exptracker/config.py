# exptracker/config.py
# Central knobs: env-driven paths + defaults for rates, settings and categories.
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()

# --------------------------
# Currencies (rates are "units per 1 EUR")
# --------------------------
BASE_CURRENCY = "EUR"

DEFAULT_RATES: Dict[str, float] = {
    "EUR": 1.0,
    "USD": 1.08,
    "RUB": 95.0,
}

CURRENCY_SYMBOLS = {"EUR": "€", "USD": "$", "RUB": "₽"}

# --------------------------
# Settings singleton defaults
# --------------------------
SUPPORTED_LANGUAGES = {
    "en": {"name": "English", "defaultCurrency": "USD"},
    "ru": {"name": "Русский", "defaultCurrency": "USD"},
    "et": {"name": "Eesti", "defaultCurrency": "EUR"},
}

THEMES = ("light", "dark", "system")

MIN_DECIMAL_PLACES = 0
MAX_DECIMAL_PLACES = 4

DEFAULT_SETTINGS = {
    "currency": "USD",
    "language": "en",
    "dateFormat": "YYYY-MM-DD",
    "decimalPlaces": 2,
    "theme": "system",
}

# --------------------------
# Categories seeded on first use: (name, type)
# --------------------------
DEFAULT_CATEGORIES: List[tuple] = [
    ("Salary", "income"),
    ("Food", "expense"),
    ("Transport", "expense"),
    ("Rent", "expense"),
    ("Utilities", "expense"),
    ("Entertainment", "expense"),
    ("Health", "expense"),
    ("Shopping", "expense"),
    ("Other", "expense"),
]

# Bucket used by the aggregator when a record has no usable category
FALLBACK_CATEGORY = "Other"

TX_TYPES = ("income", "expense")

# Largest amount accepted on write; keeps converted sums finite
MAX_AMOUNT = 1e12

EXPORT_FILENAME = "expense-tracker-export.json"
APP_NAME = "Expense Tracker Pro"
EXPORT_VERSION = 1


# ---------- env-driven locations (read at call time) ----------
def data_dir() -> Path:
    p = Path(os.environ.get("DATA_DIR", "data"))
    p.mkdir(parents=True, exist_ok=True)
    return p


def storage_backend() -> str:
    return (os.environ.get("STORAGE_BACKEND") or "json").strip().lower()


def database_path() -> Path:
    raw = os.environ.get("DATABASE_PATH")
    return Path(raw) if raw else data_dir() / "tracker.db"


def cors_origin() -> str:
    return os.environ.get("CORS_ORIGIN", "*")


def configure_logging(level: Optional[str] = None) -> None:
    """Root logging setup; LOG_FILE sends records to a file instead of stderr."""
    level_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    kwargs = {
        "level": getattr(logging, level_name, logging.INFO),
        "format": "%(asctime)s %(levelname)s: %(message)s",
    }
    log_file = os.environ.get("LOG_FILE")
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        kwargs["filename"] = log_file
    logging.basicConfig(**kwargs)
