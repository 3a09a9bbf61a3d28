from __future__ import annotations
import logging
import os
from pathlib import Path
from typing import Optional, Union

# --- Chemins de base ---
ROOT_DIR = Path(__file__).resolve().parents[1]
DATA_DIR = Path(os.environ.get("INVOICING_DATA_DIR") or ROOT_DIR / "data")

INVOICES_JSON = "invoices.json"
CUSTOMERS_JSON = "customers.json"
ORDERS_JSON = "orders.json"
TIME_ENTRIES_JSON = "time_entries.json"
SETTINGS_JSON = "settings.json"

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def data_path(filename: str, data_dir: Optional[Union[str, Path]] = None) -> Path:
    base = Path(data_dir) if data_dir else DATA_DIR
    base.mkdir(parents=True, exist_ok=True)
    return base / filename


def configure_logging(level: Union[int, str] = logging.INFO) -> None:
    """Handler console basique pour les scripts (les services se contentent de getLogger)."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logging.basicConfig(level=level, format=LOG_FORMAT)
