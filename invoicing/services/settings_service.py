from __future__ import annotations
import json
import logging
import os
import threading
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional

import pydantic

from invoicing.config import SETTINGS_JSON, data_path
from invoicing.errors import from_pydantic
from invoicing.models.settings import BillingDefaults
from invoicing.services.invoice_calculator import default_installment_plan, validate_plan

logger = logging.getLogger(__name__)

DEFAULT_INVOICE_PREFIX = "R"


# ---------- Utils JSON ----------
def _load_json(path: os.PathLike | str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        return {}
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        logger.warning("Unreadable settings file %s, falling back to defaults", p)
        return {}
    return data if isinstance(data, dict) else {}


def _dump_json(path: os.PathLike | str, data: Dict[str, Any]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


class SettingsService:
    """
    Paramètres système (data/settings.json) :
    - "billing" : valeurs par défaut de facturation (TVA, délai, échéancier, taux horaire…)
    - "numbering" : préfixe et compteurs de numérotation des factures
    """

    def __init__(self, data_dir: Optional[str | Path] = None) -> None:
        self.path = data_path(SETTINGS_JSON, data_dir)
        self._lock = threading.Lock()

    def get_billing_defaults(self) -> BillingDefaults:
        raw = _load_json(self.path).get("billing") or {}
        try:
            return BillingDefaults.model_validate(raw)
        except pydantic.ValidationError as exc:
            raise from_pydantic(exc, prefix="billing.") from exc

    def update_billing_defaults(self, defaults: BillingDefaults | Dict[str, Any]) -> BillingDefaults:
        if not isinstance(defaults, BillingDefaults):
            try:
                defaults = BillingDefaults.model_validate(defaults)
            except pydantic.ValidationError as exc:
                raise from_pydantic(exc, prefix="billing.") from exc
        validate_plan(default_installment_plan(defaults, date.today()))
        with self._lock:
            s = _load_json(self.path)
            s["billing"] = defaults.to_document()
            _dump_json(self.path, s)
        logger.info("Billing defaults updated")
        return defaults

    # ----------- numérotation -----------
    def next_invoice_number(self, issue_date: Optional[date] = None) -> str:
        """R{AAAA}{MM}-{seq:04d}, compteur par mois conservé dans settings.json."""
        d = issue_date or date.today()
        with self._lock:
            s = _load_json(self.path)
            numbering = s.get("numbering", {})
            prefix = numbering.get("invoice_prefix", DEFAULT_INVOICE_PREFIX)
            period = f"{d.year:04d}{d.month:02d}"
            seq_key = f"invoice_seq_{period}"
            seq = int(numbering.get(seq_key, 1))
            numbering[seq_key] = seq + 1
            s["numbering"] = numbering
            _dump_json(self.path, s)
        return f"{prefix}{period}-{seq:04d}"
