from __future__ import annotations
import logging
from pathlib import Path
from typing import Iterable, List, Optional

from pydantic import ValidationError

from invoicing.config import TIME_ENTRIES_JSON, data_path
from invoicing.errors import ConflictError, NotFoundError, from_pydantic
from invoicing.models.time_entry import TimeEntry
from invoicing.services.settings_service import SettingsService
from invoicing.storage.json_repo import JsonRepository

logger = logging.getLogger(__name__)


class TimeTrackingService:
    """
    Registre des saisies de temps.
    Une saisie n'est facturée que sur une seule facture (billed + invoice_id).
    """

    def __init__(self, data_dir: Optional[str | Path] = None, settings: Optional[SettingsService] = None):
        self.repo = JsonRepository(data_path(TIME_ENTRIES_JSON, data_dir), entity_name="time entry", key="id")
        self.settings = settings or SettingsService(data_dir)

    def _hydrate(self, d) -> TimeEntry:
        try:
            return TimeEntry.model_validate(d)
        except ValidationError as exc:
            raise from_pydantic(exc, prefix="time_entry.") from exc

    def add_entry(self, entry: TimeEntry) -> TimeEntry:
        defaults = self.settings.get_billing_defaults()
        entry.compute_billing(defaults.billing_interval_minutes, defaults.hourly_rate)
        self.repo.add(entry)
        return entry

    def get(self, entry_id: str) -> TimeEntry:
        return self._hydrate(self.repo.require(entry_id))

    def get_many(self, ids: Iterable[str]) -> List[TimeEntry]:
        wanted = list(ids)
        by_id = {str(d.get("id")): d for d in self.repo.list_all()}
        missing = [i for i in wanted if i not in by_id]
        if missing:
            raise NotFoundError("time entry", missing[0])
        return [self._hydrate(by_id[i]) for i in wanted]

    def list_unbilled(self, order_id: Optional[str] = None) -> List[TimeEntry]:
        rows = self.repo.find(
            lambda d: not d.get("billed") and (order_id is None or d.get("orderId") == order_id)
        )
        return [self._hydrate(d) for d in rows]

    def check_billable(self, ids: Iterable[str], invoice_id: Optional[str] = None) -> List[TimeEntry]:
        """Existence + pas déjà facturée sur une autre facture ; n'écrit rien."""
        entries = self.get_many(ids)
        for e in entries:
            if e.billed and e.invoice_id != invoice_id:
                raise ConflictError(f"time entry {e.id} is already billed on invoice {e.invoice_id}")
        return entries

    def mark_billed(self, ids: Iterable[str], invoice_id: str) -> int:
        ids = list(ids)
        if not ids:
            return 0
        # contrôle et écriture sous le même verrou
        with self.repo.transaction():
            self.check_billable(ids, invoice_id)
            count = self.repo.update_many(ids, {"billed": True, "invoiceId": invoice_id})
        logger.info("%d time entries billed on invoice %s", count, invoice_id)
        return count

    def mark_unbilled(self, ids: Iterable[str]) -> int:
        ids = list(ids)
        if not ids:
            return 0
        count = self.repo.update_many(ids, {"billed": False, "invoiceId": None})
        logger.info("%d time entries marked as unbilled", count)
        return count
