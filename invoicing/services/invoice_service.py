# invoicing/services/invoice_service.py
from __future__ import annotations
import logging
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import pydantic

from invoicing.config import INVOICES_JSON, data_path
from invoicing.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
    from_pydantic,
)
from invoicing.models.common import round2, to_decimal
from invoicing.models.invoice import (
    CANCELLED,
    FULL,
    INSTALLMENTS,
    PAID,
    PARTIALLY_PAID,
    SENT,
    Invoice,
    InvoiceCreate,
    LineItem,
)
from invoicing.models.time_entry import TimeEntry
from invoicing.services import invoice_calculator as calc
from invoicing.services.customer_service import CustomerService
from invoicing.services.order_service import OrderService
from invoicing.services.settings_service import SettingsService
from invoicing.services.time_tracking_service import TimeTrackingService
from invoicing.storage.json_repo import JsonRepository

logger = logging.getLogger(__name__)


def _time_entry_item(entry: TimeEntry) -> LineItem:
    """Une saisie de temps → une ligne au montant figé de la saisie."""
    hours = round2(entry.billable_hours)
    return LineItem(
        description=f"{entry.description} ({hours} h x {round2(entry.hourly_rate)})",
        quantity=Decimal("1"),
        unit_price=entry.amount,
        time_entry_id=entry.id,
    )


# ---------- Service ----------
class InvoiceService:
    """
    Opérations exposées sur les factures.
    Tout est vérifié (calcul pur) avant la moindre écriture ; les collaborateurs
    (clients, commandes, temps, paramètres) sont injectables.
    """

    def __init__(
        self,
        data_dir: Optional[str | Path] = None,
        *,
        customers: Optional[CustomerService] = None,
        orders: Optional[OrderService] = None,
        time_entries: Optional[TimeTrackingService] = None,
        settings: Optional[SettingsService] = None,
    ):
        self.repo = JsonRepository(
            data_path(INVOICES_JSON, data_dir), entity_name="invoice", key="id", version_field="version"
        )
        self.settings = settings or SettingsService(data_dir)
        self.customers = customers or CustomerService(data_dir)
        self.orders = orders or OrderService(data_dir)
        self.time_entries = time_entries or TimeTrackingService(data_dir, settings=self.settings)

    # ----------- lecture -----------
    def _hydrate(self, d: Mapping[str, Any]) -> Invoice:
        try:
            return Invoice.model_validate(d)
        except pydantic.ValidationError as exc:
            raise from_pydantic(exc, prefix="invoice.") from exc

    def get_invoice(self, invoice_id: str) -> Invoice:
        return self._hydrate(self.repo.require(invoice_id))

    def list_invoices(
        self,
        *,
        customer_id: Optional[str] = None,
        order_id: Optional[str] = None,
        status: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        min_amount: Optional[Union[Decimal, float, str]] = None,
        max_amount: Optional[Union[Decimal, float, str]] = None,
    ) -> List[Invoice]:
        out: List[Invoice] = []
        for d in self.repo.list_all():
            try:
                inv = Invoice.model_validate(d)
            except pydantic.ValidationError:
                logger.warning("Skipping invalid invoice record %s", d.get("id"))
                continue
            if customer_id and inv.customer_id != customer_id:
                continue
            if order_id and inv.order_id != order_id:
                continue
            if status and inv.status != status:
                continue
            if start_date and inv.issue_date < start_date:
                continue
            if end_date and inv.issue_date > end_date:
                continue
            if min_amount is not None and inv.total_amount < to_decimal(min_amount):
                continue
            if max_amount is not None and inv.total_amount > to_decimal(max_amount):
                continue
            out.append(inv)
        # plus récentes d'abord
        out.sort(key=lambda i: i.created_at, reverse=True)
        return out

    # ----------- écriture -----------
    def _save(self, inv: Invoice) -> Invoice:
        inv.touch()
        return self._hydrate(self.repo.update(inv))

    @staticmethod
    def _ensure_editable(inv: Invoice, action: str) -> None:
        if inv.status == CANCELLED:
            raise InvalidTransitionError(inv.status, inv.status, f"cancelled invoices cannot be {action}")
        if inv.status in (PAID, PARTIALLY_PAID) or any(i.is_paid for i in inv.installments):
            raise InvalidTransitionError(inv.status, inv.status, f"invoices with payments cannot be {action}")

    # ----------- création -----------
    def create_invoice(self, data: Union[InvoiceCreate, Mapping[str, Any]]) -> Invoice:
        if not isinstance(data, InvoiceCreate):
            try:
                data = InvoiceCreate.model_validate(data)
            except pydantic.ValidationError as exc:
                raise from_pydantic(exc) from exc

        if not data.customer_id:
            raise ValidationError("customer is required", field="customer_id")
        defaults = self.settings.get_billing_defaults()

        try:
            self.customers.get(data.customer_id)
            items: List[LineItem] = []
            if data.order_id:
                order = self.orders.get(data.order_id)
                if data.include_order_items:
                    items.extend(it.model_copy() for it in order.items)
            items.extend(data.items)

            entry_ids = calc.check_time_entry_claims(data.time_entry_ids)
            entries = self.time_entries.check_billable(entry_ids)
        except (NotFoundError, ConflictError) as exc:
            logger.warning("Invoice creation rejected: %s", exc)
            raise
        if data.bill_time_entries_as_items:
            items.extend(_time_entry_item(e) for e in entries)
        if not items:
            raise ValidationError("invoice needs at least one line item", field="items")

        issue_date = data.issue_date or date.today()
        due_date = data.due_date or issue_date + timedelta(days=defaults.payment_terms_days)
        if due_date < issue_date:
            raise ValidationError("due date must not be before issue date", field="due_date")

        schedule = data.payment_schedule
        if schedule is None:
            schedule = INSTALLMENTS if data.installment_plan else defaults.default_payment_schedule
        if schedule == FULL and data.installment_plan:
            raise ValidationError("installment plan given for a FULL payment schedule", field="installment_plan")
        tax_rate = data.tax_rate_percent if data.tax_rate_percent is not None else defaults.tax_rate_percent

        totals = calc.compute_totals(items, tax_rate)
        installments = []
        if schedule == INSTALLMENTS:
            plan = data.installment_plan or calc.default_installment_plan(defaults, issue_date, due_date)
            installments = calc.generate_installments(totals.total_amount, plan)

        if data.invoice_number and self._number_taken(data.invoice_number):
            raise ConflictError(f"invoice number {data.invoice_number} already exists")

        try:
            inv = Invoice(
                invoice_number=data.invoice_number,
                customer_id=data.customer_id,
                order_id=data.order_id,
                items=items,
                tax_rate_percent=tax_rate,
                payment_schedule=schedule,
                installments=installments,
                issue_date=issue_date,
                due_date=due_date,
                time_entry_ids=entry_ids,
                notes=data.notes,
            )
        except pydantic.ValidationError as exc:
            raise from_pydantic(exc) from exc
        if not inv.invoice_number:
            inv.invoice_number = self._next_free_number(issue_date)

        saved = self._hydrate(self.repo.add(inv))
        try:
            self.time_entries.mark_billed(entry_ids, saved.id)
        except (NotFoundError, ConflictError):
            # saisie facturée entre-temps par une autre facture : on annule la création
            self.repo.delete(saved.id)
            raise

        logger.info(
            "Invoice %s created for customer %s, total %s (%s)",
            saved.invoice_number, saved.customer_id, saved.total_amount, saved.payment_schedule,
        )
        return saved

    def _number_taken(self, number: str) -> bool:
        return self.repo.find_one(lambda d: d.get("invoiceNumber") == number) is not None

    def _next_free_number(self, issue_date: date) -> str:
        # le compteur peut être en retard (numéro saisi à la main, settings.json perdu)
        number = self.settings.next_invoice_number(issue_date)
        while self._number_taken(number):
            logger.warning("Invoice number %s already used, drawing the next one", number)
            number = self.settings.next_invoice_number(issue_date)
        return number

    # ----------- modifications -----------
    def update_invoice_items(self, invoice_id: str, items: Iterable[Union[LineItem, Mapping[str, Any]]]) -> Invoice:
        inv = self.get_invoice(invoice_id)
        self._ensure_editable(inv, "edited")
        # les lignes de saisies de temps restent celles de la facture
        lines = [ln for ln in calc.coerce_items(items) if ln.time_entry_id is None]
        lines.extend(ln for ln in inv.items if ln.time_entry_id is not None)
        if not lines:
            raise ValidationError("invoice needs at least one line item", field="items")
        old_total = inv.total_amount
        updated = calc.reschedule(inv.model_copy(update={"items": lines}, deep=True))
        saved = self._save(updated)
        logger.info("Invoice %s items updated, total %s -> %s", saved.invoice_number, old_total, saved.total_amount)
        return saved

    def change_payment_schedule(
        self, invoice_id: str, schedule: str, plan: Optional[Iterable[Any]] = None
    ) -> Invoice:
        inv = self.get_invoice(invoice_id)
        self._ensure_editable(inv, "rescheduled")
        if schedule == FULL:
            if plan:
                raise ValidationError("installment plan given for a FULL payment schedule", field="installment_plan")
            updated = inv.model_copy(update={"payment_schedule": FULL, "installments": []}, deep=True)
        elif schedule == INSTALLMENTS:
            if plan is None:
                plan = calc.default_installment_plan(self.settings.get_billing_defaults(), inv.issue_date, inv.due_date)
            updated = calc.reschedule(inv.model_copy(update={"payment_schedule": INSTALLMENTS}, deep=True), plan)
        else:
            raise ValidationError(f"unknown payment schedule {schedule!r}", field="payment_schedule")
        saved = self._save(updated)
        logger.info("Invoice %s payment schedule set to %s", saved.invoice_number, schedule)
        return saved

    def update_invoice_time_entries(
        self, invoice_id: str, time_entry_ids: Iterable[str], *, bill_as_items: bool = True
    ) -> Invoice:
        """
        Remplace les saisies de temps liées à la facture.
        Les retirées perdent leur ligne et sont libérées ; les ajoutées sont facturées
        (et deviennent des lignes si bill_as_items). Totaux et échéancier recalculés.
        """
        inv = self.get_invoice(invoice_id)
        self._ensure_editable(inv, "edited")
        new_ids = calc.check_time_entry_claims(list(time_entry_ids))
        added = [i for i in new_ids if i not in inv.time_entry_ids]
        removed = [i for i in inv.time_entry_ids if i not in new_ids]
        if not added and not removed:
            return inv
        entries = self.time_entries.check_billable(added, inv.id)

        items = [ln for ln in inv.items if ln.time_entry_id not in removed]
        if bill_as_items:
            items.extend(_time_entry_item(e) for e in entries)
        if not items:
            raise ValidationError("invoice needs at least one line item", field="items")
        old_total = inv.total_amount
        updated = calc.reschedule(inv.model_copy(update={"items": items, "time_entry_ids": new_ids}, deep=True))

        # facturer avant d'écrire la facture : un conflit ne laisse rien à moitié fait
        self.time_entries.mark_billed(added, inv.id)
        try:
            saved = self._save(updated)
        except (ConflictError, NotFoundError):
            self.time_entries.mark_unbilled(added)
            raise
        self.time_entries.mark_unbilled(removed)
        logger.info(
            "Invoice %s time entries: %d added, %d removed, total %s -> %s",
            saved.invoice_number, len(added), len(removed), old_total, saved.total_amount,
        )
        return saved

    # ----------- statut -----------
    def set_invoice_status(self, invoice_id: str, status: str) -> Invoice:
        inv = self.get_invoice(invoice_id)
        try:
            updated = calc.set_status(inv, status)
        except InvalidTransitionError as exc:
            logger.warning("Invoice %s: %s", inv.invoice_number, exc)
            raise
        saved = self._save(updated)
        logger.info("Invoice %s status changed from %s to %s", saved.invoice_number, inv.status, saved.status)
        return saved

    def send_invoice(self, invoice_id: str) -> Invoice:
        return self.set_invoice_status(invoice_id, SENT)

    def mark_installment_paid(self, invoice_id: str, index: int, is_paid: bool) -> Invoice:
        inv = self.get_invoice(invoice_id)
        try:
            updated = calc.mark_installment_paid(inv, index, is_paid)
        except (InvalidTransitionError, NotFoundError) as exc:
            logger.warning("Invoice %s: %s", inv.invoice_number, exc)
            raise
        saved = self._save(updated)
        logger.info(
            "Invoice %s installment %d marked %s, status %s",
            saved.invoice_number, index, "paid" if is_paid else "unpaid", saved.status,
        )
        return saved

    # ----------- suppression -----------
    def delete_invoice(self, invoice_id: str) -> None:
        inv = self.get_invoice(invoice_id)
        if inv.status == PAID:
            logger.warning("Refusing to delete paid invoice %s", inv.invoice_number)
            raise ValidationError("paid invoices cannot be deleted, cancel them instead", field="status")
        self.time_entries.mark_unbilled(inv.time_entry_ids)
        self.repo.delete(inv.id)
        logger.info("Invoice %s deleted, total %s", inv.invoice_number, inv.total_amount)

    def summary(self, invoice_id: str) -> Dict[str, Any]:
        inv = self.get_invoice(invoice_id)
        return {
            "invoice_number": inv.invoice_number,
            "status": inv.status,
            "total_amount": inv.total_amount,
            "paid_amount": inv.paid_amount(),
            "remaining_amount": inv.remaining_amount(),
        }
