"""
Calcul des factures : totaux, échéancier de paiement et statut.

Fonctions pures : elles ne font aucune I/O et ne modifient jamais la facture
reçue ; elles renvoient une copie mise à jour ou lèvent une erreur typée.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

import pydantic

from invoicing.errors import (
    InstallmentNotFoundError,
    InvalidTransitionError,
    ValidationError,
    from_pydantic,
)
from invoicing.models.common import round2, to_decimal, utcnow
from invoicing.models.invoice import (
    CANCELLED,
    CREATED,
    INSTALLMENTS,
    INVOICE_STATUSES,
    PAID,
    PARTIALLY_PAID,
    SENT,
    Installment,
    InstallmentSpec,
    Invoice,
    LineItem,
)
from invoicing.models.settings import BillingDefaults

HUNDRED = Decimal("100")
PERCENT_TOLERANCE = Decimal("0.01")
SECOND_RATE_OFFSET_DAYS = 14

ItemLike = Union[LineItem, Mapping[str, Any]]
SpecLike = Union[InstallmentSpec, Installment, Mapping[str, Any]]


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal


# ---------- Totaux ---------- #

def _coerce_item(item: ItemLike, pos: int) -> LineItem:
    if isinstance(item, LineItem):
        # model_construct() peut contourner la validation : on revérifie
        if item.quantity is None or item.quantity <= 0:
            raise ValidationError(f"items.{pos}.quantity must be greater than 0", field=f"items.{pos}.quantity")
        if item.unit_price is None or item.unit_price < 0:
            raise ValidationError(f"items.{pos}.unit_price must not be negative", field=f"items.{pos}.unit_price")
        return item
    try:
        return LineItem.model_validate(item)
    except pydantic.ValidationError as exc:
        raise from_pydantic(exc, prefix=f"items.{pos}.") from exc


def coerce_items(items: Iterable[ItemLike]) -> List[LineItem]:
    return [_coerce_item(it, pos) for pos, it in enumerate(items)]


def compute_totals(items: Iterable[ItemLike], tax_rate_percent: Union[Decimal, int, float, str]) -> Totals:
    lines = coerce_items(items)
    if not lines:
        raise ValidationError("invoice needs at least one line item", field="items")
    rate = to_decimal(tax_rate_percent, "tax_rate_percent")
    if rate < 0:
        raise ValidationError("tax rate must not be negative", field="tax_rate_percent")

    # Somme exacte en Decimal, arrondie une seule fois
    subtotal = round2(sum((ln.quantity * ln.unit_price for ln in lines), Decimal("0")))
    tax_amount = round2(subtotal * rate / HUNDRED)
    return Totals(subtotal=subtotal, tax_amount=tax_amount, total_amount=subtotal + tax_amount)


# ---------- Échéancier ---------- #

def _coerce_spec(spec: SpecLike, pos: int) -> InstallmentSpec:
    if isinstance(spec, InstallmentSpec):
        return spec
    if isinstance(spec, Installment):
        return spec.to_spec()
    try:
        return InstallmentSpec.model_validate(spec)
    except pydantic.ValidationError as exc:
        raise from_pydantic(exc, prefix=f"installments.{pos}.") from exc


def validate_plan(plan: Iterable[SpecLike]) -> List[InstallmentSpec]:
    specs = [_coerce_spec(s, pos) for pos, s in enumerate(plan)]
    if not specs:
        raise ValidationError("installment plan must not be empty", field="installments")
    total_pct = sum((s.percentage for s in specs), Decimal("0"))
    if abs(total_pct - HUNDRED) > PERCENT_TOLERANCE:
        raise ValidationError("installment percentages must sum to 100", field="installments")
    return specs


def generate_installments(
    total_amount: Union[Decimal, int, float, str], plan: Iterable[SpecLike]
) -> List[Installment]:
    """
    Un versement par ligne du plan : round2(total × pct / 100).
    Le dernier absorbe l'écart d'arrondi (total − somme des précédents),
    jamais de redistribution proportionnelle.
    """
    specs = validate_plan(plan)
    total = round2(total_amount, "total_amount")
    if total < 0:
        raise ValidationError("total amount must not be negative", field="total_amount")

    out: List[Installment] = []
    allocated = Decimal("0.00")
    for pos, spec in enumerate(specs):
        if pos == len(specs) - 1:
            amount = total - allocated
        else:
            amount = round2(total * spec.percentage / HUNDRED)
            allocated += amount
        out.append(Installment(
            description=spec.description,
            percentage=spec.percentage,
            amount=amount,
            due_date=spec.due_date,
        ))
    return out


def default_installment_plan(
    defaults: BillingDefaults, issue_date: date, due_date: Optional[date] = None
) -> List[InstallmentSpec]:
    """Plan système en trois versements (acompte, livraison, réception)."""
    plan = defaults.installment_plan
    final_due = due_date or issue_date + timedelta(days=defaults.payment_terms_days)
    return [
        InstallmentSpec(description="Down payment on order confirmation",
                        percentage=plan.first_rate, due_date=issue_date),
        InstallmentSpec(description="Partial payment on delivery of materials",
                        percentage=plan.second_rate,
                        due_date=issue_date + timedelta(days=SECOND_RATE_OFFSET_DAYS)),
        InstallmentSpec(description="Final payment on acceptance",
                        percentage=plan.final_rate, due_date=final_due),
    ]


def reschedule(invoice: Invoice, plan: Optional[Iterable[SpecLike]] = None) -> Invoice:
    """
    Recalcule les montants de l'échéancier après un changement de total.
    Sans plan explicite, on garde descriptions, pourcentages, échéances et paiements.
    """
    if invoice.payment_schedule != INSTALLMENTS:
        return invoice.model_copy(update={"installments": []}, deep=True)
    source = list(plan) if plan is not None else list(invoice.installments)
    fresh = generate_installments(invoice.total_amount, source)
    if plan is None:
        for new, old in zip(fresh, invoice.installments):
            new.is_paid = old.is_paid
            new.paid_date = old.paid_date
    return invoice.model_copy(update={"installments": fresh}, deep=True)


# ---------- Statut ---------- #

def rolled_up_status(invoice: Invoice) -> str:
    """Statut déduit des versements ; ne touche que l'axe payé / partiel / impayé."""
    if invoice.status == CANCELLED or not invoice.installments:
        return invoice.status
    paid = sum(1 for i in invoice.installments if i.is_paid)
    if paid == len(invoice.installments):
        return PAID
    if paid:
        return PARTIALLY_PAID
    return SENT if invoice.sent_at is not None else CREATED


def roll_up_status(invoice: Invoice, now: Optional[datetime] = None) -> Invoice:
    status = rolled_up_status(invoice)
    update: dict = {"status": status}
    if status == PAID:
        update["paid_at"] = invoice.paid_at or (now or utcnow())
    else:
        update["paid_at"] = None
    return invoice.model_copy(update=update, deep=True)


def mark_installment_paid(
    invoice: Invoice, index: int, is_paid: bool, now: Optional[datetime] = None
) -> Invoice:
    if invoice.status == CANCELLED:
        raise InvalidTransitionError(
            invoice.status, PAID if is_paid else "UNPAID",
            "cancelled invoices cannot record payments",
        )
    count = len(invoice.installments)
    if index < 0 or index >= count:
        raise InstallmentNotFoundError(index, count)

    now = now or utcnow()
    updated = invoice.model_copy(deep=True)
    inst = updated.installments[index]
    if is_paid:
        # idempotent : un second marquage garde la date du premier
        if not inst.is_paid:
            inst.is_paid = True
            inst.paid_date = now
    else:
        inst.is_paid = False
        inst.paid_date = None
    return roll_up_status(updated, now)


def set_status(invoice: Invoice, new_status: str, now: Optional[datetime] = None) -> Invoice:
    """
    CREATED → SENT → {PARTIALLY_PAID ↔ PAID} ; tout statut → CANCELLED (terminal).
    Avec échéancier, seuls SENT et CANCELLED se posent à la main.
    """
    current = invoice.status
    if current == CANCELLED:
        raise InvalidTransitionError(current, new_status, "cancelled invoices cannot change status")
    if new_status not in INVOICE_STATUSES:
        raise ValidationError(f"unknown invoice status {new_status!r}", field="status")

    now = now or utcnow()
    update: dict = {"status": new_status}

    if new_status == SENT:
        if current != CREATED:
            raise InvalidTransitionError(current, new_status, "only newly created invoices can be sent")
        update["sent_at"] = now
    elif new_status == CANCELLED:
        update["cancelled_at"] = now
    elif new_status == CREATED:
        raise InvalidTransitionError(current, new_status)
    else:
        if invoice.payment_schedule == INSTALLMENTS:
            raise InvalidTransitionError(
                current, new_status,
                "payment status of installment invoices follows the installments",
            )
        if current not in (SENT, PARTIALLY_PAID, PAID):
            raise InvalidTransitionError(current, new_status, "invoice must be sent before payment")
        update["paid_at"] = (invoice.paid_at or now) if new_status == PAID else None

    return invoice.model_copy(update=update, deep=True)


def check_time_entry_claims(ids: Sequence[str]) -> List[str]:
    """Une même saisie de temps ne peut pas être revendiquée deux fois par la même facture."""
    seen = set()
    for tid in ids:
        if tid in seen:
            raise ValidationError(f"time entry {tid} listed twice", field="time_entry_ids")
        seen.add(tid)
    return list(ids)
