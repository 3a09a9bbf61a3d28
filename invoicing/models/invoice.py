from __future__ import annotations
from pydantic import Field, computed_field, field_validator, model_validator
from typing import List, Literal, Optional
from datetime import date, datetime
from decimal import Decimal

from .common import Document, Money, TimeStamped, gen_id, round2

PaymentSchedule = Literal["FULL", "INSTALLMENTS"]
InvoiceStatus = Literal["CREATED", "SENT", "PARTIALLY_PAID", "PAID", "CANCELLED"]

FULL: PaymentSchedule = "FULL"
INSTALLMENTS: PaymentSchedule = "INSTALLMENTS"

CREATED: InvoiceStatus = "CREATED"
SENT: InvoiceStatus = "SENT"
PARTIALLY_PAID: InvoiceStatus = "PARTIALLY_PAID"
PAID: InvoiceStatus = "PAID"
CANCELLED: InvoiceStatus = "CANCELLED"

INVOICE_STATUSES = (CREATED, SENT, PARTIALLY_PAID, PAID, CANCELLED)


class LineItem(Document):
    description: str = Field(min_length=1)
    quantity: Money = Field(gt=0)
    unit_price: Money = Field(ge=0)
    # renseigné quand la ligne facture une saisie de temps
    time_entry_id: Optional[str] = None

    @field_validator("description")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("description must not be blank")
        return v

    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.unit_price


class InstallmentSpec(Document):
    """Une ligne de plan de paiement, avant calcul des montants."""
    description: str
    percentage: Money = Field(ge=0, le=100)
    due_date: Optional[date] = None


class Installment(Document):
    description: str
    percentage: Money = Field(ge=0, le=100)
    amount: Money = Decimal("0.00")
    due_date: Optional[date] = None
    is_paid: bool = False
    paid_date: Optional[datetime] = None

    def to_spec(self) -> InstallmentSpec:
        return InstallmentSpec(description=self.description, percentage=self.percentage, due_date=self.due_date)


class Invoice(TimeStamped):
    id: str = Field(default_factory=gen_id)
    invoice_number: Optional[str] = None
    version: int = 0

    customer_id: str = Field(min_length=1)
    order_id: Optional[str] = None

    items: List[LineItem] = Field(min_length=1)
    tax_rate_percent: Money = Field(default=Decimal("19"), ge=0)

    payment_schedule: PaymentSchedule = FULL
    installments: List[Installment] = Field(default_factory=list)
    status: InvoiceStatus = CREATED

    issue_date: date = Field(default_factory=date.today)
    due_date: Optional[date] = None

    time_entry_ids: List[str] = Field(default_factory=list)
    notes: Optional[str] = None

    sent_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_shape(self) -> "Invoice":
        if self.due_date is not None and self.due_date < self.issue_date:
            raise ValueError("due date must not be before issue date")
        if self.payment_schedule == FULL and self.installments:
            raise ValueError("installments are only allowed with the INSTALLMENTS schedule")
        if len(set(self.time_entry_ids)) != len(self.time_entry_ids):
            raise ValueError("time entries must not be listed twice")
        return self

    # Totaux dérivés : recalculés à chaque accès, ignorés à la relecture
    @computed_field
    @property
    def subtotal(self) -> Money:
        return round2(sum((it.line_total for it in self.items), Decimal("0")))

    @computed_field(alias="taxAmount")
    @property
    def tax_amount(self) -> Money:
        return round2(self.subtotal * self.tax_rate_percent / Decimal("100"))

    @computed_field(alias="totalAmount")
    @property
    def total_amount(self) -> Money:
        return self.subtotal + self.tax_amount

    # helpers
    def paid_amount(self) -> Decimal:
        if self.payment_schedule == INSTALLMENTS:
            return sum((i.amount for i in self.installments if i.is_paid), Decimal("0.00"))
        return self.total_amount if self.status == PAID else Decimal("0.00")

    def remaining_amount(self) -> Decimal:
        return max(Decimal("0.00"), self.total_amount - self.paid_amount())


class InvoiceCreate(Document):
    """Données d'entrée de create_invoice ; lignes libres, commande et saisies de temps se combinent."""
    customer_id: Optional[str] = None
    order_id: Optional[str] = None
    invoice_number: Optional[str] = None

    items: List[LineItem] = Field(default_factory=list)
    include_order_items: bool = False
    time_entry_ids: List[str] = Field(default_factory=list)
    bill_time_entries_as_items: bool = True

    tax_rate_percent: Optional[Money] = Field(default=None, ge=0)
    payment_schedule: Optional[PaymentSchedule] = None
    installment_plan: Optional[List[InstallmentSpec]] = None

    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
