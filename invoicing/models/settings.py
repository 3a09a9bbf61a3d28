from __future__ import annotations
from pydantic import Field
from decimal import Decimal

from .common import Document, Money
from .invoice import FULL, PaymentSchedule


class InstallmentPlan(Document):
    first_rate: Money = Field(default=Decimal("30"), ge=0, le=100)
    second_rate: Money = Field(default=Decimal("30"), ge=0, le=100)
    final_rate: Money = Field(default=Decimal("40"), ge=0, le=100)


class BillingDefaults(Document):
    tax_rate_percent: Money = Field(default=Decimal("19"), ge=0)
    payment_terms_days: int = Field(default=30, ge=0)
    default_payment_schedule: PaymentSchedule = FULL
    installment_plan: InstallmentPlan = Field(default_factory=InstallmentPlan)
    hourly_rate: Money = Field(default=Decimal("0"), ge=0)
    billing_interval_minutes: int = Field(default=15, ge=0)
