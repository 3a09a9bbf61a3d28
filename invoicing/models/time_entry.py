from __future__ import annotations
from pydantic import Field, model_validator
from typing import Optional
from datetime import datetime
from decimal import Decimal

from .common import Document, Money, gen_id, round2


def round_up_to_interval(minutes: int, interval: int) -> int:
    """Arrondit une durée à l'intervalle de facturation supérieur (15 min par défaut)."""
    if interval <= 0:
        return minutes
    full, rest = divmod(minutes, interval)
    return (full + 1) * interval if rest else full * interval


class TimeEntry(Document):
    id: str = Field(default_factory=gen_id)
    user_id: Optional[str] = None
    order_id: Optional[str] = None
    description: str = Field(min_length=1)
    start_time: datetime
    end_time: datetime

    duration_minutes: int = 0
    billable_minutes: int = 0
    hourly_rate: Money = Field(default=Decimal("0"), ge=0)
    amount: Money = Decimal("0.00")

    billed: bool = False
    invoice_id: Optional[str] = None

    @model_validator(mode="after")
    def _check_times(self) -> "TimeEntry":
        if self.end_time < self.start_time:
            raise ValueError("end time must not be before start time")
        return self

    def compute_billing(self, billing_interval_minutes: int, default_hourly_rate: Decimal) -> None:
        """Durée réelle, durée facturable et montant (figés au moment de la saisie)."""
        self.duration_minutes = round((self.end_time - self.start_time).total_seconds() / 60)
        if not self.hourly_rate:
            self.hourly_rate = default_hourly_rate
        self.billable_minutes = round_up_to_interval(self.duration_minutes, billing_interval_minutes)
        self.amount = round2(Decimal(self.billable_minutes) / Decimal(60) * self.hourly_rate)

    @property
    def billable_hours(self) -> Decimal:
        return Decimal(self.billable_minutes) / Decimal(60)
