from __future__ import annotations
from pydantic import Field
from typing import List, Literal, Optional
from decimal import Decimal

from .common import TimeStamped, gen_id, round2
from .invoice import LineItem

OrderStatus = Literal["OPEN", "IN_PROGRESS", "COMPLETED", "CANCELLED"]

class Order(TimeStamped):
    id: str = Field(default_factory=gen_id)
    order_number: Optional[str] = None
    customer_id: str
    description: Optional[str] = None
    status: OrderStatus = "OPEN"
    items: List[LineItem] = Field(default_factory=list)

    def items_total(self) -> Decimal:
        return round2(sum((it.line_total for it in self.items), Decimal("0")))
