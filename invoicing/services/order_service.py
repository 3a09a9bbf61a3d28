from __future__ import annotations
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from invoicing.config import ORDERS_JSON, data_path
from invoicing.errors import from_pydantic
from invoicing.models.order import Order
from invoicing.storage.json_repo import JsonRepository

logger = logging.getLogger(__name__)


class OrderService:
    """Catalogue des commandes ; leurs lignes peuvent amorcer une facture."""

    def __init__(self, data_dir: Optional[str | Path] = None):
        self.repo = JsonRepository(data_path(ORDERS_JSON, data_dir), entity_name="order", key="id")

    def list_orders(self, customer_id: Optional[str] = None) -> List[Order]:
        out: List[Order] = []
        for d in self.repo.list_all():
            if customer_id and d.get("customerId") != customer_id:
                continue
            try:
                out.append(Order.model_validate(d))
            except ValidationError:
                logger.warning("Skipping invalid order record %s", d.get("id"))
                continue
        return out

    def add_order(self, order: Order) -> Order:
        if not order.order_number:
            order.order_number = f"A-{len(self.repo.list_all()) + 1:05d}"
        self.repo.add(order)
        return order

    def get(self, order_id: str) -> Order:
        d = self.repo.require(order_id)
        try:
            return Order.model_validate(d)
        except ValidationError as exc:
            raise from_pydantic(exc, prefix="order.") from exc
