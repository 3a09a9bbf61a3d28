from __future__ import annotations
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from invoicing.config import CUSTOMERS_JSON, data_path
from invoicing.errors import NotFoundError, from_pydantic
from invoicing.models.customer import Customer
from invoicing.storage.json_repo import JsonRepository

logger = logging.getLogger(__name__)


class CustomerService:
    """Annuaire clients : seules les factures y font référence (customer_id)."""

    def __init__(self, data_dir: Optional[str | Path] = None):
        self.repo = JsonRepository(data_path(CUSTOMERS_JSON, data_dir), entity_name="customer", key="id")

    def list_customers(self) -> List[Customer]:
        out: List[Customer] = []
        for d in self.repo.list_all():
            try:
                out.append(Customer.model_validate(d))
            except ValidationError:
                # On ignore les entrées invalides pour ne pas casser les listes
                logger.warning("Skipping invalid customer record %s", d.get("id"))
                continue
        return out

    def add_customer(self, customer: Customer) -> Customer:
        self.repo.add(customer)
        return customer

    def update_customer(self, customer: Customer) -> Customer:
        customer.touch()
        self.repo.update(customer)
        return customer

    def delete_customer(self, customer_id: str) -> None:
        if not self.repo.delete(customer_id):
            raise NotFoundError("customer", customer_id)

    def get(self, customer_id: str) -> Customer:
        d = self.repo.require(customer_id)
        try:
            return Customer.model_validate(d)
        except ValidationError as exc:
            raise from_pydantic(exc, prefix="customer.") from exc
