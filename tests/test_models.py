from decimal import Decimal

import pydantic
import pytest

from invoicing.errors import NotFoundError, ValidationError
from invoicing.models.common import round2, to_decimal
from invoicing.models.customer import Customer
from invoicing.models.invoice import Invoice


def test_invoice_document_uses_camel_case_and_derived_totals(items):
    doc = Invoice(customer_id="c-1", items=items, invoice_number="R203001-0001").to_document()
    assert doc["invoiceNumber"] == "R203001-0001"
    assert doc["customerId"] == "c-1"
    assert doc["items"][0] == {"description": "Cabinet", "quantity": 2.0, "unitPrice": 50.0, "timeEntryId": None}
    assert (doc["subtotal"], doc["taxAmount"], doc["totalAmount"]) == (130.0, 24.7, 154.7)
    assert doc["paymentSchedule"] == "FULL"
    assert doc["timeEntryIds"] == []


def test_stored_totals_are_never_trusted(items):
    doc = Invoice(customer_id="c-1", items=items).to_document()
    doc["subtotal"] = 1.0
    doc["totalAmount"] = 2.0
    inv = Invoice.model_validate(doc)
    assert inv.subtotal == Decimal("130.00")
    assert inv.total_amount == Decimal("154.70")


@pytest.mark.parametrize("changes", [
    {"items": []},
    {"customer_id": ""},
    {"issue_date": "2030-02-01", "due_date": "2030-01-01"},
    {"installments": [{"description": "x", "percentage": 100, "amount": 1}]},
    {"time_entry_ids": ["a", "a"]},
    {"tax_rate_percent": -1},
])
def test_invoice_shape_is_validated(items, changes):
    data = {"customer_id": "c-1", "items": items}
    data.update(changes)
    with pytest.raises(pydantic.ValidationError):
        Invoice.model_validate(data)


def test_customer_directory(customers):
    c = customers.add_customer(Customer(name="Acme", email="billing@acme.com"))
    assert customers.get(c.id).name == "Acme"
    c.phone = "+49 30 123456"
    customers.update_customer(c)
    assert customers.get(c.id).phone == "+49 30 123456"
    assert [x.id for x in customers.list_customers()] == [c.id]
    customers.delete_customer(c.id)
    with pytest.raises(NotFoundError):
        customers.get(c.id)
    with pytest.raises(NotFoundError):
        customers.delete_customer(c.id)


def test_customer_email_is_validated():
    with pytest.raises(pydantic.ValidationError):
        Customer(name="Acme", email="not-an-email")


def test_order_catalog(orders, order, customer):
    assert orders.get(order.id).items_total() == Decimal("100.00")
    assert order.order_number == "A-00001"
    assert [o.id for o in orders.list_orders(customer_id=customer.id)] == [order.id]
    assert orders.list_orders(customer_id="other") == []
    with pytest.raises(NotFoundError):
        orders.get("missing")


def test_to_decimal_parses_amounts_exactly():
    assert to_decimal(0.1) == Decimal("0.1")
    assert to_decimal(" 12.50 ") == Decimal("12.50")
    assert round2("2.675") == Decimal("2.68")


@pytest.mark.parametrize("bad", ["abc", None, "nan", float("inf")])
def test_to_decimal_rejects_non_finite_values(bad):
    with pytest.raises(ValidationError) as info:
        to_decimal(bad, "amount")
    assert info.value.field == "amount"
