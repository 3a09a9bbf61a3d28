from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from invoicing.models.customer import Customer
from invoicing.models.invoice import LineItem
from invoicing.models.order import Order
from invoicing.models.settings import BillingDefaults
from invoicing.models.time_entry import TimeEntry
from invoicing.services.customer_service import CustomerService
from invoicing.services.invoice_service import InvoiceService
from invoicing.services.order_service import OrderService
from invoicing.services.settings_service import SettingsService
from invoicing.services.time_tracking_service import TimeTrackingService


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def settings(data_dir):
    svc = SettingsService(data_dir)
    svc.update_billing_defaults(BillingDefaults(hourly_rate=Decimal("80"), billing_interval_minutes=15))
    return svc


@pytest.fixture
def customers(data_dir):
    return CustomerService(data_dir)


@pytest.fixture
def orders(data_dir):
    return OrderService(data_dir)


@pytest.fixture
def ledger(data_dir, settings):
    return TimeTrackingService(data_dir, settings=settings)


@pytest.fixture
def service(data_dir, settings, customers, orders, ledger):
    return InvoiceService(data_dir, customers=customers, orders=orders, time_entries=ledger, settings=settings)


@pytest.fixture
def customer(customers):
    return customers.add_customer(Customer(name="Muster GmbH", email="buchhaltung@muster.de"))


@pytest.fixture
def order(orders, customer):
    return orders.add_order(Order(
        customer_id=customer.id,
        description="Kitchen renovation",
        items=[LineItem(description="Cabinet", quantity=2, unit_price=Decimal("50.00"))],
    ))


@pytest.fixture
def make_entry(ledger):
    def _make(minutes, description="Installation", order_id=None):
        start = datetime(2030, 1, 1, 9, 0, tzinfo=timezone.utc)
        end = start + timedelta(minutes=minutes)
        return ledger.add_entry(TimeEntry(description=description, start_time=start, end_time=end, order_id=order_id))
    return _make


@pytest.fixture
def items():
    return [
        {"description": "Cabinet", "quantity": 2, "unitPrice": "50.00"},
        {"description": "Handles", "quantity": 1, "unitPrice": "30.00"},
    ]
