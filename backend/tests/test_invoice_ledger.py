"""
Order Ledger - Invoice Balance Tests
"""
from datetime import date, timedelta
from decimal import Decimal

import pytest

from conftest import item
from orderledger.models import Invoice, Order
from orderledger.services.invoice_service import InvoiceService, recompute


def make_invoice(amount, total_paid="0"):
    return Invoice(amount=Decimal(amount), total_paid=Decimal(total_paid))


class TestRecompute:
    @pytest.mark.parametrize("status", ["shipped", "delivered"])
    @pytest.mark.parametrize("paid,outstanding,expected", [
        ("0", "1000.00", "unpaid"),
        ("250", "750.00", "partially_paid"),
        ("1000", "0.00", "paid"),
        ("1200", "0.00", "paid"),
    ])
    def test_due_invoice(self, status, paid, outstanding, expected):
        invoice = recompute(make_invoice("1000", paid), Order(status=status))
        assert invoice.outstanding_balance == Decimal(outstanding)
        assert invoice.status == expected

    @pytest.mark.parametrize("status", ["pending", "in_production", "cancelled"])
    @pytest.mark.parametrize("paid,expected", [
        ("0", "unpaid"),
        ("250", "partially_paid"),
        ("1000", "paid"),
    ])
    def test_not_due_invoice_has_no_balance(self, status, paid, expected):
        invoice = recompute(make_invoice("1000", paid), Order(status=status))
        assert invoice.outstanding_balance == Decimal("0")
        assert invoice.status == expected

    def test_zero_amount_invoice_before_shipping_is_unpaid(self):
        invoice = recompute(make_invoice("0"), Order(status="pending"))
        assert invoice.status == "unpaid"

    def test_idempotent(self):
        order = Order(status="shipped")
        invoice = recompute(make_invoice("1000", "400"), order)
        first = (invoice.outstanding_balance, invoice.status)
        recompute(invoice, order)
        assert (invoice.outstanding_balance, invoice.status) == first


class TestInvoiceService:
    def test_payment_delta_never_goes_negative(self, db_session, shipped_order, local_client):
        order = shipped_order(local_client)
        invoices = InvoiceService(db_session)
        invoice = invoices.get_by_order(order.id)

        invoices.apply_payment_delta(invoice, order, Decimal("-50"))
        assert invoice.total_paid == Decimal("0")
        assert invoice.outstanding_balance == order.total_amount

    def test_unpaid_and_stats(self, db_session, make_order, shipped_order, local_client):
        due = shipped_order(local_client, items=[item(quantity="10", unit_price="10")])
        make_order(local_client, items=[item(quantity="1", unit_price="10")])
        invoices = InvoiceService(db_session)

        unpaid = invoices.get_unpaid()
        assert [i.order_id for i in unpaid] == [due.id]

        stats = invoices.get_stats()
        assert stats["total_invoices"] == 2
        assert stats["total_amount"] == Decimal("110.00")
        assert stats["total_outstanding"] == Decimal("100.00")
        assert stats["status_counts"]["unpaid"] == 2
        assert stats["overdue_count"] == 0

    def test_overdue_count(self, db_session, shipped_order, local_client):
        order = shipped_order(local_client)
        invoices = InvoiceService(db_session)
        invoice = invoices.get_by_order(order.id)
        invoice.due_date = date.today() - timedelta(days=1)
        db_session.flush()

        assert invoices.get_stats()["overdue_count"] == 1

    def test_search_by_number_or_client(self, db_session, make_order, local_client, international_client):
        make_order(local_client, invoice_number="LHR-100")
        make_order(international_client, invoice_number="EXP-200")
        invoices = InvoiceService(db_session)

        assert [i.invoice_number for i in invoices.list(search="LHR")] == ["LHR-100"]
        assert [i.invoice_number for i in invoices.list(search="hamburg")] == ["EXP-200"]
