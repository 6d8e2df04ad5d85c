"""
Order Ledger - Payment Tests

Withholding, currency conversion, invoice balances and the bank entries
that follow a payment through edits, deletes and reversals.
"""
from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import event

from conftest import item
from orderledger.core.config import settings
from orderledger.core.exceptions import (
    AmountExceedsOutstanding, CurrencyMismatch, InvalidAmount, InvalidExchangeRate,
    InvalidInput, InvalidState, MissingConversionRate
)
from orderledger.models import BankTransaction, Payment
from orderledger.schemas import AdvancePaymentCreate, InvoicePaymentCreate, PaymentUpdate
from orderledger.services.invoice_service import InvoiceService
from orderledger.services.payment_service import PaymentService


@pytest.fixture
def payments(db_session):
    return PaymentService(db_session)


@pytest.fixture
def invoice_for(db_session):
    def _get(order):
        return InvoiceService(db_session).get_by_order(order.id)
    return _get


def invoice_payment(invoice, amount, reference="TT-1", **kwargs):
    return InvoicePaymentCreate(invoice_id=invoice.id, amount=Decimal(amount), reference=reference, **kwargs)


def ten_thousand():
    return [item(quantity="100", unit_price="100")]


class TestInvoicePayments:
    def test_local_withholding(self, payments, shipped_order, invoice_for, local_client, pkr_account, bank):
        invoice = invoice_for(shipped_order(local_client, items=ten_thousand()))

        payment = payments.record_invoice_payment(invoice_payment(
            invoice, "10000", bank_account_id=pkr_account.id, withheld_tax_rate=Decimal("4.5")
        ))

        assert payment.type == "invoice"
        assert payment.currency == "PKR"
        assert payment.withheld_tax_amount == Decimal("450")
        assert payment.cash_received == Decimal("9550.00")
        assert invoice.total_paid == Decimal("10000.00")
        assert invoice.outstanding_balance == Decimal("0")
        assert invoice.status == "paid"

        entries = bank.entries_for_payment(payment.id)
        assert len(entries) == 1
        assert entries[0].transaction_type == "payment_received"
        assert entries[0].amount == Decimal("9550.00")
        assert pkr_account.current_balance == Decimal("109550.00")

    def test_withholding_rounds_to_whole_units(self, payments, shipped_order, invoice_for, local_client):
        invoice = invoice_for(shipped_order(local_client, items=ten_thousand()))
        payment = payments.record_invoice_payment(invoice_payment(
            invoice, "1010", withheld_tax_rate=Decimal("4.5")
        ))
        # 45.45 -> 45
        assert payment.withheld_tax_amount == Decimal("45")
        assert payment.cash_received == Decimal("965.00")

    def test_partial_then_full(self, payments, shipped_order, invoice_for, local_client):
        invoice = invoice_for(shipped_order(local_client, items=ten_thousand()))

        payments.record_invoice_payment(invoice_payment(invoice, "4000", reference="TT-1"))
        assert invoice.status == "partially_paid"
        assert invoice.outstanding_balance == Decimal("6000.00")

        payments.record_invoice_payment(invoice_payment(invoice, "6000", reference="TT-2"))
        assert invoice.status == "paid"
        assert invoice.outstanding_balance == Decimal("0")

        with pytest.raises(AmountExceedsOutstanding):
            payments.record_invoice_payment(invoice_payment(invoice, "1", reference="TT-3"))

    def test_overpayment_is_rejected(self, payments, shipped_order, invoice_for, local_client, db_session):
        invoice = invoice_for(shipped_order(local_client, items=ten_thousand()))
        with pytest.raises(AmountExceedsOutstanding) as exc:
            payments.record_invoice_payment(invoice_payment(invoice, "10000.01"))
        assert exc.value.details["outstanding_balance"] == Decimal("10000.00")
        assert db_session.query(Payment).count() == 0

    def test_invoice_not_yet_due_takes_no_payment(self, payments, make_order, invoice_for, local_client):
        invoice = invoice_for(make_order(local_client))
        with pytest.raises(AmountExceedsOutstanding):
            payments.record_invoice_payment(invoice_payment(invoice, "1"))

    @pytest.mark.parametrize("amount", ["0", "-5", "0.004"])
    def test_amount_must_be_positive(self, payments, shipped_order, invoice_for, local_client,
                                     db_session, amount):
        invoice = invoice_for(shipped_order(local_client))
        with pytest.raises(InvalidAmount):
            payments.record_invoice_payment(invoice_payment(invoice, amount))
        assert db_session.query(Payment).count() == 0

    def test_reference_required(self, payments, shipped_order, invoice_for, local_client):
        invoice = invoice_for(shipped_order(local_client))
        with pytest.raises(InvalidInput):
            payments.record_invoice_payment(invoice_payment(invoice, "10", reference="   "))

    def test_local_payment_with_optional_rate(self, payments, shipped_order, invoice_for, local_client):
        invoice = invoice_for(shipped_order(local_client, items=ten_thousand()))
        payment = payments.record_invoice_payment(invoice_payment(
            invoice, "10000", conversion_rate_to_usd=Decimal("0.0036")
        ))
        assert payment.converted_amount_usd == Decimal("36.00")

    def test_local_rate_must_be_positive(self, payments, shipped_order, invoice_for, local_client):
        invoice = invoice_for(shipped_order(local_client))
        with pytest.raises(InvalidExchangeRate):
            payments.record_invoice_payment(invoice_payment(
                invoice, "10", conversion_rate_to_usd=Decimal("0")
            ))

    def test_local_money_cannot_land_in_usd_account(self, payments, shipped_order, invoice_for,
                                                   local_client, usd_account):
        invoice = invoice_for(shipped_order(local_client))
        with pytest.raises(CurrencyMismatch):
            payments.record_invoice_payment(invoice_payment(invoice, "10", bank_account_id=usd_account.id))


class TestInternationalPayments:
    def test_usd_invoice_converts_one_to_one(self, payments, shipped_order, invoice_for,
                                             international_client, usd_account):
        invoice = invoice_for(shipped_order(international_client))
        payment = payments.record_invoice_payment(invoice_payment(
            invoice, "500", bank_account_id=usd_account.id, withheld_tax_rate=Decimal("4.5")
        ))

        assert payment.converted_amount_usd == Decimal("500.00")
        assert payment.withheld_tax_amount is None
        assert payment.cash_received == Decimal("500.00")
        assert usd_account.current_balance == Decimal("500.00")

    @pytest.mark.parametrize("rate", ["1", "1.000"])
    def test_usd_invoice_drops_a_unit_rate(self, payments, shipped_order, invoice_for, international_client, rate):
        invoice = invoice_for(shipped_order(international_client))
        payment = payments.record_invoice_payment(invoice_payment(
            invoice, "100", conversion_rate_to_usd=Decimal(rate)
        ))
        assert payment.conversion_rate_to_usd is None
        assert payment.converted_amount_usd == Decimal("100.00")

    @pytest.mark.parametrize("rate", ["-2", "0", "280"])
    def test_usd_invoice_rejects_other_rates(self, payments, shipped_order, invoice_for, international_client, rate):
        invoice = invoice_for(shipped_order(international_client))
        with pytest.raises(InvalidExchangeRate):
            payments.record_invoice_payment(invoice_payment(
                invoice, "100", conversion_rate_to_usd=Decimal(rate)
            ))

    def test_foreign_invoice_needs_a_rate(self, payments, shipped_order, invoice_for, international_client):
        invoice = invoice_for(shipped_order(international_client, currency="EUR"))
        with pytest.raises(MissingConversionRate):
            payments.record_invoice_payment(invoice_payment(invoice, "100"))

    def test_foreign_invoice_deposits_converted_amount(self, payments, shipped_order, invoice_for,
                                                       international_client, usd_account, bank):
        invoice = invoice_for(shipped_order(international_client, currency="EUR"))
        payment = payments.record_invoice_payment(invoice_payment(
            invoice, "100", bank_account_id=usd_account.id, conversion_rate_to_usd=Decimal("1.085")
        ))

        assert payment.currency == "EUR"
        assert payment.converted_amount_usd == Decimal("108.50")
        assert bank.entries_for_payment(payment.id)[0].amount == Decimal("108.50")
        assert usd_account.current_balance == Decimal("108.50")

    def test_international_money_lands_in_usd(self, payments, shipped_order, invoice_for,
                                              international_client, pkr_account):
        invoice = invoice_for(shipped_order(international_client))
        with pytest.raises(CurrencyMismatch):
            payments.record_invoice_payment(invoice_payment(invoice, "10", bank_account_id=pkr_account.id))


class TestAdvancePayments:
    def test_local_advance(self, payments, local_client, pkr_account, invoice_for):
        payment = payments.record_advance_payment(AdvancePaymentCreate(
            client_id=local_client.id, amount=Decimal("5000"), reference="ADV-1",
            bank_account_id=pkr_account.id
        ))

        assert payment.type == "advance"
        assert payment.invoice_id is None
        assert payment.currency == "PKR"
        assert pkr_account.current_balance == Decimal("105000.00")

    def test_international_advance_is_in_usd(self, payments, international_client):
        payment = payments.record_advance_payment(AdvancePaymentCreate(
            client_id=international_client.id, amount=Decimal("250"), reference="ADV-2"
        ))
        assert payment.currency == "USD"
        assert payment.converted_amount_usd == Decimal("250.00")


class TestPaymentChanges:
    def _paid(self, payments, shipped_order, invoice_for, local_client, pkr_account, amount="4000"):
        invoice = invoice_for(shipped_order(local_client, items=ten_thousand()))
        payment = payments.record_invoice_payment(invoice_payment(
            invoice, amount, bank_account_id=pkr_account.id
        ))
        return invoice, payment

    def test_edit_moves_invoice_and_bank(self, payments, shipped_order, invoice_for, local_client,
                                         pkr_account, bank):
        invoice, payment = self._paid(payments, shipped_order, invoice_for, local_client, pkr_account)

        payments.update_payment(payment.id, PaymentUpdate(amount=Decimal("5000"), reference="TT-1B"))

        assert payment.reference == "TT-1B"
        assert invoice.total_paid == Decimal("5000.00")
        assert invoice.outstanding_balance == Decimal("5000.00")
        entries = bank.entries_for_payment(payment.id)
        assert [(e.amount, e.is_reversed) for e in entries] == [
            (Decimal("4000.00"), True), (Decimal("5000.00"), False)
        ]
        assert pkr_account.current_balance == Decimal("105000.00")

    def test_edit_locks_invoice_before_bank_account(self, payments, shipped_order, invoice_for, local_client,
                                                   pkr_account, engine):
        _, payment = self._paid(payments, shipped_order, invoice_for, local_client, pkr_account)
        selects = []

        def capture(conn, cursor, statement, parameters, context, executemany):
            if statement.lstrip().upper().startswith("SELECT"):
                selects.append(statement)

        event.listen(engine, "before_cursor_execute", capture)
        try:
            payments.update_payment(payment.id, PaymentUpdate(amount=Decimal("6000")))
        finally:
            event.remove(engine, "before_cursor_execute", capture)

        reads = [s for s in selects if "FROM invoices" in s or "FROM bank_accounts" in s]
        assert "FROM invoices" in reads[0]

    def test_edit_without_bank_reversal(self, payments, shipped_order, invoice_for, local_client,
                                        pkr_account, bank, monkeypatch):
        monkeypatch.setattr(settings, "REVERSE_BANK_ENTRY_ON_PAYMENT_CHANGE", False)
        invoice, payment = self._paid(payments, shipped_order, invoice_for, local_client, pkr_account)

        payments.update_payment(payment.id, PaymentUpdate(amount=Decimal("5000")))

        assert invoice.total_paid == Decimal("5000.00")
        assert len(bank.entries_for_payment(payment.id)) == 1
        assert pkr_account.current_balance == Decimal("104000.00")

    def test_edit_rejects_bad_amount(self, payments, shipped_order, invoice_for, local_client, pkr_account):
        _, payment = self._paid(payments, shipped_order, invoice_for, local_client, pkr_account)
        with pytest.raises(InvalidAmount):
            payments.update_payment(payment.id, PaymentUpdate(amount=Decimal("0")))

    def test_delete_restores_invoice_and_bank(self, payments, shipped_order, invoice_for, local_client,
                                              pkr_account, db_session):
        invoice, payment = self._paid(payments, shipped_order, invoice_for, local_client, pkr_account)

        payments.delete_payment(payment.id)

        assert db_session.query(Payment).count() == 0
        assert invoice.total_paid == Decimal("0")
        assert invoice.status == "unpaid"
        assert invoice.outstanding_balance == Decimal("10000.00")
        entry = db_session.query(BankTransaction).one()
        assert entry.is_reversed
        assert entry.payment_id is None
        assert pkr_account.current_balance == Decimal("100000.00")

    def test_reverse_keeps_the_record(self, payments, shipped_order, invoice_for, local_client,
                                      pkr_account, bank):
        invoice, payment = self._paid(payments, shipped_order, invoice_for, local_client, pkr_account)

        payments.reverse_payment(payment.id, "Cheque bounced")

        assert payment.is_reversed
        assert payment.reversal_reason == "Cheque bounced"
        assert invoice.total_paid == Decimal("0")
        assert all(e.is_reversed for e in bank.entries_for_payment(payment.id))
        assert pkr_account.current_balance == Decimal("100000.00")

        with pytest.raises(InvalidState):
            payments.reverse_payment(payment.id)
        with pytest.raises(InvalidState):
            payments.update_payment(payment.id, PaymentUpdate(amount=Decimal("1")))

    def test_deleting_a_reversed_payment_does_not_refund_twice(self, payments, shipped_order, invoice_for,
                                                               local_client, pkr_account):
        invoice, first = self._paid(payments, shipped_order, invoice_for, local_client, pkr_account)
        payments.record_invoice_payment(invoice_payment(invoice, "3000", reference="TT-2"))
        payments.reverse_payment(first.id)

        payments.delete_payment(first.id)

        assert invoice.total_paid == Decimal("3000.00")
        assert pkr_account.current_balance == Decimal("100000.00")


class TestPaymentReads:
    def test_filters_and_fiscal_year(self, payments, shipped_order, invoice_for, local_client):
        invoice = invoice_for(shipped_order(local_client, order_creation_date=datetime(2024, 8, 1)))
        in_year = payments.record_invoice_payment(invoice_payment(invoice, "100"))
        advance = payments.record_advance_payment(AdvancePaymentCreate(
            client_id=local_client.id, amount=Decimal("50"), reference="ADV-1", payment_date=date(2024, 9, 1)
        ))
        payments.record_advance_payment(AdvancePaymentCreate(
            client_id=local_client.id, amount=Decimal("70"), reference="ADV-2", payment_date=date(2023, 9, 1)
        ))

        assert {p.id for p in payments.list(fiscal_year=2024)} == {in_year.id, advance.id}
        assert len(payments.list(payment_type="advance")) == 2
        assert len(payments.list(start_date=date(2024, 1, 1), end_date=date(2024, 12, 31))) == 1

    def test_stats_skip_reversed(self, payments, shipped_order, invoice_for, local_client):
        invoice = invoice_for(shipped_order(local_client, items=ten_thousand()))
        payments.record_invoice_payment(invoice_payment(
            invoice, "2000", reference="TT-1", withheld_tax_rate=Decimal("4.5")
        ))
        bounced = payments.record_invoice_payment(invoice_payment(invoice, "1000", reference="TT-2",
                                                                  method="check"))
        payments.reverse_payment(bounced.id)

        stats = payments.get_stats()
        assert stats["total_payments"] == 1
        assert stats["amount_by_currency"] == {"PKR": Decimal("2000.00")}
        assert stats["total_withheld_tax"] == Decimal("90.00")
        assert stats["by_method"]["bank_transfer"]["count"] == 1

    def test_client_history(self, payments, shipped_order, invoice_for, local_client):
        invoice = invoice_for(shipped_order(local_client, items=ten_thousand()))
        payments.record_invoice_payment(invoice_payment(invoice, "4000"))
        payments.record_advance_payment(AdvancePaymentCreate(
            client_id=local_client.id, amount=Decimal("500"), reference="ADV-1"
        ))

        history = payments.get_client_history(local_client.id)
        assert len(history["payments"]) == 2
        assert history["outstanding_total"] == Decimal("6000.00")
        assert history["advance_total"] == Decimal("500.00")
