"""
Payment Service - Invoice payments, advances, withholding and conversion
"""
from typing import Optional, List, Dict
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import or_, and_
from decimal import Decimal
from datetime import date, datetime
import logging

from orderledger.core.config import settings
from orderledger.core.exceptions import (
    NotFound, InvalidAmount, AmountExceedsOutstanding, CurrencyMismatch,
    MissingConversionRate, InvalidExchangeRate, InvalidState, InvalidInput
)
from orderledger.core.money import ZERO, money, whole_units, to_decimal
from orderledger.models import (
    Payment, PaymentType, PaymentMethod, Invoice, Order, Client, BankAccount
)
from orderledger.schemas import InvoicePaymentCreate, AdvancePaymentCreate, PaymentUpdate
from orderledger.services import fiscal_calendar
from orderledger.services.audit_service import AuditService, AuditAction
from orderledger.services.bank_ledger_service import BankLedgerService
from orderledger.services.client_service import ClientService, is_local, settlement_currency
from orderledger.services.invoice_service import InvoiceService

logger = logging.getLogger(__name__)

PAYMENT_METHODS = {m.value for m in PaymentMethod}


class PaymentService:
    def __init__(self, db: Session, user_id: Optional[int] = None):
        self.db = db
        self.user_id = user_id
        self.audit = AuditService(db)
        self.bank_ledger = BankLedgerService(db, user_id=user_id)
        self.invoices = InvoiceService(db)
        self.clients = ClientService(db)

    # ==================== RECORDING ====================

    def record_invoice_payment(self, data: InvoicePaymentCreate) -> Payment:
        """Record money received against an invoice"""
        self._validate_basics(data.amount, data.reference, data.method)

        invoice = self.invoices.get_or_404(data.invoice_id, for_update=True)
        order = invoice.order
        client = self.clients.get_or_404(invoice.client_id)

        amount = money(data.amount)
        if amount > money(invoice.outstanding_balance):
            raise AmountExceedsOutstanding(
                f"Payment amount ({invoice.currency} {amount}) exceeds outstanding balance "
                f"({invoice.currency} {money(invoice.outstanding_balance)})",
                {"outstanding_balance": money(invoice.outstanding_balance)}
            )

        account = self._resolve_bank_account(data.bank_account_id, client, invoice.currency)
        derived = self._derive_amounts(
            client, invoice.currency, amount, data.conversion_rate_to_usd, data.withheld_tax_rate
        )

        payment = Payment(
            type=PaymentType.INVOICE.value,
            invoice_id=invoice.id,
            client_id=client.id,
            amount=amount,
            currency=invoice.currency,
            method=data.method,
            reference=data.reference.strip(),
            payment_date=data.payment_date or date.today(),
            bank_account_id=account.id if account else None,
            notes=data.notes,
            recorded_by=self.user_id,
            **derived
        )
        self.db.add(payment)
        self.db.flush()

        self.invoices.apply_payment_delta(invoice, order, amount)

        if account:
            self._post_receipt(account, payment, client)

        self.audit.log(
            "payments", payment.id, AuditAction.CREATE,
            f"Payment {payment.reference} of {payment.currency} {amount} recorded for invoice "
            f"{invoice.invoice_number}",
            {"invoice_id": invoice.id, "cash_received": payment.cash_received,
             "withheld_tax_amount": payment.withheld_tax_amount},
            user_id=self.user_id
        )
        self.audit.log(
            "orders", order.id, AuditAction.UPDATE,
            f"Payment of {payment.currency} {amount} received, invoice now {invoice.status}",
            {"payment_id": payment.id, "outstanding_balance": invoice.outstanding_balance},
            user_id=self.user_id
        )
        logger.info(f"Payment {payment.id} recorded against invoice {invoice.invoice_number}")
        return payment

    def record_advance_payment(self, data: AdvancePaymentCreate) -> Payment:
        """Record money received from a client ahead of any invoice"""
        self._validate_basics(data.amount, data.reference, data.method)

        client = self.clients.get_or_404(data.client_id)
        currency = settlement_currency(client)
        amount = money(data.amount)

        account = self._resolve_bank_account(data.bank_account_id, client, currency)
        derived = self._derive_amounts(
            client, currency, amount, data.conversion_rate_to_usd, data.withheld_tax_rate
        )

        payment = Payment(
            type=PaymentType.ADVANCE.value,
            invoice_id=None,
            client_id=client.id,
            amount=amount,
            currency=currency,
            method=data.method,
            reference=data.reference.strip(),
            payment_date=data.payment_date or date.today(),
            bank_account_id=account.id if account else None,
            notes=data.notes,
            recorded_by=self.user_id,
            **derived
        )
        self.db.add(payment)
        self.db.flush()

        if account:
            self._post_receipt(account, payment, client)

        self.audit.log(
            "payments", payment.id, AuditAction.CREATE,
            f"Advance payment {payment.reference} of {currency} {amount} recorded for {client.name}",
            {"client_id": client.id, "cash_received": payment.cash_received},
            user_id=self.user_id
        )
        return payment

    def _validate_basics(self, amount, reference: Optional[str], method: str) -> None:
        if money(amount) <= 0:
            raise InvalidAmount("Payment amount must be at least 0.01")
        if not reference or not reference.strip():
            raise InvalidInput("Payment reference is required")
        if method not in PAYMENT_METHODS:
            raise InvalidInput(f"Unknown payment method: {method}")

    def _resolve_bank_account(self, account_id: Optional[int], client: Client,
                              currency: str) -> Optional[BankAccount]:
        """
        Lock and check the receiving account. Local money lands in an account
        of the invoice currency; international money lands in USD.
        """
        if not account_id:
            return None
        account = self.bank_ledger.get_account_or_404(account_id, for_update=True)
        expected = currency if is_local(client) else settings.BASE_CURRENCY
        if account.currency != expected:
            raise CurrencyMismatch(
                f"Bank account {account.account_name} holds {account.currency}; "
                f"this payment must be deposited to a {expected} account"
            )
        return account

    def _derive_amounts(self, client: Client, currency: str, amount: Decimal,
                        conversion_rate: Optional[Decimal], withheld_rate: Optional[Decimal]) -> Dict:
        """Conversion to USD and withholding tax for a gross amount"""
        rate = to_decimal(conversion_rate) if conversion_rate is not None else None
        converted = None

        if is_local(client):
            if rate is not None:
                if rate <= 0:
                    raise InvalidExchangeRate("Conversion rate must be greater than 0")
                converted = money(amount * rate)
        elif currency == settings.BASE_CURRENCY:
            if rate is not None and rate != 1:
                raise InvalidExchangeRate(
                    f"No conversion applies to a {currency} payment; omit the rate or send 1"
                )
            rate = None
            converted = amount
        else:
            if rate is None or rate <= 0:
                raise MissingConversionRate(
                    f"A conversion rate from {currency} to {settings.BASE_CURRENCY} is required"
                )
            converted = money(amount * rate)

        withheld_tax_rate = None
        withheld_amount = None
        if is_local(client) and withheld_rate is not None and to_decimal(withheld_rate) > 0:
            withheld_tax_rate = to_decimal(withheld_rate)
            if withheld_tax_rate > 100:
                raise InvalidInput("Withholding tax rate cannot exceed 100%")
            withheld_amount = whole_units(amount * withheld_tax_rate / 100)

        return {
            "conversion_rate_to_usd": rate,
            "converted_amount_usd": converted,
            "withheld_tax_rate": withheld_tax_rate,
            "withheld_tax_amount": withheld_amount,
            "cash_received": amount - (withheld_amount or ZERO),
        }

    def _post_receipt(self, account: BankAccount, payment: Payment, client: Client):
        """Deposit what actually reached the account"""
        if is_local(client):
            deposit = payment.cash_received
        else:
            deposit = payment.converted_amount_usd

        transaction = self.bank_ledger.post_payment_receipt(
            account,
            deposit,
            payment.id,
            f"Payment {payment.reference} from {client.name}",
            transaction_date=payment.payment_date,
            reference=payment.reference
        )
        self.audit.log(
            "banks", account.id, AuditAction.CREATE,
            f"Payment {payment.reference} of {account.currency} {money(deposit)} received on "
            f"{account.account_name}",
            {"transaction_id": transaction.id, "payment_id": payment.id},
            user_id=self.user_id
        )
        return transaction

    # ==================== CHANGES ====================

    def get_by_id(self, payment_id: int, for_update: bool = False) -> Optional[Payment]:
        query = self.db.query(Payment).filter(Payment.id == payment_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get_or_404(self, payment_id: int, for_update: bool = False) -> Payment:
        payment = self.get_by_id(payment_id, for_update=for_update)
        if not payment:
            raise NotFound("Payment", payment_id)
        return payment

    def update_payment(self, payment_id: int, data: PaymentUpdate) -> Payment:
        """
        Edit amount, reference, date or receiving account. Derived amounts are
        rebuilt from the stored rates and the invoice absorbs the difference.
        """
        payment = self.get_or_404(payment_id, for_update=True)
        if payment.is_reversed:
            raise InvalidState("A reversed payment cannot be edited")

        changes = data.model_dump(exclude_unset=True)
        new_amount = money(changes.get("amount", payment.amount))
        if new_amount <= 0:
            raise InvalidAmount("Payment amount must be at least 0.01")
        if "reference" in changes and (not changes["reference"] or not changes["reference"].strip()):
            raise InvalidInput("Payment reference is required")

        # Invoice before bank account, as when recording a payment
        invoice = None
        if payment.type == PaymentType.INVOICE.value:
            invoice = self.invoices.get_or_404(payment.invoice_id, for_update=True)

        client = self.clients.get_or_404(payment.client_id)
        account_id = changes["bank_account_id"] if "bank_account_id" in changes else payment.bank_account_id
        account = self._resolve_bank_account(account_id, client, payment.currency)

        old_amount = money(payment.amount)
        old_values = {"amount": old_amount, "reference": payment.reference,
                      "payment_date": payment.payment_date, "bank_account_id": payment.bank_account_id}

        derived = self._derive_amounts(
            client, payment.currency, new_amount, payment.conversion_rate_to_usd, payment.withheld_tax_rate
        )
        payment.amount = new_amount
        for field, value in derived.items():
            setattr(payment, field, value)
        if "reference" in changes:
            payment.reference = changes["reference"].strip()
        if changes.get("payment_date"):
            payment.payment_date = changes["payment_date"]
        if "notes" in changes:
            payment.notes = changes["notes"]
        payment.bank_account_id = account.id if account else None
        self.db.flush()

        if invoice is not None:
            self.invoices.apply_payment_delta(invoice, invoice.order, new_amount - old_amount)

        if settings.REVERSE_BANK_ENTRY_ON_PAYMENT_CHANGE:
            self._reverse_bank_entries(payment, "Payment edited")
            if account:
                self._post_receipt(account, payment, client)

        self.audit.log(
            "payments", payment.id, AuditAction.UPDATE,
            f"Payment {payment.reference} updated",
            {"old": old_values, "new": {"amount": new_amount, "reference": payment.reference,
                                        "payment_date": payment.payment_date,
                                        "bank_account_id": payment.bank_account_id}},
            user_id=self.user_id
        )
        return payment

    def delete_payment(self, payment_id: int) -> None:
        payment = self.get_or_404(payment_id, for_update=True)

        if payment.type == PaymentType.INVOICE.value and not payment.is_reversed:
            invoice = self.invoices.get_or_404(payment.invoice_id, for_update=True)
            self.invoices.apply_payment_delta(invoice, invoice.order, -money(payment.amount))

        if settings.REVERSE_BANK_ENTRY_ON_PAYMENT_CHANGE and not payment.is_reversed:
            self._reverse_bank_entries(payment, f"Payment {payment.reference} deleted")

        for entry in self.bank_ledger.entries_for_payment(payment.id):
            entry.payment_id = None

        reference = payment.reference
        amount = money(payment.amount)
        self.db.delete(payment)
        self.db.flush()

        self.audit.log(
            "payments", payment_id, AuditAction.DELETE,
            f"Payment {reference} of {amount} deleted",
            user_id=self.user_id
        )

    def reverse_payment(self, payment_id: int, reason: Optional[str] = None) -> Payment:
        """Void a payment while keeping it on record"""
        payment = self.get_or_404(payment_id, for_update=True)
        if payment.is_reversed:
            raise InvalidState("Payment is already reversed")

        if payment.type == PaymentType.INVOICE.value:
            invoice = self.invoices.get_or_404(payment.invoice_id, for_update=True)
            self.invoices.apply_payment_delta(invoice, invoice.order, -money(payment.amount))

        self._reverse_bank_entries(payment, reason or f"Payment {payment.reference} reversed")

        payment.is_reversed = True
        payment.reversed_at = datetime.utcnow()
        payment.reversal_reason = reason
        self.db.flush()

        self.audit.log(
            "payments", payment.id, AuditAction.UPDATE,
            f"Payment {payment.reference} reversed" + (f": {reason}" if reason else ""),
            {"amount": payment.amount},
            user_id=self.user_id
        )
        return payment

    def _reverse_bank_entries(self, payment: Payment, reason: str) -> None:
        for entry in self.bank_ledger.live_payment_entries(payment.id):
            self.bank_ledger.reverse_transaction(entry.id, reason, allow_payment_linked=True)

    # ==================== READS ====================

    def get_with_details(self, payment_id: int) -> Dict:
        payment = self.db.query(Payment).options(
            joinedload(Payment.invoice),
            joinedload(Payment.client),
            joinedload(Payment.bank_account)
        ).filter(Payment.id == payment_id).first()
        if not payment:
            raise NotFound("Payment", payment_id)
        return {
            "payment": payment,
            "bank_transactions": self.bank_ledger.entries_for_payment(payment.id),
        }

    def list(
        self,
        invoice_id: Optional[int] = None,
        client_id: Optional[int] = None,
        method: Optional[str] = None,
        payment_type: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        fiscal_year: Optional[int] = None,
        include_reversed: bool = True,
        offset: int = 0,
        limit: int = 100
    ) -> List[Payment]:
        query = self._filtered(invoice_id, client_id, method, payment_type,
                               start_date, end_date, fiscal_year, include_reversed)
        return query.order_by(Payment.payment_date.desc(), Payment.id.desc()).offset(offset).limit(limit).all()

    def _filtered(self, invoice_id=None, client_id=None, method=None, payment_type=None,
                  start_date=None, end_date=None, fiscal_year=None, include_reversed=True):
        query = self.db.query(Payment).options(joinedload(Payment.client))

        if invoice_id:
            query = query.filter(Payment.invoice_id == invoice_id)
        if client_id:
            query = query.filter(Payment.client_id == client_id)
        if method:
            query = query.filter(Payment.method == method)
        if payment_type:
            query = query.filter(Payment.type == payment_type)
        if start_date:
            query = query.filter(Payment.payment_date >= start_date)
        if end_date:
            query = query.filter(Payment.payment_date <= end_date)
        if not include_reversed:
            query = query.filter(Payment.is_reversed == False)
        if fiscal_year is not None:
            # Invoice payments follow their order's fiscal year, advances their own date
            start, end = fiscal_calendar.range_of(fiscal_year)
            query = query.outerjoin(Invoice, Payment.invoice_id == Invoice.id).outerjoin(
                Order, Invoice.order_id == Order.id
            ).filter(or_(
                Order.fiscal_year == fiscal_year,
                and_(
                    Payment.invoice_id.is_(None),
                    Payment.payment_date >= start.date(),
                    Payment.payment_date <= end.date()
                )
            ))
        return query

    def get_stats(self, start_date: Optional[date] = None, end_date: Optional[date] = None,
                  fiscal_year: Optional[int] = None, client_id: Optional[int] = None) -> Dict:
        payments = self._filtered(client_id=client_id, start_date=start_date, end_date=end_date,
                                  fiscal_year=fiscal_year, include_reversed=False).all()

        by_method: Dict[str, Dict] = {}
        by_currency: Dict[str, Decimal] = {}
        withheld = ZERO
        converted = ZERO
        for payment in payments:
            method_bucket = by_method.setdefault(payment.method, {"count": 0, "amount": ZERO})
            method_bucket["count"] += 1
            method_bucket["amount"] += money(payment.amount)
            by_currency[payment.currency] = by_currency.get(payment.currency, ZERO) + money(payment.amount)
            withheld += money(payment.withheld_tax_amount)
            converted += money(payment.converted_amount_usd)

        return {
            "total_payments": len(payments),
            "advance_payments": sum(1 for p in payments if p.type == PaymentType.ADVANCE.value),
            "by_method": by_method,
            "amount_by_currency": by_currency,
            "total_withheld_tax": withheld,
            "total_converted_usd": converted,
        }

    def get_client_history(self, client_id: int, limit: int = 100) -> Dict:
        """Payments of one client plus what it still owes"""
        client = self.clients.get_or_404(client_id)
        payments = self.list(client_id=client_id, limit=limit)
        unpaid = self.invoices.get_unpaid(client_id=client_id)
        stats = self.get_stats(client_id=client_id)

        return {
            "client": client,
            "payments": payments,
            "unpaid_invoices": unpaid,
            "amount_by_currency": stats["amount_by_currency"],
            "advance_total": sum(
                (money(p.amount) for p in payments
                 if p.type == PaymentType.ADVANCE.value and not p.is_reversed),
                ZERO
            ),
            "outstanding_total": sum((money(i.outstanding_balance) for i in unpaid), ZERO),
        }
