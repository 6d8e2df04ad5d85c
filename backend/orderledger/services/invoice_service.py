"""
Invoice Service - Invoice aggregates and receivables views
"""
from typing import Optional, List, Dict
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import or_
from decimal import Decimal
from datetime import date, timedelta

from orderledger.core.config import settings
from orderledger.core.exceptions import NotFound
from orderledger.core.money import ZERO, money
from orderledger.models import Invoice, Order, Client, OrderStatus, InvoiceStatus

DUE_STATUSES = {OrderStatus.SHIPPED.value, OrderStatus.DELIVERED.value}


def recompute(invoice: Invoice, order: Order) -> Invoice:
    """
    Derive outstanding_balance and status from amount, total_paid and the
    order status. Every write of those two fields goes through here.

    An invoice only falls due once its order has shipped; before that the
    balance is zero and the status reflects what has been paid so far.
    """
    amount = money(invoice.amount)
    total_paid = money(invoice.total_paid)

    if order.status in DUE_STATUSES:
        outstanding = max(ZERO, amount - total_paid)
        if outstanding == ZERO:
            status = InvoiceStatus.PAID.value
        elif total_paid > ZERO:
            status = InvoiceStatus.PARTIALLY_PAID.value
        else:
            status = InvoiceStatus.UNPAID.value
    else:
        outstanding = ZERO
        if amount > ZERO and total_paid >= amount:
            status = InvoiceStatus.PAID.value
        elif total_paid > ZERO:
            status = InvoiceStatus.PARTIALLY_PAID.value
        else:
            status = InvoiceStatus.UNPAID.value

    invoice.outstanding_balance = outstanding
    invoice.status = status
    return invoice


class InvoiceService:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, invoice_id: int, for_update: bool = False) -> Optional[Invoice]:
        query = self.db.query(Invoice).filter(Invoice.id == invoice_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get_or_404(self, invoice_id: int, for_update: bool = False) -> Invoice:
        invoice = self.get_by_id(invoice_id, for_update=for_update)
        if not invoice:
            raise NotFound("Invoice", invoice_id)
        return invoice

    def get_by_order(self, order_id: int) -> Optional[Invoice]:
        return self.db.query(Invoice).filter(Invoice.order_id == order_id).first()

    def get_with_details(self, invoice_id: int) -> Invoice:
        invoice = self.db.query(Invoice).options(
            joinedload(Invoice.order).joinedload(Order.items),
            joinedload(Invoice.client),
            joinedload(Invoice.payments)
        ).filter(Invoice.id == invoice_id).first()
        if not invoice:
            raise NotFound("Invoice", invoice_id)
        return invoice

    def create_for_order(self, order: Order, notes: Optional[str] = None) -> Invoice:
        """Open the invoice paired with an order (balance zero until the order ships)"""
        issue_date = date.today()
        invoice = Invoice(
            invoice_number=order.invoice_number,
            order_id=order.id,
            client_id=order.client_id,
            amount=money(order.total_amount),
            currency=order.currency,
            total_paid=ZERO,
            issue_date=issue_date,
            due_date=issue_date + timedelta(days=settings.INVOICE_DUE_DAYS),
            notes=notes or f"Invoice for Order {order.order_number}"
        )
        recompute(invoice, order)
        self.db.add(invoice)
        self.db.flush()
        return invoice

    def apply_payment_delta(self, invoice: Invoice, order: Order, delta: Decimal) -> Invoice:
        """Add (or with a negative delta, remove) paid money and recompute"""
        invoice.total_paid = max(ZERO, money(invoice.total_paid) + money(delta))
        return recompute(invoice, order)

    def list(
        self,
        status: Optional[str] = None,
        client_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        search: Optional[str] = None
    ) -> List[Invoice]:
        query = self.db.query(Invoice).options(joinedload(Invoice.client))

        if status:
            query = query.filter(Invoice.status == status)
        if client_id:
            query = query.filter(Invoice.client_id == client_id)
        if start_date:
            query = query.filter(Invoice.issue_date >= start_date)
        if end_date:
            query = query.filter(Invoice.issue_date <= end_date)
        if search:
            term = f"%{search}%"
            query = query.join(Client, Invoice.client_id == Client.id).filter(
                or_(Invoice.invoice_number.ilike(term), Client.name.ilike(term))
            )

        return query.order_by(Invoice.issue_date.desc(), Invoice.id.desc()).all()

    def get_unpaid(self, client_id: Optional[int] = None) -> List[Invoice]:
        """Invoices with money still owed, largest balance first"""
        query = self.db.query(Invoice).options(joinedload(Invoice.client)).filter(
            Invoice.outstanding_balance > 0
        )
        if client_id:
            query = query.filter(Invoice.client_id == client_id)
        return query.order_by(Invoice.outstanding_balance.desc()).all()

    def get_stats(self, client_id: Optional[int] = None) -> Dict:
        query = self.db.query(Invoice)
        if client_id:
            query = query.filter(Invoice.client_id == client_id)
        invoices = query.all()

        stats = {
            "total_invoices": len(invoices),
            "total_amount": ZERO,
            "total_paid": ZERO,
            "total_outstanding": ZERO,
            "status_counts": {s.value: 0 for s in InvoiceStatus},
            "overdue_count": 0,
        }
        today = date.today()
        for invoice in invoices:
            stats["total_amount"] += money(invoice.amount)
            stats["total_paid"] += money(invoice.total_paid)
            stats["total_outstanding"] += money(invoice.outstanding_balance)
            stats["status_counts"][invoice.status] = stats["status_counts"].get(invoice.status, 0) + 1
            if invoice.outstanding_balance and invoice.outstanding_balance > 0 and invoice.due_date < today:
                stats["overdue_count"] += 1
        return stats
