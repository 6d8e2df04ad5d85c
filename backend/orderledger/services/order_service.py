"""
Order Service - Orders, Items, Status Lifecycle, Deliveries
"""
from typing import Optional, List, Dict
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import IntegrityError
from decimal import Decimal
from datetime import date, datetime
import logging

from orderledger.core.config import settings
from orderledger.core.exceptions import (
    NotFound, InvalidAmount, InvalidState, InvalidInput, DuplicateInvoiceNumber,
    FiscalYearMismatch, MissingDeliveryDate
)
from orderledger.core.money import ZERO, money, to_decimal
from orderledger.models import (
    Order, OrderItem, OrderNumberSequence, Invoice, Client, Delivery, Payment,
    OrderStatus, DiscountType, DeliveryStatus
)
from orderledger.schemas import (
    OrderCreate, OrderItemCreate, OrderItemsUpdate, OrderDetailsUpdate, DeliveryCreate
)
from orderledger.services import fiscal_calendar
from orderledger.services.audit_service import AuditService, AuditAction
from orderledger.services.client_service import ClientService, is_local
from orderledger.services.document_store import DocumentStore
from orderledger.services.invoice_service import InvoiceService, recompute

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING.value: {OrderStatus.IN_PRODUCTION.value, OrderStatus.CANCELLED.value},
    OrderStatus.IN_PRODUCTION.value: {OrderStatus.SHIPPED.value, OrderStatus.CANCELLED.value},
    OrderStatus.SHIPPED.value: {OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value},
    OrderStatus.DELIVERED.value: set(),
    OrderStatus.CANCELLED.value: set(),
}

# List ordering within a fiscal year
STATUS_PRIORITY = {
    OrderStatus.PENDING.value: 0,
    OrderStatus.IN_PRODUCTION.value: 1,
    OrderStatus.SHIPPED.value: 2,
    OrderStatus.DELIVERED.value: 3,
    OrderStatus.CANCELLED.value: 4,
}

DOCUMENT_FIELDS = {
    "packing_list": "packing_list_id",
    "proforma_invoice": "proforma_invoice_id",
    "commercial_invoice": "commercial_invoice_id",
}


def price_item(item: OrderItemCreate) -> Dict:
    """
    Price one order line.

    exclusive = quantity * unit price, tax on top of it, then the discount
    (a fixed amount or a percentage) taken off the tax-inclusive subtotal.
    """
    quantity = to_decimal(item.quantity_kg)
    unit_price = to_decimal(item.unit_price)
    if quantity <= 0:
        raise InvalidAmount(f"Quantity for {item.product} must be greater than 0")
    if unit_price < 0:
        raise InvalidAmount(f"Unit price for {item.product} cannot be negative")

    exclusive = money(item.exclusive_value) if item.exclusive_value is not None else money(quantity * unit_price)
    tax_rate = to_decimal(item.tax_rate) if item.tax_rate is not None else Decimal("0")
    if tax_rate < 0:
        raise InvalidAmount(f"Tax rate for {item.product} cannot be negative")
    tax_amount = money(item.tax_amount) if item.tax_amount is not None else money(exclusive * tax_rate / 100)

    discount_type = None
    discount_value = None
    discount_amount = ZERO
    if item.discount is not None and item.discount.value:
        discount_type = item.discount.type
        discount_value = to_decimal(item.discount.value)
        if discount_value < 0:
            raise InvalidAmount(f"Discount for {item.product} cannot be negative")
        subtotal = exclusive + tax_amount
        if discount_type == DiscountType.PERCENTAGE.value:
            if discount_value > 100:
                raise InvalidAmount(f"Discount for {item.product} cannot exceed 100%")
            discount_amount = money(subtotal * discount_value / 100)
        else:
            discount_amount = money(discount_value)

    inclusive_total = exclusive + tax_amount - discount_amount
    if inclusive_total < 0:
        raise InvalidAmount(f"Discount for {item.product} exceeds the line total")

    return {
        "product": item.product,
        "quantity_kg": quantity,
        "unit_price": unit_price,
        "exclusive_value": exclusive,
        "tax_rate": tax_rate,
        "tax_amount": tax_amount,
        "discount_type": discount_type,
        "discount_value": discount_value,
        "discount_amount": discount_amount,
        "inclusive_total": inclusive_total,
        "notes": item.notes,
    }


class OrderService:
    def __init__(self, db: Session, user_id: Optional[int] = None,
                 document_store: Optional[DocumentStore] = None):
        self.db = db
        self.user_id = user_id
        self.audit = AuditService(db)
        self.invoices = InvoiceService(db)
        self.clients = ClientService(db)
        self.documents = document_store or DocumentStore()

    # ==================== LOOKUPS ====================

    def get_by_id(self, order_id: int, for_update: bool = False) -> Optional[Order]:
        query = self.db.query(Order).filter(Order.id == order_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get_or_404(self, order_id: int, for_update: bool = False) -> Order:
        order = self.get_by_id(order_id, for_update=for_update)
        if not order:
            raise NotFound("Order", order_id)
        return order

    def get_with_details(self, order_id: int) -> Dict:
        order = self.db.query(Order).options(
            joinedload(Order.items),
            joinedload(Order.client),
            joinedload(Order.invoice),
            joinedload(Order.delivery)
        ).filter(Order.id == order_id).first()
        if not order:
            raise NotFound("Order", order_id)

        payments = []
        if order.invoice:
            payments = self.db.query(Payment).filter(
                Payment.invoice_id == order.invoice.id
            ).order_by(Payment.payment_date).all()
        return {"order": order, "payments": payments}

    def _invoice_number_taken(self, invoice_number: str, exclude_order_id: Optional[int] = None) -> bool:
        order_query = self.db.query(Order.id).filter(Order.invoice_number == invoice_number)
        invoice_query = self.db.query(Invoice.id).filter(Invoice.invoice_number == invoice_number)
        if exclude_order_id:
            order_query = order_query.filter(Order.id != exclude_order_id)
            invoice_query = invoice_query.filter(Invoice.order_id != exclude_order_id)
        return order_query.first() is not None or invoice_query.first() is not None

    def next_order_number(self, fiscal_year: int) -> str:
        """Allocate the next number in a fiscal year, e.g. ORD-FY24-25-001"""
        sequence = self._locked_sequence(fiscal_year)
        if not sequence:
            # First order of the year; a concurrent creator wins the insert and we re-read its row
            try:
                with self.db.begin_nested():
                    self.db.add(OrderNumberSequence(fiscal_year=fiscal_year, last_number=0))
                    self.db.flush()
            except IntegrityError:
                logger.debug(f"Order number sequence for {fiscal_year} created concurrently")
            sequence = self._locked_sequence(fiscal_year)
        sequence.last_number += 1
        self.db.flush()
        return f"{settings.ORDER_NUMBER_PREFIX}-{fiscal_calendar.label(fiscal_year)}-{sequence.last_number:03d}"

    def _locked_sequence(self, fiscal_year: int) -> Optional[OrderNumberSequence]:
        return self.db.query(OrderNumberSequence).filter(
            OrderNumberSequence.fiscal_year == fiscal_year
        ).with_for_update().populate_existing().first()

    # ==================== CREATE ====================

    def create(self, order_data: OrderCreate) -> Order:
        client = self.clients.get_or_404(order_data.client_id)

        invoice_number = order_data.invoice_number.strip()
        if not invoice_number:
            raise InvalidInput("Invoice number is required")
        if self._invoice_number_taken(invoice_number):
            raise DuplicateInvoiceNumber(f"Invoice number {invoice_number} already exists")

        creation_date = fiscal_calendar.as_naive_utc(order_data.order_creation_date or datetime.utcnow())
        if order_data.fiscal_year is not None and order_data.order_creation_date is not None:
            if not fiscal_calendar.contains(order_data.fiscal_year, creation_date):
                start, end = fiscal_calendar.range_of(order_data.fiscal_year)
                raise FiscalYearMismatch(
                    f"Order date {creation_date.date()} is outside fiscal year "
                    f"{fiscal_calendar.display_name(order_data.fiscal_year)} "
                    f"({start.date()} to {end.date()})"
                )
        fiscal_year = order_data.fiscal_year if order_data.fiscal_year is not None \
            else fiscal_calendar.fiscal_year_of(creation_date)

        if not order_data.items:
            raise InvalidInput("An order needs at least one item")
        priced_items = [price_item(item) for item in order_data.items]

        freight_cost = money(order_data.freight_cost or 0)
        if freight_cost < 0:
            raise InvalidAmount("Freight cost cannot be negative")

        if is_local(client):
            currency = settings.LOCAL_CURRENCY
        else:
            currency = (order_data.currency or settings.BASE_CURRENCY).upper()

        order = Order(
            order_number=self.next_order_number(fiscal_year),
            invoice_number=invoice_number,
            client_id=client.id,
            status=OrderStatus.PENDING.value,
            fiscal_year=fiscal_year,
            order_creation_date=creation_date,
            freight_cost=freight_cost,
            total_amount=sum((i["inclusive_total"] for i in priced_items), ZERO) + freight_cost,
            currency=currency,
            expected_delivery_date=order_data.expected_delivery_date,
            shipment_method=order_data.shipment_method,
            shipping_company=order_data.shipping_company,
            notes=order_data.notes,
            created_by=self.user_id
        )
        order.items = [OrderItem(**values) for values in priced_items]
        self.db.add(order)
        self.db.flush()

        invoice = self.invoices.create_for_order(order)

        self.audit.log(
            "orders", order.id, AuditAction.CREATE,
            f"Order {order.order_number} created for {client.name} with invoice "
            f"{invoice.invoice_number} ({currency} {order.total_amount})",
            {"fiscal_year": fiscal_year, "items": len(priced_items), "total_amount": order.total_amount},
            user_id=self.user_id
        )
        logger.info(f"Order {order.order_number} created")
        return order

    # ==================== STATUS ====================

    def update_status(self, order_id: int, new_status: str,
                      delivery_date: Optional[date] = None) -> Order:
        order = self.get_or_404(order_id, for_update=True)
        old_status = order.status

        if new_status not in ALLOWED_TRANSITIONS:
            raise InvalidInput(f"Unknown order status: {new_status}")
        if new_status not in ALLOWED_TRANSITIONS[old_status]:
            raise InvalidState(f"Order {order.order_number} cannot move from {old_status} to {new_status}")

        if new_status == OrderStatus.DELIVERED.value:
            delivered_on = delivery_date or order.delivery_date
            if not delivered_on:
                raise MissingDeliveryDate(f"A delivery date is required to mark {order.order_number} delivered")
            order.delivery_date = delivered_on
        elif delivery_date:
            order.delivery_date = delivery_date

        order.status = new_status
        self.db.flush()

        invoice = self.db.query(Invoice).filter(Invoice.order_id == order.id).with_for_update().first()
        if invoice is None and new_status != OrderStatus.CANCELLED.value:
            invoice = self.invoices.create_for_order(order)
        elif invoice is not None:
            recompute(invoice, order)

        self._sync_delivery(order, new_status)
        self.db.flush()

        self.audit.log(
            "orders", order.id, AuditAction.UPDATE,
            f"Order {order.order_number} status changed from {old_status} to {new_status}",
            {"old_status": old_status, "new_status": new_status,
             "invoice_status": invoice.status if invoice else None},
            user_id=self.user_id
        )
        return order

    def _sync_delivery(self, order: Order, new_status: str) -> None:
        delivery = self.db.query(Delivery).filter(Delivery.order_id == order.id).first()
        if not delivery:
            return
        if new_status == OrderStatus.SHIPPED.value:
            delivery.status = DeliveryStatus.SHIPPED.value
            delivery.shipped_date = delivery.shipped_date or date.today()
        elif new_status == OrderStatus.DELIVERED.value:
            delivery.status = DeliveryStatus.DELIVERED.value
            delivery.delivered_date = order.delivery_date

    # ==================== EDITS ====================

    def update_items(self, order_id: int, items_data: OrderItemsUpdate) -> Order:
        """Replace the items; the invoice follows the new total"""
        order = self.get_or_404(order_id, for_update=True)
        if order.status in (OrderStatus.CANCELLED.value, OrderStatus.DELIVERED.value):
            raise InvalidState(f"Items of a {order.status} order cannot be changed")
        if not items_data.items:
            raise InvalidInput("An order needs at least one item")

        priced_items = [price_item(item) for item in items_data.items]
        if items_data.freight_cost is not None:
            freight_cost = money(items_data.freight_cost)
            if freight_cost < 0:
                raise InvalidAmount("Freight cost cannot be negative")
            order.freight_cost = freight_cost

        old_total = money(order.total_amount)
        order.items = [OrderItem(**values) for values in priced_items]
        order.total_amount = sum((i["inclusive_total"] for i in priced_items), ZERO) + money(order.freight_cost)
        self.db.flush()

        invoice = self.db.query(Invoice).filter(Invoice.order_id == order.id).with_for_update().first()
        if invoice:
            invoice.amount = order.total_amount
            recompute(invoice, order)
            self.db.flush()

        self.audit.log(
            "orders", order.id, AuditAction.UPDATE,
            f"Items of order {order.order_number} updated; total {old_total} -> {order.total_amount}",
            {"items": len(priced_items), "old_total": old_total, "new_total": order.total_amount},
            user_id=self.user_id
        )
        return order

    def update_invoice_number(self, order_id: int, invoice_number: str) -> Order:
        order = self.get_or_404(order_id, for_update=True)
        invoice_number = (invoice_number or "").strip()
        if not invoice_number:
            raise InvalidInput("Invoice number is required")
        if invoice_number == order.invoice_number:
            return order
        if self._invoice_number_taken(invoice_number, exclude_order_id=order.id):
            raise DuplicateInvoiceNumber(f"Invoice number {invoice_number} already exists")

        old_number = order.invoice_number
        order.invoice_number = invoice_number
        invoice = self.invoices.get_by_order(order.id)
        if invoice:
            invoice.invoice_number = invoice_number
        self.db.flush()

        self.audit.log(
            "orders", order.id, AuditAction.UPDATE,
            f"Invoice number of order {order.order_number} changed from {old_number} to {invoice_number}",
            user_id=self.user_id
        )
        return order

    def update_details(self, order_id: int, details: OrderDetailsUpdate) -> Order:
        order = self.get_or_404(order_id, for_update=True)
        if order.status == OrderStatus.CANCELLED.value:
            raise InvalidState("A cancelled order cannot be edited")

        changes = details.model_dump(exclude_unset=True)
        for field, value in changes.items():
            setattr(order, field, value)
        self.db.flush()

        self.audit.log("orders", order.id, AuditAction.UPDATE,
                       f"Order {order.order_number} details updated", changes, user_id=self.user_id)
        return order

    def attach_document(self, order_id: int, kind: str, storage_id: str) -> Order:
        order = self.get_or_404(order_id, for_update=True)
        field = self._document_field(kind)
        previous = getattr(order, field)
        setattr(order, field, storage_id)
        self.db.flush()
        if previous and previous != storage_id:
            self._delete_document(previous)

        self.audit.log("orders", order.id, AuditAction.UPDATE,
                       f"{kind.replace('_', ' ').title()} attached to order {order.order_number}",
                       {"storage_id": storage_id}, user_id=self.user_id)
        return order

    def remove_document(self, order_id: int, kind: str) -> Order:
        order = self.get_or_404(order_id, for_update=True)
        field = self._document_field(kind)
        previous = getattr(order, field)
        if not previous:
            raise NotFound(f"{kind.replace('_', ' ').title()} of order", order.order_number)
        setattr(order, field, None)
        self.db.flush()
        self._delete_document(previous)

        self.audit.log("orders", order.id, AuditAction.UPDATE,
                       f"{kind.replace('_', ' ').title()} removed from order {order.order_number}",
                       user_id=self.user_id)
        return order

    def _document_field(self, kind: str) -> str:
        if kind not in DOCUMENT_FIELDS:
            raise InvalidInput(f"Unknown document kind: {kind}")
        return DOCUMENT_FIELDS[kind]

    def _delete_document(self, storage_id: str) -> None:
        try:
            self.documents.delete(storage_id)
        except OSError as e:
            logger.warning(f"Could not delete stored document {storage_id}: {e}")

    # ==================== DELIVERY ====================

    def create_delivery(self, order_id: int, delivery_data: DeliveryCreate) -> Delivery:
        order = self.get_or_404(order_id, for_update=True)
        if order.status == OrderStatus.CANCELLED.value:
            raise InvalidState("A cancelled order cannot be delivered")
        if self.db.query(Delivery).filter(Delivery.order_id == order.id).first():
            raise InvalidState(f"Order {order.order_number} already has a delivery")

        delivery = Delivery(
            order_id=order.id,
            carrier=delivery_data.carrier,
            tracking_number=delivery_data.tracking_number,
            notes=delivery_data.notes
        )
        if order.status == OrderStatus.SHIPPED.value:
            delivery.status = DeliveryStatus.SHIPPED.value
            delivery.shipped_date = date.today()
        elif order.status == OrderStatus.DELIVERED.value:
            delivery.status = DeliveryStatus.DELIVERED.value
            delivery.delivered_date = order.delivery_date
        self.db.add(delivery)
        self.db.flush()

        self.audit.log("orders", order.id, AuditAction.UPDATE,
                       f"Delivery via {delivery.carrier} created for order {order.order_number}",
                       user_id=self.user_id)
        return delivery

    # ==================== DELETE ====================

    def delete(self, order_id: int) -> None:
        """Remove a pending order with its items, invoice, delivery and documents"""
        order = self.get_or_404(order_id, for_update=True)
        if order.status != OrderStatus.PENDING.value:
            raise InvalidState(f"Only pending orders can be deleted; {order.order_number} is {order.status}")

        invoice = self.invoices.get_by_order(order.id)
        if invoice is not None:
            if self.db.query(Payment.id).filter(Payment.invoice_id == invoice.id).first():
                raise InvalidState(f"Invoice {invoice.invoice_number} has payments recorded against it")
            self.db.delete(invoice)

        delivery = self.db.query(Delivery).filter(Delivery.order_id == order.id).first()
        if delivery is not None:
            self.db.delete(delivery)

        document_ids = [getattr(order, field) for field in DOCUMENT_FIELDS.values() if getattr(order, field)]
        order_number = order.order_number
        self.db.delete(order)
        self.db.flush()

        for storage_id in document_ids:
            self._delete_document(storage_id)

        self.audit.log("orders", order_id, AuditAction.DELETE,
                       f"Order {order_number} deleted", user_id=self.user_id)
        logger.info(f"Order {order_number} deleted")

    # ==================== READS ====================

    def list(
        self,
        client_id: Optional[int] = None,
        status: Optional[str] = None,
        client_type: Optional[str] = None,
        fiscal_year: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> List[Order]:
        """Newest fiscal year first, then open work before closed, then newest first"""
        query = self.db.query(Order).options(joinedload(Order.client), joinedload(Order.invoice))

        if client_id:
            query = query.filter(Order.client_id == client_id)
        if status:
            query = query.filter(Order.status == status)
        if client_type:
            query = query.join(Client, Order.client_id == Client.id).filter(Client.type == client_type)
        if fiscal_year is not None:
            query = query.filter(Order.fiscal_year == fiscal_year)
        if start_date:
            query = query.filter(Order.order_creation_date >= datetime.combine(start_date, datetime.min.time()))
        if end_date:
            query = query.filter(Order.order_creation_date <= datetime.combine(end_date, datetime.max.time()))

        orders = query.all()
        orders.sort(key=lambda o: (
            -o.fiscal_year,
            STATUS_PRIORITY.get(o.status, len(STATUS_PRIORITY)),
            -(o.created_at or o.order_creation_date).timestamp(),
            -o.id
        ))
        return orders

    def get_stats(self, client_type: Optional[str] = None, fiscal_year: Optional[int] = None) -> Dict:
        orders = self.list(client_type=client_type, fiscal_year=fiscal_year)

        status_counts = {s.value: 0 for s in OrderStatus}
        revenue_by_currency: Dict[str, Decimal] = {}
        total_quantity = Decimal("0")
        for order in orders:
            status_counts[order.status] = status_counts.get(order.status, 0) + 1
            if order.status == OrderStatus.CANCELLED.value:
                continue
            revenue_by_currency[order.currency] = (
                revenue_by_currency.get(order.currency, ZERO) + money(order.total_amount)
            )
            total_quantity += sum((to_decimal(i.quantity_kg) for i in order.items), Decimal("0"))

        return {
            "total_orders": len(orders),
            "status_counts": status_counts,
            "revenue_by_currency": revenue_by_currency,
            "total_quantity_kg": total_quantity,
        }
