"""
SQLAlchemy Models for the Order Ledger
"""
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Date, Numeric,
    ForeignKey, Index, CheckConstraint
)
from sqlalchemy.orm import relationship
import enum

from orderledger.core.database import Base


# ==================== ENUMS ====================

class ClientType(enum.Enum):
    LOCAL = "local"
    INTERNATIONAL = "international"


class UserRole(enum.Enum):
    SUPER_ADMIN = "super-admin"
    ADMIN = "admin"
    PRODUCTION = "production"


class OrderStatus(enum.Enum):
    PENDING = "pending"
    IN_PRODUCTION = "in_production"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class InvoiceStatus(enum.Enum):
    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


class DiscountType(enum.Enum):
    AMOUNT = "amount"
    PERCENTAGE = "percentage"


class PaymentType(enum.Enum):
    INVOICE = "invoice"
    ADVANCE = "advance"


class PaymentMethod(enum.Enum):
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"
    CASH = "cash"
    CREDIT_CARD = "credit_card"
    OTHER = "other"


class BankTransactionType(enum.Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    PAYMENT_RECEIVED = "payment_received"
    FEE = "fee"
    INTEREST = "interest"
    ADJUSTMENT = "adjustment"


class DeliveryStatus(enum.Enum):
    PENDING = "pending"
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    FAILED = "failed"


# ==================== USERS & CLIENTS ====================

class User(Base):
    """Back-office user"""
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=True)
    role = Column(String(20), default=UserRole.ADMIN.value, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    last_login = Column(DateTime, nullable=True)


class Client(Base):
    """Customer buying from the business. Local clients are invoiced in local currency."""
    __tablename__ = 'clients'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    type = Column(String(20), nullable=False, default=ClientType.LOCAL.value)
    status = Column(String(20), default='active')  # active, inactive
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    country = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    orders = relationship("Order", back_populates="client")

    __table_args__ = (
        CheckConstraint("type IN ('local', 'international')", name='ck_clients_type'),
    )


# ==================== ORDERS ====================

class OrderNumberSequence(Base):
    """Last order number handed out in a fiscal year"""
    __tablename__ = 'order_number_sequences'

    fiscal_year = Column(Integer, primary_key=True)
    last_number = Column(Integer, nullable=False, default=0)


class Order(Base):
    """Customer order"""
    __tablename__ = 'orders'

    id = Column(Integer, primary_key=True)
    order_number = Column(String(50), unique=True, nullable=False)
    invoice_number = Column(String(100), unique=True, nullable=False)
    client_id = Column(Integer, ForeignKey('clients.id', ondelete='RESTRICT'), nullable=False)
    status = Column(String(20), default=OrderStatus.PENDING.value, nullable=False)
    fiscal_year = Column(Integer, nullable=False, index=True)
    order_creation_date = Column(DateTime, nullable=False)
    freight_cost = Column(Numeric(15, 2), default=Decimal("0.00"))
    total_amount = Column(Numeric(15, 2), default=Decimal("0.00"))
    currency = Column(String(10), nullable=False)
    delivery_date = Column(Date, nullable=True)
    expected_delivery_date = Column(Date, nullable=True)
    shipment_method = Column(String(20), nullable=True)  # air, sea, road, train
    shipping_company = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    # Opaque document storage identifiers
    packing_list_id = Column(String(255), nullable=True)
    proforma_invoice_id = Column(String(255), nullable=True)
    commercial_invoice_id = Column(String(255), nullable=True)

    created_by = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    client = relationship("Client", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan",
                         order_by="OrderItem.id")
    invoice = relationship("Invoice", back_populates="order", uselist=False)
    delivery = relationship("Delivery", back_populates="order", uselist=False)

    __table_args__ = (
        Index('ix_orders_client_id', 'client_id'),
        Index('ix_orders_status', 'status'),
    )


class OrderItem(Base):
    """Priced line of an order"""
    __tablename__ = 'order_items'

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False)
    product = Column(String(255), nullable=False)
    quantity_kg = Column(Numeric(15, 3), nullable=False)
    unit_price = Column(Numeric(15, 4), nullable=False)
    exclusive_value = Column(Numeric(15, 2), nullable=False)
    tax_rate = Column(Numeric(7, 3), default=Decimal("0"))
    tax_amount = Column(Numeric(15, 2), default=Decimal("0.00"))
    discount_type = Column(String(20), nullable=True)  # amount, percentage
    discount_value = Column(Numeric(15, 2), nullable=True)
    discount_amount = Column(Numeric(15, 2), default=Decimal("0.00"))
    inclusive_total = Column(Numeric(15, 2), nullable=False)
    notes = Column(Text, nullable=True)

    order = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint('inclusive_total >= 0', name='ck_order_items_inclusive_total'),
    )


# ==================== INVOICES & PAYMENTS ====================

class Invoice(Base):
    """Receivable created from an order, one per order"""
    __tablename__ = 'invoices'

    id = Column(Integer, primary_key=True)
    invoice_number = Column(String(100), unique=True, nullable=False)
    order_id = Column(Integer, ForeignKey('orders.id', ondelete='CASCADE'), unique=True, nullable=False)
    client_id = Column(Integer, ForeignKey('clients.id', ondelete='RESTRICT'), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    currency = Column(String(10), nullable=False)
    total_paid = Column(Numeric(15, 2), default=Decimal("0.00"), nullable=False)
    outstanding_balance = Column(Numeric(15, 2), default=Decimal("0.00"), nullable=False)
    status = Column(String(20), default=InvoiceStatus.UNPAID.value, nullable=False)
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    order = relationship("Order", back_populates="invoice")
    client = relationship("Client")
    payments = relationship("Payment", back_populates="invoice", order_by="Payment.payment_date")

    __table_args__ = (
        CheckConstraint('total_paid >= 0', name='ck_invoices_total_paid'),
        CheckConstraint('outstanding_balance >= 0', name='ck_invoices_outstanding'),
        Index('ix_invoices_client_id', 'client_id'),
    )


class Payment(Base):
    """Money received from a client, either against an invoice or as an advance"""
    __tablename__ = 'payments'

    id = Column(Integer, primary_key=True)
    type = Column(String(20), nullable=False, default=PaymentType.INVOICE.value)
    invoice_id = Column(Integer, ForeignKey('invoices.id', ondelete='RESTRICT'), nullable=True)
    client_id = Column(Integer, ForeignKey('clients.id', ondelete='RESTRICT'), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)  # gross, before withholding
    currency = Column(String(10), nullable=False)
    method = Column(String(20), nullable=False, default=PaymentMethod.BANK_TRANSFER.value)
    reference = Column(String(100), nullable=False)
    payment_date = Column(Date, nullable=False)
    bank_account_id = Column(Integer, ForeignKey('bank_accounts.id', ondelete='SET NULL'), nullable=True)
    conversion_rate_to_usd = Column(Numeric(18, 6), nullable=True)
    converted_amount_usd = Column(Numeric(15, 2), nullable=True)
    withheld_tax_rate = Column(Numeric(7, 3), nullable=True)
    withheld_tax_amount = Column(Numeric(15, 2), nullable=True)
    cash_received = Column(Numeric(15, 2), nullable=False)
    notes = Column(Text, nullable=True)
    is_reversed = Column(Boolean, default=False, nullable=False)
    reversed_at = Column(DateTime, nullable=True)
    reversal_reason = Column(Text, nullable=True)
    recorded_by = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    invoice = relationship("Invoice", back_populates="payments")
    client = relationship("Client")
    bank_account = relationship("BankAccount")

    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_payments_amount'),
        CheckConstraint(
            "(type = 'invoice' AND invoice_id IS NOT NULL) OR (type = 'advance' AND invoice_id IS NULL)",
            name='ck_payments_invoice_presence'
        ),
        Index('ix_payments_client_id', 'client_id'),
        Index('ix_payments_invoice_id', 'invoice_id'),
    )


class Delivery(Base):
    """Shipment record of an order"""
    __tablename__ = 'deliveries'

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey('orders.id', ondelete='CASCADE'), unique=True, nullable=False)
    carrier = Column(String(255), nullable=False)
    tracking_number = Column(String(100), nullable=True)
    status = Column(String(20), default=DeliveryStatus.PENDING.value)
    shipped_date = Column(Date, nullable=True)
    delivered_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    order = relationship("Order", back_populates="delivery")


# ==================== BANKING ====================

class BankAccount(Base):
    """Bank Account"""
    __tablename__ = 'bank_accounts'

    id = Column(Integer, primary_key=True)
    account_name = Column(String(255), nullable=False)
    bank_name = Column(String(255), nullable=True)
    account_number = Column(String(50), unique=True, nullable=True)
    account_type = Column(String(20), nullable=True)  # checking, savings, business
    currency = Column(String(10), nullable=False, default="PKR")
    opening_balance = Column(Numeric(15, 2), default=Decimal("0.00"), nullable=False)
    current_balance = Column(Numeric(15, 2), default=Decimal("0.00"), nullable=False)
    status = Column(String(20), default='active')  # active, inactive
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    transactions = relationship(
        "BankTransaction",
        back_populates="bank_account",
        foreign_keys="BankTransaction.bank_account_id",
        order_by="BankTransaction.transaction_date"
    )


class BankTransaction(Base):
    """Signed movement on a bank account. Never deleted; cancelled or reversed instead."""
    __tablename__ = 'bank_transactions'

    id = Column(Integer, primary_key=True)
    bank_account_id = Column(Integer, ForeignKey('bank_accounts.id', ondelete='RESTRICT'), nullable=False)
    transaction_type = Column(String(20), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)  # positive inflow, negative outflow
    currency = Column(String(10), nullable=False)
    transaction_date = Column(Date, nullable=False)
    description = Column(String(500), nullable=False)
    reference = Column(String(100), nullable=True)

    # Cross-currency traceability
    original_amount = Column(Numeric(15, 2), nullable=True)
    original_currency = Column(String(10), nullable=True)
    exchange_rate = Column(Numeric(18, 6), nullable=True)

    status = Column(String(20), default='posted', nullable=False)  # posted, cancelled
    is_reversed = Column(Boolean, default=False, nullable=False)
    reversed_at = Column(DateTime, nullable=True)
    reversal_reason = Column(Text, nullable=True)

    payment_id = Column(Integer, ForeignKey('payments.id', ondelete='SET NULL'), nullable=True)
    related_bank_account_id = Column(Integer, ForeignKey('bank_accounts.id', ondelete='SET NULL'), nullable=True)
    linked_transaction_id = Column(Integer, ForeignKey('bank_transactions.id', ondelete='SET NULL'), nullable=True)
    adjusts_opening_balance = Column(Boolean, default=False, nullable=False)
    notes = Column(Text, nullable=True)
    created_by = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    bank_account = relationship("BankAccount", back_populates="transactions", foreign_keys=[bank_account_id])
    related_bank_account = relationship("BankAccount", foreign_keys=[related_bank_account_id])
    payment = relationship("Payment")

    __table_args__ = (
        Index('ix_bank_transactions_account_id', 'bank_account_id'),
        Index('ix_bank_transactions_payment_id', 'payment_id'),
    )


# ==================== AUDIT ====================

class AuditLog(Base):
    """Activity trail written alongside ledger mutations"""
    __tablename__ = 'audit_logs'

    id = Column(Integer, primary_key=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    entity_table = Column(String(50), nullable=False)  # orders, payments, banks, ...
    entity_id = Column(Integer, nullable=True)
    action = Column(String(20), nullable=False)  # create, update, delete
    message = Column(Text, nullable=False)
    metadata_json = Column(Text, nullable=True)
    user_id = Column(Integer, nullable=True)

    __table_args__ = (
        Index('ix_audit_logs_entity', 'entity_table', 'entity_id'),
    )
