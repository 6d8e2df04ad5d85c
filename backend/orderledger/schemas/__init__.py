"""
Pydantic Schemas for API Validation
"""
from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Dict, List, Optional
from datetime import datetime, date
from decimal import Decimal
from enum import Enum


# ==================== ENUMS ====================

class ClientTypeEnum(str, Enum):
    LOCAL = "local"
    INTERNATIONAL = "international"


class UserRoleEnum(str, Enum):
    SUPER_ADMIN = "super-admin"
    ADMIN = "admin"
    PRODUCTION = "production"


class OrderStatusEnum(str, Enum):
    PENDING = "pending"
    IN_PRODUCTION = "in_production"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class DiscountTypeEnum(str, Enum):
    AMOUNT = "amount"
    PERCENTAGE = "percentage"


class PaymentMethodEnum(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"
    CASH = "cash"
    CREDIT_CARD = "credit_card"
    OTHER = "other"


class ManualTransactionTypeEnum(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    FEE = "fee"
    INTEREST = "interest"


class DocumentKindEnum(str, Enum):
    PACKING_LIST = "packing_list"
    PROFORMA_INVOICE = "proforma_invoice"
    COMMERCIAL_INVOICE = "commercial_invoice"


class RequestModel(BaseModel):
    """Request bodies hand plain strings, not enum members, to the services"""
    model_config = ConfigDict(use_enum_values=True)


# ==================== AUTH SCHEMAS ====================

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserCreate(RequestModel):
    username: str = Field(..., min_length=3, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=8)
    full_name: Optional[str] = None
    role: UserRoleEnum = UserRoleEnum.ADMIN


class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    full_name: Optional[str] = None
    role: str
    is_active: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ==================== CLIENT SCHEMAS ====================

class ClientCreate(RequestModel):
    name: str = Field(..., min_length=1, max_length=255)
    type: ClientTypeEnum
    email: Optional[str] = None
    phone: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None


class ClientResponse(BaseModel):
    id: int
    name: str
    type: str
    status: Optional[str] = None
    email: Optional[str] = None
    country: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# ==================== ORDER SCHEMAS ====================

class DiscountInput(RequestModel):
    type: DiscountTypeEnum = DiscountTypeEnum.AMOUNT
    value: Decimal = Field(default=Decimal("0"))


class OrderItemCreate(RequestModel):
    product: str = Field(..., min_length=1, max_length=255)
    quantity_kg: Decimal
    unit_price: Decimal
    exclusive_value: Optional[Decimal] = None  # defaults to quantity * unit price
    tax_rate: Optional[Decimal] = None  # percent
    tax_amount: Optional[Decimal] = None  # defaults to exclusive * rate / 100
    discount: Optional[DiscountInput] = None
    notes: Optional[str] = None


class OrderCreate(RequestModel):
    client_id: int
    invoice_number: str = Field(..., min_length=1, max_length=100)
    items: List[OrderItemCreate] = Field(..., min_length=1)
    freight_cost: Decimal = Field(default=Decimal("0.00"))
    fiscal_year: Optional[int] = None
    order_creation_date: Optional[datetime] = None
    currency: Optional[str] = Field(None, max_length=10)  # international clients only
    expected_delivery_date: Optional[date] = None
    shipment_method: Optional[str] = None
    shipping_company: Optional[str] = None
    notes: Optional[str] = None


class OrderItemsUpdate(RequestModel):
    items: List[OrderItemCreate] = Field(..., min_length=1)
    freight_cost: Optional[Decimal] = None


class OrderStatusUpdate(RequestModel):
    status: OrderStatusEnum
    delivery_date: Optional[date] = None


class InvoiceNumberUpdate(BaseModel):
    invoice_number: str = Field(..., min_length=1, max_length=100)


class OrderDetailsUpdate(RequestModel):
    notes: Optional[str] = None
    expected_delivery_date: Optional[date] = None
    delivery_date: Optional[date] = None
    shipment_method: Optional[str] = None
    shipping_company: Optional[str] = None


class DocumentAttach(RequestModel):
    kind: DocumentKindEnum
    storage_id: str = Field(..., min_length=1, max_length=255)


class DeliveryCreate(BaseModel):
    carrier: str = Field(..., min_length=1, max_length=255)
    tracking_number: Optional[str] = None
    notes: Optional[str] = None


class OrderItemResponse(BaseModel):
    id: int
    product: str
    quantity_kg: Decimal
    unit_price: Decimal
    exclusive_value: Decimal
    tax_rate: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    discount_type: Optional[str] = None
    discount_value: Optional[Decimal] = None
    discount_amount: Optional[Decimal] = None
    inclusive_total: Decimal
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class DeliveryResponse(BaseModel):
    id: int
    order_id: int
    carrier: str
    tracking_number: Optional[str] = None
    status: str
    shipped_date: Optional[date] = None
    delivered_date: Optional[date] = None

    model_config = ConfigDict(from_attributes=True)


class InvoiceResponse(BaseModel):
    id: int
    invoice_number: str
    order_id: int
    client_id: int
    amount: Decimal
    currency: str
    total_paid: Decimal
    outstanding_balance: Decimal
    status: str
    issue_date: date
    due_date: date
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class OrderResponse(BaseModel):
    id: int
    order_number: str
    invoice_number: str
    client_id: int
    status: str
    fiscal_year: int
    order_creation_date: datetime
    freight_cost: Decimal
    total_amount: Decimal
    currency: str
    delivery_date: Optional[date] = None
    expected_delivery_date: Optional[date] = None
    shipment_method: Optional[str] = None
    shipping_company: Optional[str] = None
    notes: Optional[str] = None
    packing_list_id: Optional[str] = None
    proforma_invoice_id: Optional[str] = None
    commercial_invoice_id: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class OrderWithItems(OrderResponse):
    items: List[OrderItemResponse] = []
    invoice: Optional[InvoiceResponse] = None
    delivery: Optional[DeliveryResponse] = None


# ==================== PAYMENT SCHEMAS ====================

class PaymentBase(RequestModel):
    amount: Decimal = Field(..., description="Gross amount, before withholding")
    method: PaymentMethodEnum = PaymentMethodEnum.BANK_TRANSFER
    reference: str = Field(..., max_length=100)
    payment_date: Optional[date] = None
    bank_account_id: Optional[int] = None
    conversion_rate_to_usd: Optional[Decimal] = None
    withheld_tax_rate: Optional[Decimal] = Field(None, description="Percent withheld, local clients only")
    notes: Optional[str] = None


class InvoicePaymentCreate(PaymentBase):
    invoice_id: int


class AdvancePaymentCreate(PaymentBase):
    client_id: int


class PaymentUpdate(RequestModel):
    amount: Optional[Decimal] = None
    reference: Optional[str] = Field(None, max_length=100)
    payment_date: Optional[date] = None
    bank_account_id: Optional[int] = None
    notes: Optional[str] = None


class ReversalRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class PaymentResponse(BaseModel):
    id: int
    type: str
    invoice_id: Optional[int] = None
    client_id: int
    amount: Decimal
    currency: str
    method: str
    reference: str
    payment_date: date
    bank_account_id: Optional[int] = None
    conversion_rate_to_usd: Optional[Decimal] = None
    converted_amount_usd: Optional[Decimal] = None
    withheld_tax_rate: Optional[Decimal] = None
    withheld_tax_amount: Optional[Decimal] = None
    cash_received: Decimal
    notes: Optional[str] = None
    is_reversed: bool = False
    reversed_at: Optional[datetime] = None
    reversal_reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# ==================== BANKING SCHEMAS ====================

class BankAccountBase(BaseModel):
    account_name: str = Field(..., min_length=2, max_length=255)
    bank_name: Optional[str] = Field(None, max_length=255)
    account_number: Optional[str] = Field(None, max_length=50)
    account_type: Optional[str] = Field(None, max_length=20)  # checking, savings, business
    currency: str = Field(default="PKR", min_length=3, max_length=10)


class BankAccountCreate(BankAccountBase):
    opening_balance: Decimal = Field(default=Decimal("0.00"))
    notes: Optional[str] = None


class BankAccountUpdate(BaseModel):
    account_name: Optional[str] = Field(None, min_length=2, max_length=255)
    bank_name: Optional[str] = Field(None, max_length=255)
    account_number: Optional[str] = Field(None, max_length=50)
    account_type: Optional[str] = Field(None, max_length=20)
    currency: Optional[str] = Field(None, min_length=3, max_length=10)
    status: Optional[str] = Field(None, pattern="^(active|inactive)$")
    notes: Optional[str] = None


class BankAccountResponse(BankAccountBase):
    id: int
    opening_balance: Decimal
    current_balance: Decimal
    status: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class BankTransactionCreate(RequestModel):
    transaction_type: ManualTransactionTypeEnum
    amount: Decimal
    currency: Optional[str] = None  # defaults to the account currency
    description: str = Field(..., min_length=1, max_length=500)
    reference: Optional[str] = Field(None, max_length=100)
    transaction_date: Optional[date] = None
    notes: Optional[str] = None


class TransferCreate(BaseModel):
    from_account_id: int
    to_account_id: int
    amount: Optional[Decimal] = None
    original_amount: Optional[Decimal] = None  # source-currency amount of a cross-currency transfer
    exchange_rate: Optional[Decimal] = None
    description: Optional[str] = Field(None, max_length=500)
    reference: Optional[str] = Field(None, max_length=100)
    transaction_date: Optional[date] = None


class OpeningBalanceAdjust(BaseModel):
    opening_balance: Decimal
    reason: Optional[str] = Field(None, max_length=500)


class BankTransactionResponse(BaseModel):
    id: int
    bank_account_id: int
    transaction_type: str
    amount: Decimal
    currency: str
    transaction_date: date
    description: str
    reference: Optional[str] = None
    original_amount: Optional[Decimal] = None
    original_currency: Optional[str] = None
    exchange_rate: Optional[Decimal] = None
    status: str
    is_reversed: bool
    reversal_reason: Optional[str] = None
    payment_id: Optional[int] = None
    related_bank_account_id: Optional[int] = None
    linked_transaction_id: Optional[int] = None
    adjusts_opening_balance: bool = False

    model_config = ConfigDict(from_attributes=True)


class TransferResponse(BaseModel):
    outgoing: BankTransactionResponse
    incoming: BankTransactionResponse


# ==================== MISC ====================

class FiscalYearResponse(BaseModel):
    fiscal_year: int
    label: str
    display_name: str
    start: datetime
    end: datetime


class AuditLogResponse(BaseModel):
    id: int
    created_at: datetime
    entity_table: str
    entity_id: Optional[int] = None
    action: str
    message: str
    metadata_json: Optional[str] = None
    user_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class MessageResponse(BaseModel):
    message: str
    success: bool = True


class ErrorResponse(BaseModel):
    detail: str
    code: Optional[str] = None
    details: Optional[Dict] = None
