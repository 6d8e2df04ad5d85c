# Services Package
from orderledger.services import fiscal_calendar
from orderledger.services.audit_service import AuditService, AuditAction
from orderledger.services.user_service import UserService
from orderledger.services.client_service import ClientService
from orderledger.services.invoice_service import InvoiceService
from orderledger.services.bank_ledger_service import BankLedgerService
from orderledger.services.payment_service import PaymentService
from orderledger.services.order_service import OrderService
from orderledger.services.document_store import DocumentStore
