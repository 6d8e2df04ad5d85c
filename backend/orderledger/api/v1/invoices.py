"""
Invoices API Routes (read side; invoices change through orders and payments)
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date

from orderledger.core.database import get_db
from orderledger.core.security import PermissionChecker
from orderledger.schemas import InvoiceResponse, PaymentResponse
from orderledger.services.invoice_service import InvoiceService

router = APIRouter(prefix="/invoices", tags=["Invoices"], dependencies=[Depends(PermissionChecker(["invoices:read"]))])


@router.get("", response_model=List[InvoiceResponse])
async def list_invoices(
    status: Optional[str] = None,
    client_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db)
):
    return InvoiceService(db).list(
        status=status, client_id=client_id, start_date=start_date, end_date=end_date, search=search
    )


@router.get("/stats")
async def invoice_stats(client_id: Optional[int] = None, db: Session = Depends(get_db)):
    return InvoiceService(db).get_stats(client_id=client_id)


@router.get("/unpaid", response_model=List[InvoiceResponse])
async def unpaid_invoices(client_id: Optional[int] = None, db: Session = Depends(get_db)):
    """Invoices with an outstanding balance, largest first"""
    return InvoiceService(db).get_unpaid(client_id=client_id)


@router.get("/{invoice_id}")
async def get_invoice(invoice_id: int, db: Session = Depends(get_db)):
    invoice = InvoiceService(db).get_with_details(invoice_id)
    return {
        "invoice": InvoiceResponse.model_validate(invoice),
        "order_number": invoice.order.order_number,
        "client_name": invoice.client.name,
        "payments": [PaymentResponse.model_validate(p) for p in invoice.payments],
    }
