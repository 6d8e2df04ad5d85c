"""
Payments API Routes - Invoice Payments, Advances, Reversals
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date

from orderledger.core.database import get_db
from orderledger.core.security import get_current_active_user, PermissionChecker
from orderledger.schemas import (
    InvoicePaymentCreate, AdvancePaymentCreate, PaymentUpdate, ReversalRequest,
    PaymentResponse, InvoiceResponse, ClientResponse, BankTransactionResponse, MessageResponse
)
from orderledger.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.get("", response_model=List[PaymentResponse], dependencies=[Depends(PermissionChecker(["payments:read"]))])
async def list_payments(
    invoice_id: Optional[int] = None,
    client_id: Optional[int] = None,
    method: Optional[str] = None,
    payment_type: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    fiscal_year: Optional[int] = None,
    offset: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db)
):
    return PaymentService(db).list(
        invoice_id=invoice_id,
        client_id=client_id,
        method=method,
        payment_type=payment_type,
        start_date=start_date,
        end_date=end_date,
        fiscal_year=fiscal_year,
        offset=offset,
        limit=min(limit, 500)
    )


@router.get("/stats", dependencies=[Depends(PermissionChecker(["payments:read"]))])
async def payment_stats(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    fiscal_year: Optional[int] = None,
    db: Session = Depends(get_db)
):
    return PaymentService(db).get_stats(start_date=start_date, end_date=end_date, fiscal_year=fiscal_year)


@router.get("/clients/{client_id}/history", dependencies=[Depends(PermissionChecker(["payments:read"]))])
async def client_payment_history(client_id: int, db: Session = Depends(get_db)):
    history = PaymentService(db).get_client_history(client_id)
    return {
        **history,
        "client": ClientResponse.model_validate(history["client"]),
        "payments": [PaymentResponse.model_validate(p) for p in history["payments"]],
        "unpaid_invoices": [InvoiceResponse.model_validate(i) for i in history["unpaid_invoices"]],
    }


@router.get("/{payment_id}", dependencies=[Depends(PermissionChecker(["payments:read"]))])
async def get_payment(payment_id: int, db: Session = Depends(get_db)):
    """Payment with the bank entries it produced"""
    details = PaymentService(db).get_with_details(payment_id)
    return {
        "payment": PaymentResponse.model_validate(details["payment"]),
        "bank_transactions": [BankTransactionResponse.model_validate(t) for t in details["bank_transactions"]],
    }


@router.post("/invoice", response_model=PaymentResponse, dependencies=[Depends(PermissionChecker(["payments:write"]))])
async def record_invoice_payment(
    payment_data: InvoicePaymentCreate,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    """Record a payment against an invoice"""
    payment = PaymentService(db, user_id=current_user.id).record_invoice_payment(payment_data)
    db.commit()
    return payment


@router.post("/advance", response_model=PaymentResponse, dependencies=[Depends(PermissionChecker(["payments:write"]))])
async def record_advance_payment(
    payment_data: AdvancePaymentCreate,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    """Record an advance payment from a client"""
    payment = PaymentService(db, user_id=current_user.id).record_advance_payment(payment_data)
    db.commit()
    return payment


@router.put("/{payment_id}", response_model=PaymentResponse, dependencies=[Depends(PermissionChecker(["payments:write"]))])
async def update_payment(
    payment_id: int,
    payment_data: PaymentUpdate,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    payment = PaymentService(db, user_id=current_user.id).update_payment(payment_id, payment_data)
    db.commit()
    return payment


@router.post("/{payment_id}/reverse", response_model=PaymentResponse, dependencies=[Depends(PermissionChecker(["payments:write"]))])
async def reverse_payment(
    payment_id: int,
    reversal: ReversalRequest,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    payment = PaymentService(db, user_id=current_user.id).reverse_payment(payment_id, reversal.reason)
    db.commit()
    return payment


@router.delete("/{payment_id}", response_model=MessageResponse, dependencies=[Depends(PermissionChecker(["payments:write"]))])
async def delete_payment(
    payment_id: int,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    PaymentService(db, user_id=current_user.id).delete_payment(payment_id)
    db.commit()
    return MessageResponse(message="Payment deleted")
