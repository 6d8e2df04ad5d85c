"""
Banking API Routes - Bank Accounts, Transactions, Transfers
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date

from orderledger.core.database import get_db
from orderledger.core.security import get_current_active_user, PermissionChecker
from orderledger.schemas import (
    BankAccountCreate, BankAccountUpdate, BankAccountResponse,
    BankTransactionCreate, BankTransactionResponse, TransferCreate, TransferResponse,
    OpeningBalanceAdjust, ReversalRequest, MessageResponse
)
from orderledger.services.bank_ledger_service import BankLedgerService

router = APIRouter(prefix="/banking", tags=["Banking"])


# ==================== BANK ACCOUNTS ====================

@router.get("/accounts", response_model=List[BankAccountResponse], dependencies=[Depends(PermissionChecker(["banking:read"]))])
async def list_bank_accounts(status: Optional[str] = None, db: Session = Depends(get_db)):
    """Bank accounts with their current balances"""
    return BankLedgerService(db).list_accounts(status=status)


@router.get("/stats", dependencies=[Depends(PermissionChecker(["banking:read"]))])
async def banking_stats(db: Session = Depends(get_db)):
    return BankLedgerService(db).get_stats()


@router.get("/accounts/{account_id}", response_model=BankAccountResponse, dependencies=[Depends(PermissionChecker(["banking:read"]))])
async def get_bank_account(account_id: int, db: Session = Depends(get_db)):
    return BankLedgerService(db).get_account_or_404(account_id)


@router.post("/accounts", response_model=BankAccountResponse, dependencies=[Depends(PermissionChecker(["banking:write"]))])
async def create_bank_account(
    account_data: BankAccountCreate,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    account = BankLedgerService(db, user_id=current_user.id).create_account(account_data)
    db.commit()
    return account


@router.put("/accounts/{account_id}", response_model=BankAccountResponse, dependencies=[Depends(PermissionChecker(["banking:write"]))])
async def update_bank_account(
    account_id: int,
    account_data: BankAccountUpdate,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    account = BankLedgerService(db, user_id=current_user.id).update_account(account_id, account_data)
    db.commit()
    return account


@router.delete("/accounts/{account_id}", response_model=MessageResponse, dependencies=[Depends(PermissionChecker(["banking:write"]))])
async def delete_bank_account(
    account_id: int,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    BankLedgerService(db, user_id=current_user.id).delete_account(account_id)
    db.commit()
    return MessageResponse(message="Bank account deleted")


@router.post("/accounts/{account_id}/opening-balance", response_model=BankAccountResponse, dependencies=[Depends(PermissionChecker(["banking:write"]))])
async def adjust_opening_balance(
    account_id: int,
    adjust_data: OpeningBalanceAdjust,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    """Correct the opening balance by posting an adjustment"""
    service = BankLedgerService(db, user_id=current_user.id)
    service.adjust_opening_balance(account_id, adjust_data.opening_balance, adjust_data.reason)
    db.commit()
    return service.get_account_or_404(account_id)


# ==================== TRANSACTIONS ====================

@router.get("/accounts/{account_id}/transactions", response_model=List[BankTransactionResponse], dependencies=[Depends(PermissionChecker(["banking:read"]))])
async def list_transactions(
    account_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    transaction_type: Optional[str] = None,
    limit: int = 100,
    db: Session = Depends(get_db)
):
    return BankLedgerService(db).get_transactions(
        account_id, start_date=start_date, end_date=end_date,
        transaction_type=transaction_type, limit=min(limit, 1000)
    )


@router.get("/accounts/{account_id}/transactions/stats", dependencies=[Depends(PermissionChecker(["banking:read"]))])
async def transaction_stats(
    account_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db)
):
    return BankLedgerService(db).get_transaction_stats(account_id, start_date, end_date)


@router.post("/accounts/{account_id}/transactions", response_model=BankTransactionResponse, dependencies=[Depends(PermissionChecker(["banking:write"]))])
async def record_transaction(
    account_id: int,
    transaction_data: BankTransactionCreate,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    """Record a deposit, withdrawal, fee or interest"""
    transaction = BankLedgerService(db, user_id=current_user.id).record_transaction(account_id, transaction_data)
    db.commit()
    return transaction


@router.post("/transactions/{transaction_id}/cancel", response_model=BankTransactionResponse, dependencies=[Depends(PermissionChecker(["banking:write"]))])
async def cancel_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    transaction = BankLedgerService(db, user_id=current_user.id).cancel_transaction(transaction_id)
    db.commit()
    return transaction


@router.post("/transactions/{transaction_id}/reverse", response_model=BankTransactionResponse, dependencies=[Depends(PermissionChecker(["banking:write"]))])
async def reverse_transaction(
    transaction_id: int,
    reversal: ReversalRequest,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    transaction = BankLedgerService(db, user_id=current_user.id).reverse_transaction(transaction_id, reversal.reason)
    db.commit()
    return transaction


# ==================== TRANSFERS ====================

@router.post("/transfers", response_model=TransferResponse, dependencies=[Depends(PermissionChecker(["banking:write"]))])
async def create_transfer(
    transfer_data: TransferCreate,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    """Transfer between two accounts, converting when their currencies differ"""
    outgoing, incoming = BankLedgerService(db, user_id=current_user.id).transfer(transfer_data)
    db.commit()
    return TransferResponse(
        outgoing=BankTransactionResponse.model_validate(outgoing),
        incoming=BankTransactionResponse.model_validate(incoming)
    )
