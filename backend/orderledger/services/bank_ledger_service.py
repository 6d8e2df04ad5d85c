"""
Bank Ledger Service - Bank Accounts, Transactions, Transfers, Balances

Transactions are append-only. Corrections are made by cancelling or
reversing an entry, or by posting a new one. current_balance is a cache of
opening_balance plus every live entry and is recomputed in the same
transaction as each change.
"""
from typing import Optional, List, Dict, Tuple
from sqlalchemy.orm import Session
from sqlalchemy import func
from decimal import Decimal
from datetime import date, datetime
import logging

from orderledger.core.exceptions import (
    NotFound, InvalidAmount, InvalidState, CurrencyMismatch, InvalidExchangeRate
)
from orderledger.core.money import ZERO, money, to_decimal
from orderledger.models import BankAccount, BankTransaction, BankTransactionType
from orderledger.schemas import (
    BankAccountCreate, BankAccountUpdate, BankTransactionCreate, TransferCreate
)
from orderledger.services.audit_service import AuditService, AuditAction

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"
POSTED = "posted"

INFLOW_TYPES = {BankTransactionType.DEPOSIT.value, BankTransactionType.INTEREST.value}
OUTFLOW_TYPES = {BankTransactionType.WITHDRAWAL.value, BankTransactionType.FEE.value}


def is_live(transaction: BankTransaction) -> bool:
    """Whether an entry counts towards the balance"""
    return transaction.status != CANCELLED and not transaction.is_reversed


class BankLedgerService:
    def __init__(self, db: Session, user_id: Optional[int] = None):
        self.db = db
        self.user_id = user_id
        self.audit = AuditService(db)

    # ==================== ACCOUNTS ====================

    def get_account(self, account_id: int, for_update: bool = False) -> Optional[BankAccount]:
        query = self.db.query(BankAccount).filter(BankAccount.id == account_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get_account_or_404(self, account_id: int, for_update: bool = False) -> BankAccount:
        account = self.get_account(account_id, for_update=for_update)
        if not account:
            raise NotFound("Bank account", account_id)
        return account

    def list_accounts(self, status: Optional[str] = None) -> List[BankAccount]:
        query = self.db.query(BankAccount)
        if status:
            query = query.filter(BankAccount.status == status)
        return query.order_by(BankAccount.account_name).all()

    def create_account(self, account_data: BankAccountCreate) -> BankAccount:
        if account_data.account_number and self._account_number_taken(account_data.account_number):
            raise InvalidState(f"Bank account number {account_data.account_number} already exists")

        opening_balance = money(account_data.opening_balance)
        account = BankAccount(
            account_name=account_data.account_name,
            bank_name=account_data.bank_name,
            account_number=account_data.account_number,
            account_type=account_data.account_type,
            currency=account_data.currency.upper(),
            opening_balance=opening_balance,
            current_balance=opening_balance,
            status="active",
            notes=account_data.notes
        )
        self.db.add(account)
        self.db.flush()

        self.audit.log(
            "banks", account.id, AuditAction.CREATE,
            f"Bank account {account.account_name} created with opening balance "
            f"{account.currency} {opening_balance}",
            {"currency": account.currency, "opening_balance": opening_balance},
            user_id=self.user_id
        )
        return account

    def update_account(self, account_id: int, account_data: BankAccountUpdate) -> BankAccount:
        account = self.get_account_or_404(account_id, for_update=True)
        changes = account_data.model_dump(exclude_unset=True)

        if "account_number" in changes and changes["account_number"] != account.account_number:
            if changes["account_number"] and self._account_number_taken(changes["account_number"], account.id):
                raise InvalidState(f"Bank account number {changes['account_number']} already exists")

        if "currency" in changes and changes["currency"]:
            changes["currency"] = changes["currency"].upper()
            if changes["currency"] != account.currency and self._has_transactions(account.id):
                raise InvalidState("Currency cannot change once transactions have been recorded")

        for field, value in changes.items():
            setattr(account, field, value)
        self.db.flush()

        self.audit.log(
            "banks", account.id, AuditAction.UPDATE,
            f"Bank account {account.account_name} updated",
            changes, user_id=self.user_id
        )
        return account

    def delete_account(self, account_id: int) -> None:
        account = self.get_account_or_404(account_id, for_update=True)
        if self._has_transactions(account.id):
            raise InvalidState("Bank account has transactions; deactivate it instead")

        name = account.account_name
        self.db.delete(account)
        self.db.flush()
        self.audit.log("banks", account_id, AuditAction.DELETE,
                       f"Bank account {name} deleted", user_id=self.user_id)

    def _account_number_taken(self, account_number: str, exclude_id: Optional[int] = None) -> bool:
        query = self.db.query(BankAccount.id).filter(BankAccount.account_number == account_number)
        if exclude_id:
            query = query.filter(BankAccount.id != exclude_id)
        return query.first() is not None

    def _has_transactions(self, account_id: int) -> bool:
        return self.db.query(BankTransaction.id).filter(
            BankTransaction.bank_account_id == account_id
        ).first() is not None

    # ==================== BALANCES ====================

    def recompute_balance(self, account: BankAccount) -> Decimal:
        """current_balance = opening_balance + sum of live entries"""
        self.db.flush()
        total = self.db.query(func.coalesce(func.sum(BankTransaction.amount), 0)).filter(
            BankTransaction.bank_account_id == account.id,
            BankTransaction.status != CANCELLED,
            BankTransaction.is_reversed == False
        ).scalar()
        account.current_balance = money(account.opening_balance) + money(total)
        self.db.flush()
        return account.current_balance

    def effective_opening_balance(self, account: BankAccount) -> Decimal:
        """Opening balance including live opening-balance adjustments"""
        adjustments = self.db.query(func.coalesce(func.sum(BankTransaction.amount), 0)).filter(
            BankTransaction.bank_account_id == account.id,
            BankTransaction.adjusts_opening_balance == True,
            BankTransaction.status != CANCELLED,
            BankTransaction.is_reversed == False
        ).scalar()
        return money(account.opening_balance) + money(adjustments)

    # ==================== POSTING ====================

    def _post(
        self,
        account: BankAccount,
        transaction_type: str,
        amount: Decimal,
        description: str,
        transaction_date: Optional[date] = None,
        reference: Optional[str] = None,
        **extra
    ) -> BankTransaction:
        if account.status != "active":
            raise InvalidState(f"Bank account {account.account_name} is inactive")

        transaction = BankTransaction(
            bank_account_id=account.id,
            transaction_type=transaction_type,
            amount=money(amount),
            currency=account.currency,
            transaction_date=transaction_date or date.today(),
            description=description,
            reference=reference,
            status=POSTED,
            is_reversed=False,
            created_by=self.user_id,
            **extra
        )
        self.db.add(transaction)
        self.db.flush()
        self.recompute_balance(account)
        return transaction

    def record_transaction(self, account_id: int, data: BankTransactionCreate) -> BankTransaction:
        """Manual deposit, withdrawal, fee or interest"""
        account = self.get_account_or_404(account_id, for_update=True)

        amount = money(data.amount)
        if amount <= 0:
            raise InvalidAmount("Amount must be at least 0.01")

        currency = (data.currency or account.currency).upper()
        if currency != account.currency:
            raise CurrencyMismatch(
                f"Transaction currency {currency} does not match account currency {account.currency}"
            )

        if data.transaction_type in INFLOW_TYPES:
            signed = amount
        elif data.transaction_type in OUTFLOW_TYPES:
            signed = -amount
        else:
            raise InvalidState(
                f"{data.transaction_type} entries are created by transfers, payments or balance adjustments"
            )

        transaction = self._post(
            account,
            data.transaction_type,
            signed,
            data.description,
            transaction_date=data.transaction_date,
            reference=data.reference,
            notes=data.notes
        )

        self.audit.log(
            "banks", account.id, AuditAction.CREATE,
            f"{data.transaction_type.replace('_', ' ').title()} of {account.currency} {money(amount)} "
            f"recorded on {account.account_name}",
            {"transaction_id": transaction.id, "amount": signed},
            user_id=self.user_id
        )
        return transaction

    def post_payment_receipt(
        self,
        account: BankAccount,
        amount: Decimal,
        payment_id: int,
        description: str,
        transaction_date: Optional[date] = None,
        reference: Optional[str] = None,
        original_amount: Optional[Decimal] = None,
        original_currency: Optional[str] = None,
        exchange_rate: Optional[Decimal] = None
    ) -> BankTransaction:
        """Inflow for money received against a payment; account must already be locked"""
        return self._post(
            account,
            BankTransactionType.PAYMENT_RECEIVED.value,
            money(amount),
            description,
            transaction_date=transaction_date,
            reference=reference,
            payment_id=payment_id,
            original_amount=original_amount,
            original_currency=original_currency,
            exchange_rate=exchange_rate
        )

    def transfer(self, data: TransferCreate) -> Tuple[BankTransaction, BankTransaction]:
        """
        Move money between two accounts as a linked pair of entries.

        Same currency: -amount / +amount.
        Cross currency: -original_amount in the source currency and
        +original_amount * exchange_rate in the destination currency.
        """
        if data.from_account_id == data.to_account_id:
            raise InvalidState("Cannot transfer to the same account")

        # Lock in id order so concurrent opposite transfers cannot deadlock
        first_id, second_id = sorted([data.from_account_id, data.to_account_id])
        locked = {
            first_id: self.get_account_or_404(first_id, for_update=True),
            second_id: self.get_account_or_404(second_id, for_update=True),
        }
        source = locked[data.from_account_id]
        destination = locked[data.to_account_id]

        cross_currency = source.currency != destination.currency
        exchange_rate = to_decimal(data.exchange_rate) if data.exchange_rate is not None else None

        if cross_currency:
            if exchange_rate is None or exchange_rate <= 0:
                raise InvalidExchangeRate(
                    f"A positive exchange rate is required to transfer {source.currency} to {destination.currency}"
                )
            if data.original_amount is None:
                raise InvalidAmount(
                    f"Original amount in {source.currency} is required for a cross-currency transfer"
                )
            source_amount = data.original_amount
        else:
            if exchange_rate is not None:
                raise InvalidExchangeRate("Exchange rate does not apply between accounts in the same currency")
            source_amount = data.amount if data.amount is not None else data.original_amount

        out_amount = money(source_amount)
        in_amount = money(out_amount * exchange_rate) if cross_currency else out_amount
        if out_amount <= 0 or in_amount <= 0:
            raise InvalidAmount("Transfer amount must be at least 0.01 on both sides")
        description = data.description or f"Transfer {source.account_name} to {destination.account_name}"

        outgoing = self._post(
            source,
            BankTransactionType.TRANSFER_OUT.value,
            -out_amount,
            description,
            transaction_date=data.transaction_date,
            reference=data.reference,
            related_bank_account_id=destination.id
        )
        incoming_extra = {"related_bank_account_id": source.id}
        if cross_currency:
            incoming_extra.update(
                original_amount=out_amount,
                original_currency=source.currency,
                exchange_rate=exchange_rate
            )
        incoming = self._post(
            destination,
            BankTransactionType.TRANSFER_IN.value,
            in_amount,
            description,
            transaction_date=data.transaction_date,
            reference=data.reference,
            **incoming_extra
        )
        outgoing.linked_transaction_id = incoming.id
        incoming.linked_transaction_id = outgoing.id
        self.db.flush()

        self.audit.log(
            "banks", source.id, AuditAction.CREATE,
            f"Transferred {source.currency} {out_amount} from {source.account_name} "
            f"to {destination.account_name} ({destination.currency} {in_amount})",
            {"outgoing_id": outgoing.id, "incoming_id": incoming.id, "exchange_rate": exchange_rate},
            user_id=self.user_id
        )
        return outgoing, incoming

    def adjust_opening_balance(self, account_id: int, new_opening_balance: Decimal,
                               reason: Optional[str] = None) -> Optional[BankTransaction]:
        """
        Correct the opening balance without rewriting history: post an
        adjustment for the difference. Returns None when nothing changes.
        """
        account = self.get_account_or_404(account_id, for_update=True)
        current_opening = self.effective_opening_balance(account)
        delta = money(new_opening_balance) - current_opening
        if delta == ZERO:
            return None

        transaction = self._post(
            account,
            BankTransactionType.ADJUSTMENT.value,
            delta,
            reason or f"Opening balance adjusted from {current_opening} to {money(new_opening_balance)}",
            reference=f"OB-ADJ-{int(datetime.utcnow().timestamp())}",
            adjusts_opening_balance=True
        )

        self.audit.log(
            "banks", account.id, AuditAction.UPDATE,
            f"Opening balance of {account.account_name} adjusted by {account.currency} {delta}",
            {"previous": current_opening, "new": money(new_opening_balance), "transaction_id": transaction.id},
            user_id=self.user_id
        )
        return transaction

    # ==================== CANCEL / REVERSE ====================

    def get_transaction(self, transaction_id: int) -> Optional[BankTransaction]:
        return self.db.query(BankTransaction).filter(BankTransaction.id == transaction_id).first()

    def get_transaction_or_404(self, transaction_id: int) -> BankTransaction:
        transaction = self.get_transaction(transaction_id)
        if not transaction:
            raise NotFound("Bank transaction", transaction_id)
        return transaction

    def cancel_transaction(self, transaction_id: int) -> BankTransaction:
        transaction = self.get_transaction_or_404(transaction_id)
        self._check_reversible(transaction)

        for entry in self._with_linked_leg(transaction):
            account = self.get_account_or_404(entry.bank_account_id, for_update=True)
            entry.status = CANCELLED
            self.recompute_balance(account)

        self.audit.log(
            "banks", transaction.bank_account_id, AuditAction.UPDATE,
            f"Transaction {transaction.id} cancelled",
            {"transaction_id": transaction.id, "amount": transaction.amount},
            user_id=self.user_id
        )
        return transaction

    def reverse_transaction(self, transaction_id: int, reason: Optional[str] = None,
                            allow_payment_linked: bool = False) -> BankTransaction:
        transaction = self.get_transaction_or_404(transaction_id)
        self._check_reversible(transaction, allow_payment_linked=allow_payment_linked)

        for entry in self._with_linked_leg(transaction):
            account = self.get_account_or_404(entry.bank_account_id, for_update=True)
            entry.is_reversed = True
            entry.reversed_at = datetime.utcnow()
            entry.reversal_reason = reason
            self.recompute_balance(account)

        self.audit.log(
            "banks", transaction.bank_account_id, AuditAction.UPDATE,
            f"Transaction {transaction.id} reversed" + (f": {reason}" if reason else ""),
            {"transaction_id": transaction.id, "amount": transaction.amount},
            user_id=self.user_id
        )
        return transaction

    def _check_reversible(self, transaction: BankTransaction, allow_payment_linked: bool = False) -> None:
        if not is_live(transaction):
            raise InvalidState(f"Transaction {transaction.id} is already cancelled or reversed")
        if transaction.payment_id and not allow_payment_linked:
            raise InvalidState("Payment-linked transactions can only be reversed from the payment")

    def _with_linked_leg(self, transaction: BankTransaction) -> List[BankTransaction]:
        entries = [transaction]
        if transaction.linked_transaction_id:
            linked = self.get_transaction(transaction.linked_transaction_id)
            if linked and is_live(linked):
                entries.append(linked)
        return entries

    def entries_for_payment(self, payment_id: int) -> List[BankTransaction]:
        return self.db.query(BankTransaction).filter(
            BankTransaction.payment_id == payment_id
        ).order_by(BankTransaction.id).all()

    def live_payment_entries(self, payment_id: int) -> List[BankTransaction]:
        return self.db.query(BankTransaction).filter(
            BankTransaction.payment_id == payment_id,
            BankTransaction.status != CANCELLED,
            BankTransaction.is_reversed == False
        ).all()

    # ==================== READS ====================

    def get_transactions(
        self,
        account_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        transaction_type: Optional[str] = None,
        limit: int = 100
    ) -> List[BankTransaction]:
        self.get_account_or_404(account_id)
        query = self.db.query(BankTransaction).filter(BankTransaction.bank_account_id == account_id)
        if start_date:
            query = query.filter(BankTransaction.transaction_date >= start_date)
        if end_date:
            query = query.filter(BankTransaction.transaction_date <= end_date)
        if transaction_type:
            query = query.filter(BankTransaction.transaction_type == transaction_type)
        return query.order_by(
            BankTransaction.transaction_date.desc(), BankTransaction.id.desc()
        ).limit(limit).all()

    def get_transaction_stats(self, account_id: int, start_date: Optional[date] = None,
                              end_date: Optional[date] = None) -> Dict:
        """Inflow/outflow totals and counts by type over live entries"""
        transactions = [
            t for t in self.get_transactions(account_id, start_date, end_date, limit=100000)
            if is_live(t)
        ]
        deposits = sum((money(t.amount) for t in transactions if t.amount > 0), ZERO)
        withdrawals = sum((-money(t.amount) for t in transactions if t.amount < 0), ZERO)

        by_type: Dict[str, int] = {}
        for t in transactions:
            by_type[t.transaction_type] = by_type.get(t.transaction_type, 0) + 1

        return {
            "total_deposits": deposits,
            "total_withdrawals": withdrawals,
            "net_change": deposits - withdrawals,
            "transaction_count": len(transactions),
            "by_type": by_type,
        }

    def get_stats(self) -> Dict:
        accounts = self.list_accounts()
        by_currency: Dict[str, Dict] = {}
        for account in accounts:
            if account.status != "active":
                continue
            bucket = by_currency.setdefault(account.currency, {"count": 0, "total_balance": ZERO})
            bucket["count"] += 1
            bucket["total_balance"] += money(account.current_balance)

        return {
            "total_accounts": len(accounts),
            "active_accounts": sum(1 for a in accounts if a.status == "active"),
            "by_currency": by_currency,
        }
