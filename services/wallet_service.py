from decimal import Decimal
from typing import Optional

from models.mysql_models import User, BillingTransaction
from models.schemas import TransactionType
from services.resource_store import ResourceStore


class WalletService:
    def __init__(self, store: ResourceStore):
        self.store = store

    def _format_amount(self, cents: int) -> str:
        value = (Decimal(int(cents)) / Decimal(100)).quantize(Decimal('0.01'))
        result = format(value, 'f')
        return result if result != '-0.00' else '0.00'

    def _wallet_to_dict(self, user: User) -> dict:
        return {
            "user_id": user.id,
            "balance": self._format_amount(user.balance),
            "balance_cents": int(user.balance),
            "currency": user.currency,
            "is_suspended": bool(user.is_suspended)
        }

    def _transaction_to_dict(self, tx: BillingTransaction) -> dict:
        return {
            "id": tx.id,
            "user_id": tx.user_id,
            "server_id": tx.server_id,
            "amount": self._format_amount(tx.amount),
            "amount_cents": int(tx.amount),
            "currency": tx.currency,
            "type": tx.type,
            "status": tx.status,
            "description": tx.description or "",
            "external_reference": tx.external_reference,
            "created_at": tx.created_at
        }

    def get_wallet(self, user_id: int) -> Optional[dict]:
        user = self.store.get_user(user_id)
        if not user:
            return None
        return self._wallet_to_dict(user)

    def deposit(
        self,
        user_id: int,
        amount: int,
        reason: str = "Funds added to account",
        external_reference: Optional[str] = None
    ) -> dict:
        if amount <= 0:
            raise ValueError("Deposit amount must be positive")

        tx = self.store.apply_transaction(
            user_id=user_id,
            amount=amount,
            tx_type=TransactionType.DEPOSIT.value,
            description=reason,
            external_reference=external_reference
        )
        user = self.store.get_user(user_id)

        return {
            "transaction": self._transaction_to_dict(tx),
            "wallet": self._wallet_to_dict(user)
        }

    def get_transaction_history(self, user_id: int, limit: Optional[int] = None) -> Optional[dict]:
        if not self.store.get_user(user_id):
            return None

        transactions = self.store.get_transactions(user_id, limit=limit)
        return {
            "user_id": user_id,
            "transactions": [self._transaction_to_dict(tx) for tx in transactions]
        }
