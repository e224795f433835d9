from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from db.config import get_mysql_session, get_mongo_db
from models.schemas import (
    DepositRequest,
    WalletResponse,
    TransactionHistoryResponse,
)
from services.resource_store import ResourceStore, UserNotFoundError
from services.wallet_service import WalletService

router = APIRouter(prefix="/wallets", tags=["Wallets"])


def get_wallet_service(session: Session = Depends(get_mysql_session)) -> WalletService:
    return WalletService(ResourceStore(session, get_mongo_db()))


@router.get(
    "/{user_id}",
    response_model=WalletResponse,
    summary="Get user wallet",
    description="Retrieves the balance of a user's account"
)
def get_wallet(
    user_id: int,
    service: WalletService = Depends(get_wallet_service)
):
    result = service.get_wallet(user_id)
    if not result:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return result


@router.post(
    "/{user_id}/deposit",
    response_model=dict,
    summary="Deposit funds",
    description="Credits the user's balance and records a deposit in the ledger"
)
def deposit(
    user_id: int,
    request: DepositRequest,
    service: WalletService = Depends(get_wallet_service)
):
    if request.amount <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Amount must be positive"
        )

    try:
        return service.deposit(
            user_id,
            request.amount,
            reason=request.reason,
            external_reference=request.external_reference
        )
    except UserNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )


@router.get(
    "/{user_id}/transactions",
    response_model=TransactionHistoryResponse,
    summary="Get transaction history",
    description="Retrieves the user's ledger, newest entries first"
)
def get_transactions(
    user_id: int,
    limit: Optional[int] = Query(None, ge=1, le=1000),
    service: WalletService = Depends(get_wallet_service)
):
    result = service.get_transaction_history(user_id, limit=limit)
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return result
