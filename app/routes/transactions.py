from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db import get_db
from app.schemas.payment_log import PaymentLogOut
from app.schemas.transaction import TransactionOut
from app.services.transaction_service import get_transaction as load_transaction
from app.services.transaction_service import list_transaction_logs, list_transactions as query_transactions


router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("", response_model=list[TransactionOut])
def list_transactions(
    status: str | None = None,
    prospectId: str | None = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    return query_transactions(db, status=status, prospect_id=prospectId, limit=limit, offset=offset)


@router.get("/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: str,
    db: Session = Depends(get_db),
):
    return load_transaction(db, transaction_id)


@router.get("/{transaction_id}/logs", response_model=list[PaymentLogOut])
def get_transaction_logs(
    transaction_id: str,
    db: Session = Depends(get_db),
):
    return list_transaction_logs(db, transaction_id)
