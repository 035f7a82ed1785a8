import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import (
    CustomerNotFound,
    OfferingNotFound,
    PersistenceError,
    TransactionAlreadyClosed,
    TransactionNotFound,
)
from app.models.customer import Customer
from app.models.package import Package
from app.models.payment_log import PaymentLog
from app.models.transaction import Transaction


logger = logging.getLogger(__name__)

PENDING = "pending"
COMPLETED = "completed"
FAILED = "failed"


@dataclass(frozen=True)
class Completed:
    external_payment_id: Optional[str]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Failed:
    error_message: str


Outcome = Union[Completed, Failed]


def _as_uuid(value) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def find_package(db: Session, offering_id) -> Optional[Package]:
    package = db.query(Package).filter(Package.clubready_package_id == str(offering_id)).first()
    if package:
        return package

    local_id = _as_uuid(offering_id)
    if local_id is None:
        return None
    return db.query(Package).filter(Package.id == local_id).first()


def open_transaction(db: Session, customer_id, offering_id, *, last_four: Optional[str] = None) -> Transaction:
    """
    Insert a committed ``pending`` row before any money moves.

    The amount is copied from the package price at this instant and never
    recomputed afterwards.
    """
    try:
        package = find_package(db, offering_id)
        if not package:
            raise OfferingNotFound()

        local_id = _as_uuid(customer_id)
        customer = db.query(Customer).filter(Customer.id == local_id).first() if local_id else None
        if not customer:
            raise CustomerNotFound()

        transaction = Transaction(
            prospect_id=customer.id,
            package_id=package.id,
            amount=package.price,
            status=PENDING,
            payment_method="credit_card",
            last_four=last_four,
        )
        db.add(transaction)
        db.commit()
        db.refresh(transaction)
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(details={"reason": str(e)}) from e

    logger.info(
        "transaction opened",
        extra={
            "transaction_id": str(transaction.id),
            "prospect_id": str(customer.id),
            "package_id": str(package.id),
            "amount": str(transaction.amount),
        },
    )
    return transaction


def close_transaction(db: Session, transaction_id, outcome: Outcome) -> Transaction:
    """
    Apply the single terminal transition of a pending transaction.

    The update only matches rows still ``pending``; closing twice raises
    ``TransactionAlreadyClosed`` instead of overwriting the first outcome.
    """
    if isinstance(outcome, Completed):
        values = {
            Transaction.status: COMPLETED,
            Transaction.clubready_transaction_id: outcome.external_payment_id,
            Transaction.completed_at: datetime.utcnow(),
            Transaction.meta: outcome.metadata,
        }
    else:
        values = {
            Transaction.status: FAILED,
            Transaction.error_message: outcome.error_message,
        }

    try:
        updated = (
            db.query(Transaction)
            .filter(Transaction.id == transaction_id)
            .filter(Transaction.status == PENDING)
            .update(values, synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(details={"reason": str(e)}) from e

    if updated != 1:
        raise TransactionAlreadyClosed(
            f"Transaction {transaction_id} is no longer pending",
            details={"transaction_id": str(transaction_id)},
        )

    transaction = db.query(Transaction).filter(Transaction.id == transaction_id).first()
    db.refresh(transaction)

    logger.info(
        "transaction closed",
        extra={"transaction_id": str(transaction_id), "status": transaction.status},
    )
    return transaction


def get_transaction(db: Session, transaction_id) -> Transaction:
    local_id = _as_uuid(transaction_id)
    tx = db.query(Transaction).filter(Transaction.id == local_id).first() if local_id else None
    if not tx:
        raise TransactionNotFound()
    return tx


def list_transactions(
    db: Session,
    *,
    status: Optional[str] = None,
    prospect_id=None,
    limit: int = 50,
    offset: int = 0,
):
    q = db.query(Transaction)
    if status:
        q = q.filter(Transaction.status == status)
    if prospect_id:
        q = q.filter(Transaction.prospect_id == _as_uuid(prospect_id))

    limit = max(1, min(limit, 200))
    offset = max(0, offset)

    return (
        q.order_by(Transaction.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def list_transaction_logs(db: Session, transaction_id):
    tx = get_transaction(db, transaction_id)
    return (
        db.query(PaymentLog)
        .filter(PaymentLog.transaction_id == tx.id)
        .order_by(PaymentLog.created_at.asc(), PaymentLog.id.asc())
        .all()
    )
