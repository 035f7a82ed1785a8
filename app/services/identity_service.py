import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import InvalidInput, PersistenceError, UnexpectedResponseShape
from app.models.customer import Customer
from app.services.clubready_client import (
    EMAIL_FIELDS,
    FIRST_NAME_FIELDS,
    LAST_NAME_FIELDS,
    PHONE_FIELDS,
    USER_ID_FIELDS,
    ClubReadyClient,
    extract_first,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Contact:
    email: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    date_of_birth: Optional[date] = None


def _utcnow() -> datetime:
    # naive UTC, matching the TIMESTAMP columns
    return datetime.utcnow()


def _clean(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def normalize_contact(contact: Contact) -> Contact:
    email = _clean(contact.email)
    return Contact(
        email=email.lower() if email else None,
        phone=_clean(contact.phone),
        first_name=_clean(contact.first_name),
        last_name=_clean(contact.last_name),
        date_of_birth=contact.date_of_birth,
    )


def external_id_from(record: Optional[Dict[str, Any]]) -> str:
    user_id = extract_first(record, USER_ID_FIELDS)
    if user_id is None:
        raise UnexpectedResponseShape(
            "ClubReady response did not include a customer id",
            details={"expected_one_of": list(USER_ID_FIELDS)},
        )
    return str(user_id)


def get_customer(db: Session, customer_id) -> Optional[Customer]:
    return db.query(Customer).filter(Customer.id == customer_id).first()


def get_customer_by_external_id(db: Session, external_id: str) -> Optional[Customer]:
    return db.query(Customer).filter(Customer.clubready_user_id == external_id).first()


def _apply(customer: Customer, fields: Dict[str, Any]):
    for attr, value in fields.items():
        if value is not None:
            setattr(customer, attr, value)
    customer.last_synced_at = _utcnow()


def upsert_customer(db: Session, external_id: str, fields: Dict[str, Any]) -> Customer:
    """Insert or refresh the local row for ``external_id``; never duplicates it."""
    try:
        customer = get_customer_by_external_id(db, external_id)
        if customer:
            _apply(customer, fields)
            db.commit()
            db.refresh(customer)
            return customer

        customer = Customer(clubready_user_id=external_id)
        _apply(customer, fields)
        db.add(customer)
        try:
            db.commit()
        except IntegrityError:
            # a concurrent resolution inserted the same person first
            db.rollback()
            logger.info("customer upsert converged on existing row", extra={"clubready_user_id": external_id})
            customer = get_customer_by_external_id(db, external_id)
            if customer is None:
                raise
            _apply(customer, fields)
            db.commit()

        db.refresh(customer)
        return customer
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(details={"reason": str(e)}) from e


def _fields_from_crm(record: Dict[str, Any], contact: Contact) -> Dict[str, Any]:
    return {
        "email": _clean(extract_first(record, EMAIL_FIELDS)) or contact.email,
        "phone": _clean(extract_first(record, PHONE_FIELDS)) or contact.phone,
        "first_name": _clean(extract_first(record, FIRST_NAME_FIELDS)) or contact.first_name,
        "last_name": _clean(extract_first(record, LAST_NAME_FIELDS)) or contact.last_name,
        "date_of_birth": contact.date_of_birth,
    }


def search_customer(db: Session, client: ClubReadyClient, contact: Contact) -> Optional[Customer]:
    contact = normalize_contact(contact)
    if not contact.email and not contact.phone:
        raise InvalidInput("Email or phone is required")

    record = client.search_prospect(email=contact.email, phone=contact.phone)
    if record is None:
        return None

    external_id = external_id_from(record)
    return upsert_customer(db, external_id, _fields_from_crm(record, contact))


def resolve_customer(db: Session, client: ClubReadyClient, contact: Contact) -> Tuple[Customer, bool]:
    """
    Find-first resolution: search the CRM, mirror a hit locally, and only
    create a CRM prospect when the search comes back empty.

    Returns ``(customer, created)``.
    """
    contact = normalize_contact(contact)

    customer = search_customer(db, client, contact)
    if customer is not None:
        logger.info(
            "resolved existing customer",
            extra={"customer_id": str(customer.id), "clubready_user_id": customer.clubready_user_id},
        )
        return customer, False

    if not (contact.first_name and contact.last_name and contact.email):
        raise InvalidInput("First name, last name, and email are required")

    record, _ = client.create_prospect(
        first_name=contact.first_name,
        last_name=contact.last_name,
        email=contact.email,
        phone=contact.phone,
        date_of_birth=(contact.date_of_birth.isoformat() if contact.date_of_birth else None),
    )
    external_id = external_id_from(record)

    customer = upsert_customer(
        db,
        external_id,
        {
            "email": contact.email,
            "phone": contact.phone,
            "first_name": contact.first_name,
            "last_name": contact.last_name,
            "date_of_birth": contact.date_of_birth,
        },
    )
    logger.info(
        "created customer",
        extra={"customer_id": str(customer.id), "clubready_user_id": customer.clubready_user_id},
    )
    return customer, True
