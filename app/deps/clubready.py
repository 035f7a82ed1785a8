import requests
from fastapi import Depends
from sqlalchemy.orm import Session

from app.db import SessionLocal, get_db
from app.services.audit_service import AuditLogger
from app.services.checkout_service import CheckoutService


def get_audit_logger() -> AuditLogger:
    # audit rows are committed in their own session, outside the request one
    return AuditLogger(SessionLocal)


def get_http_session():
    session = requests.Session()
    try:
        yield session
    finally:
        session.close()


def get_checkout_service(
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
    http: requests.Session = Depends(get_http_session),
) -> CheckoutService:
    return CheckoutService(db, audit, http)
