import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, JSON, String, TIMESTAMP, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from app.db import Base


def _utcnow():
    # microsecond precision; rows from one request must sort in write order
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PaymentLog(Base):
    __tablename__ = "payment_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    endpoint = Column(String(255))
    step = Column(String(50))
    api_url = Column(Text)

    request_headers = Column(JSON)
    request_body = Column(JSON)
    request_data = Column(JSON)  # legacy mirror of request_body
    response_data = Column(JSON)

    http_status = Column(Integer)
    status_code = Column(Integer)  # legacy mirror of http_status

    error_message = Column(Text)
    error_details = Column(JSON)

    duration_ms = Column(Integer)
    clubready_request_id = Column(String(100))

    transaction_id = Column(UUID(as_uuid=True), index=True)

    created_at = Column(TIMESTAMP, default=_utcnow, server_default=func.now())
