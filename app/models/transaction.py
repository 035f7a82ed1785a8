import uuid
from sqlalchemy import CheckConstraint, Column, ForeignKey, JSON, Numeric, String, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from app.db import Base


class Transaction(Base):
    __tablename__ = "transactions"

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'completed', 'failed')", name="ck_transactions_status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    prospect_id = Column(UUID(as_uuid=True), ForeignKey("prospects.id"), nullable=False)
    package_id = Column(UUID(as_uuid=True), ForeignKey("packages.id"), nullable=False)

    # copied from packages.price when the row is opened
    amount = Column(Numeric(10, 2), nullable=False)

    status = Column(String(20), nullable=False, default="pending")  # pending / completed / failed
    payment_method = Column(String(30), default="credit_card")

    clubready_transaction_id = Column(String(100))
    last_four = Column(String(4))
    error_message = Column(String)

    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON)

    created_at = Column(TIMESTAMP, server_default=func.now())
    completed_at = Column(TIMESTAMP)
