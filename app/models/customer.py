import uuid
from sqlalchemy import Column, String, TIMESTAMP, Date
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from app.db import Base


class Customer(Base):
    __tablename__ = "prospects"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # ClubReady UserId; one local row per CRM customer
    clubready_user_id = Column(String(100), nullable=False, unique=True)

    email = Column(String(255))
    phone = Column(String(50))
    first_name = Column(String(100))
    last_name = Column(String(100))
    date_of_birth = Column(Date)

    last_synced_at = Column(TIMESTAMP)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
