import uuid
from sqlalchemy import Boolean, Column, Integer, Numeric, String, TIMESTAMP, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from app.db import Base


class Package(Base):
    __tablename__ = "packages"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    clubready_package_id = Column(String(100), nullable=False, unique=True)
    name = Column(String(200), nullable=False)

    price = Column(Numeric(10, 2), nullable=False)
    duration_months = Column(Integer, nullable=False, default=1)
    description = Column(Text)

    active = Column(Boolean, default=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
