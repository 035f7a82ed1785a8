from sqlalchemy import Column, Integer, String, TIMESTAMP
from sqlalchemy.sql import func
from app.db import Base


class ClubReadyConfig(Base):
    __tablename__ = "clubready_config"

    # single row, id = 1
    id = Column(Integer, primary_key=True)

    api_key = Column(String(255))
    store_id = Column(String(50))
    chain_id = Column(String(50))
    api_url = Column(String(255))

    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
