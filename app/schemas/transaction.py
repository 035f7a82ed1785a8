from datetime import datetime
from typing import Any, Dict, Optional

from uuid import UUID

from pydantic import BaseModel, Field


class TransactionOut(BaseModel):
    id: UUID
    prospect_id: UUID
    package_id: UUID

    amount: float
    status: str
    payment_method: Optional[str] = None

    clubready_transaction_id: Optional[str] = None
    last_four: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="meta")

    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
