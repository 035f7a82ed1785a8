from datetime import datetime
from typing import Any, Dict, Optional

from uuid import UUID

from pydantic import BaseModel


class PaymentLogOut(BaseModel):
    id: UUID
    endpoint: Optional[str] = None
    step: Optional[str] = None
    api_url: Optional[str] = None

    request_headers: Optional[Dict[str, Any]] = None
    request_body: Optional[Any] = None
    response_data: Optional[Any] = None

    http_status: Optional[int] = None
    error_message: Optional[str] = None
    error_details: Optional[Any] = None

    duration_ms: Optional[int] = None
    clubready_request_id: Optional[str] = None
    transaction_id: Optional[UUID] = None

    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
