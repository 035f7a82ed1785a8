from datetime import date, datetime
from typing import Optional

from uuid import UUID

from pydantic import BaseModel


class ContactIn(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    dateOfBirth: Optional[date] = None


class CustomerOut(BaseModel):
    id: UUID
    clubready_user_id: str

    email: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    date_of_birth: Optional[date] = None

    last_synced_at: Optional[datetime] = None

    class Config:
        from_attributes = True
