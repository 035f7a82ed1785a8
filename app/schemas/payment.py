from datetime import date
from typing import Optional, Union

from pydantic import BaseModel


class ChargeIn(BaseModel):
    # identity: either an already resolved customer or contact details
    customerId: Optional[str] = None
    externalId: Optional[Union[str, int]] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    dateOfBirth: Optional[date] = None

    offeringId: Optional[str] = None

    cardNumber: Optional[str] = None
    cardExpMonth: Optional[Union[int, str]] = None
    cardExpYear: Optional[Union[int, str]] = None
    cardCvv: Optional[str] = None
    cardholderName: Optional[str] = None
    billingZip: Optional[str] = None

    def __repr__(self) -> str:
        return f"ChargeIn(customerId={self.customerId!r}, offeringId={self.offeringId!r})"
