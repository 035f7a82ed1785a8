import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Tuple

from app.models.customer import Customer
from app.models.package import Package
from app.services.clubready_client import PAYMENT_ID_FIELDS, ClubReadyClient, extract_first, unwrap_record


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CardDetails:
    number: str
    exp_month: int
    exp_year: int
    cvv: str
    holder_name: Optional[str] = None
    billing_zip: Optional[str] = None

    @property
    def last_four(self) -> str:
        return self.number[-4:]

    @property
    def masked_number(self) -> str:
        return f"****{self.last_four}"

    def __repr__(self) -> str:
        return f"CardDetails(number={self.masked_number!r}, exp_month={self.exp_month}, exp_year={self.exp_year})"


@dataclass(frozen=True)
class ChargeResult:
    external_payment_id: Optional[str]
    raw: Any


def format_amount(price) -> str:
    return str(Decimal(str(price)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def build_charge_request(
    customer: Customer,
    package: Package,
    card: CardDetails,
    *,
    store_id: str,
    chain_id: str,
) -> Tuple[Dict[str, str], Dict[str, Any]]:
    """
    Build the makepayment form and the sanitized copy the audit log may keep.

    Credentials are added by the client; the sanitized copy never holds the
    card number, the CVV or the API key.
    """
    amount = format_amount(package.price)

    form = {
        "Amount": amount,
        "AcctToken": card.number,
        "Last4": card.last_four,
        "ExpMonth": f"{card.exp_month:02d}",
        "ExpYear": str(card.exp_year),
        "CVV": card.cvv,
        "PostalCode": card.billing_zip or "",
    }
    if card.holder_name:
        form["NameOnCard"] = card.holder_name

    sanitized = {
        "storeId": store_id,
        "chainId": chain_id,
        "userId": customer.clubready_user_id,
        "amount": amount,
        "cardNumber": card.masked_number,
        "expMonth": f"{card.exp_month:02d}",
        "expYear": str(card.exp_year),
        "cvv": "***",
        "postalCode": card.billing_zip or "",
    }
    if card.holder_name:
        sanitized["nameOnCard"] = card.holder_name

    return form, sanitized


def charge(
    client: ClubReadyClient,
    customer: Customer,
    package: Package,
    card: CardDetails,
    *,
    transaction_id=None,
) -> ChargeResult:
    form, sanitized = build_charge_request(
        customer,
        package,
        card,
        store_id=client.config.store_id,
        chain_id=client.config.chain_id,
    )

    response = client.make_payment(
        customer.clubready_user_id,
        form,
        sanitized_request=sanitized,
        secrets=(card.number, card.cvv),
        transaction_id=transaction_id,
    )

    payment_id = extract_first(response.data, PAYMENT_ID_FIELDS)
    if payment_id is None:
        payment_id = extract_first(unwrap_record(response.data), PAYMENT_ID_FIELDS)

    if payment_id is None:
        # the charge went through; keep the transaction truthful and flag it
        logger.warning(
            "payment accepted without a payment id",
            extra={"transaction_id": str(transaction_id), "http_status": response.status_code},
        )

    return ChargeResult(
        external_payment_id=(str(payment_id) if payment_id is not None else None),
        raw=response.data,
    )
