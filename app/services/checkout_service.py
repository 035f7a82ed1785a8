"""
Checkout orchestration.

A charge runs through ``validating_input -> resolving_identity ->
charging_payment -> done`` inside one request. All per-request state lives in
a ``CheckoutContext`` that is passed along explicitly; nothing is cached at
module level between requests.

Validation failures are raised before anything leaves the process and are
never audited. Every later failure goes through ``_record_failure`` which
writes a payment_logs row with whatever context exists, unless the failing
CRM call already wrote its own.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, Optional, Tuple

import requests
from sqlalchemy.orm import Session

from app.errors import (
    CheckoutError,
    CustomerNotFound,
    GatewayRejected,
    GatewayUnavailable,
    InvalidInput,
)
from app.models.customer import Customer
from app.models.package import Package
from app.schemas.customer import ContactIn
from app.schemas.payment import ChargeIn
from app.services.audit_service import AuditEntry, AuditLogger
from app.services.clubready_client import ClubReadyClient
from app.services.clubready_config_service import ClubReadyConfig, get_clubready_config
from app.services.identity_service import Contact, get_customer, resolve_customer, search_customer
from app.services import payment_service
from app.services.payment_service import CardDetails
from app.services.transaction_service import Completed, Failed, close_transaction, open_transaction


logger = logging.getLogger(__name__)

VALIDATING_INPUT = "validating_input"
LOADING_CONFIG = "load_config"
RESOLVING_IDENTITY = "resolving_identity"
CHARGING_PAYMENT = "charging_payment"
CLOSING_TRANSACTION = "close_transaction"
DONE = "done"

CARD_NUMBER_RE = re.compile(r"[0-9]{13,19}")
CVV_RE = re.compile(r"[0-9]{3,4}")


@dataclass
class CheckoutContext:
    endpoint: str
    step: str = VALIDATING_INPUT
    api_url: Optional[str] = None
    # sanitized view of the inbound request
    request: Dict[str, Any] = field(default_factory=dict)
    customer_id: Optional[str] = None
    external_id: Optional[str] = None
    transaction_id: Optional[uuid.UUID] = None
    secrets: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ChargeRequest:
    offering_id: str
    card: CardDetails
    customer_id: Optional[uuid.UUID] = None
    external_id: Optional[str] = None
    contact: Optional[Contact] = None


# ============================================================
# VALIDATION
# ============================================================
def _blank(value) -> bool:
    return value is None or str(value).strip() == ""


def _as_int(value, message: str) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise InvalidInput(message) from None


def validate_card(
    number,
    exp_month,
    exp_year,
    cvv,
    *,
    holder_name: Optional[str] = None,
    billing_zip: Optional[str] = None,
    today: Optional[date] = None,
) -> CardDetails:
    today = today or date.today()

    digits = re.sub(r"[\s-]", "", str(number))
    if not CARD_NUMBER_RE.fullmatch(digits):
        raise InvalidInput("Card number must be between 13 and 19 digits")

    month = _as_int(exp_month, "Invalid expiration month")
    if not 1 <= month <= 12:
        raise InvalidInput("Invalid expiration month")

    year = _as_int(exp_year, "Invalid expiration year")
    if year < 100:
        year += 2000
    if year < today.year:
        raise InvalidInput("Card has expired")

    cvv = str(cvv).strip()
    if not CVV_RE.fullmatch(cvv):
        raise InvalidInput("Invalid CVV")

    return CardDetails(
        number=digits,
        exp_month=month,
        exp_year=year,
        cvv=cvv,
        holder_name=(holder_name or "").strip() or None,
        billing_zip=(billing_zip or "").strip() or None,
    )


def validate_charge(payload: ChargeIn, today: Optional[date] = None) -> ChargeRequest:
    has_identity = not _blank(payload.customerId) or not _blank(payload.email) or not _blank(payload.phone)
    required = [payload.offeringId, payload.cardNumber, payload.cardExpMonth, payload.cardExpYear, payload.cardCvv]
    if not has_identity or any(_blank(v) for v in required):
        raise InvalidInput("Missing required payment information")

    card = validate_card(
        payload.cardNumber,
        payload.cardExpMonth,
        payload.cardExpYear,
        payload.cardCvv,
        holder_name=payload.cardholderName,
        billing_zip=payload.billingZip,
        today=today,
    )

    customer_id = None
    contact = None
    if not _blank(payload.customerId):
        try:
            customer_id = uuid.UUID(str(payload.customerId).strip())
        except ValueError:
            raise InvalidInput("Invalid customerId") from None
    else:
        contact = Contact(
            email=payload.email,
            phone=payload.phone,
            first_name=payload.firstName,
            last_name=payload.lastName,
            date_of_birth=payload.dateOfBirth,
        )

    return ChargeRequest(
        offering_id=str(payload.offeringId).strip(),
        card=card,
        customer_id=customer_id,
        external_id=(None if _blank(payload.externalId) else str(payload.externalId).strip()),
        contact=contact,
    )


def _sanitized_charge_request(payload: ChargeIn) -> Dict[str, Any]:
    number = re.sub(r"[\s-]", "", str(payload.cardNumber or ""))
    return {
        "customerId": payload.customerId,
        "externalId": (str(payload.externalId) if payload.externalId is not None else None),
        "email": payload.email,
        "phone": payload.phone,
        "offeringId": payload.offeringId,
        "cardNumber": (f"****{number[-4:]}" if number else None),
        "cardExpMonth": (str(payload.cardExpMonth) if payload.cardExpMonth is not None else None),
        "cardExpYear": (str(payload.cardExpYear) if payload.cardExpYear is not None else None),
        "cardCvv": "***",
        "cardholderName": payload.cardholderName,
        "billingZip": payload.billingZip,
    }


def _customer_payload(customer: Customer) -> Dict[str, Any]:
    return {
        "customerId": str(customer.id),
        "externalId": customer.clubready_user_id,
        "email": customer.email,
        "phone": customer.phone,
        "firstName": customer.first_name,
        "lastName": customer.last_name,
    }


# ============================================================
# ORCHESTRATOR
# ============================================================
class CheckoutService:
    def __init__(
        self,
        db: Session,
        audit: AuditLogger,
        http: requests.Session,
        *,
        config_loader: Callable[[Session], ClubReadyConfig] = get_clubready_config,
        timeout: Optional[float] = None,
    ):
        self.db = db
        self.audit = audit
        self.http = http
        self.config_loader = config_loader
        self.timeout = timeout

    # ------------------------------------------------------------
    # shared steps
    # ------------------------------------------------------------
    def _client(self, ctx: CheckoutContext) -> ClubReadyClient:
        ctx.step = LOADING_CONFIG
        config = self.config_loader(self.db)
        ctx.secrets = ctx.secrets + (config.api_key,)
        return ClubReadyClient(config, self.http, self.audit, timeout=self.timeout)

    def _record_failure(self, ctx: CheckoutContext, exc: Exception) -> None:
        if isinstance(exc, CheckoutError):
            if exc.audited:
                return
            message = exc.message
            http_status = exc.http_status or exc.status_code
            details = dict(exc.details)
        else:
            message = str(exc) or type(exc).__name__
            http_status = 500
            details = {}

        details["error_type"] = type(exc).__name__
        if ctx.customer_id:
            details["customer_id"] = ctx.customer_id
        if ctx.external_id:
            details["clubready_user_id"] = ctx.external_id

        logger.warning(
            "checkout step failed",
            extra={
                "endpoint": ctx.endpoint,
                "step": ctx.step,
                "error_type": type(exc).__name__,
                "transaction_id": (str(ctx.transaction_id) if ctx.transaction_id else None),
            },
        )

        self.audit.record(
            AuditEntry(
                endpoint=ctx.endpoint,
                step=ctx.step,
                api_url=ctx.api_url or "N/A",
                request_body=ctx.request,
                http_status=http_status,
                error_message=message,
                error_details=details,
                transaction_id=ctx.transaction_id,
                secrets=ctx.secrets,
            )
        )
        if isinstance(exc, CheckoutError):
            exc.audited = True

    def _identify(self, ctx: CheckoutContext, client: ClubReadyClient, request: ChargeRequest) -> Customer:
        ctx.step = RESOLVING_IDENTITY

        if request.customer_id is not None:
            customer = get_customer(self.db, request.customer_id)
            if not customer:
                raise CustomerNotFound()
            if request.external_id and request.external_id != customer.clubready_user_id:
                raise InvalidInput("customerId and externalId do not match")
            return customer

        ctx.api_url = client.url_for("/users/prospects/search")
        customer, _ = resolve_customer(self.db, client, request.contact)
        return customer

    # ------------------------------------------------------------
    # charge
    # ------------------------------------------------------------
    def charge(self, payload: ChargeIn, *, today: Optional[date] = None) -> Dict[str, Any]:
        request = validate_charge(payload, today=today)

        ctx = CheckoutContext(
            endpoint="/clubready/payments",
            request=_sanitized_charge_request(payload),
            secrets=(request.card.number, request.card.cvv),
        )
        try:
            return self._charge(ctx, request)
        except Exception as e:
            self._record_failure(ctx, e)
            raise

    def _charge(self, ctx: CheckoutContext, request: ChargeRequest) -> Dict[str, Any]:
        client = self._client(ctx)

        customer = self._identify(ctx, client, request)
        ctx.customer_id = str(customer.id)
        ctx.external_id = customer.clubready_user_id

        ctx.step = CHARGING_PAYMENT
        transaction = open_transaction(self.db, customer.id, request.offering_id, last_four=request.card.last_four)
        ctx.transaction_id = transaction.id
        package = self.db.get(Package, transaction.package_id)

        ctx.api_url = client.url_for(f"/sales/member/{customer.clubready_user_id}/payment/makepayment")
        try:
            result = payment_service.charge(client, customer, package, request.card, transaction_id=transaction.id)
        except (GatewayRejected, GatewayUnavailable) as e:
            ctx.step = CLOSING_TRANSACTION
            try:
                close_transaction(self.db, transaction.id, Failed(e.message))
            except CheckoutError as close_error:
                # the charge error is what the caller needs to see
                self._record_failure(ctx, close_error)
            raise

        ctx.step = CLOSING_TRANSACTION
        transaction = close_transaction(
            self.db,
            transaction.id,
            Completed(
                external_payment_id=result.external_payment_id,
                metadata={
                    "clubready_payment_id": result.external_payment_id,
                    "package_name": package.name,
                },
            ),
        )

        ctx.step = DONE
        logger.info(
            "checkout completed",
            extra={"transaction_id": str(transaction.id), "clubready_payment_id": result.external_payment_id},
        )
        return {
            "success": True,
            "transactionId": str(transaction.id),
            "externalPaymentId": result.external_payment_id,
            "amount": float(transaction.amount),
            "offeringName": package.name,
        }

    # ------------------------------------------------------------
    # identity endpoints
    # ------------------------------------------------------------
    def _contact(self, payload: ContactIn) -> Contact:
        if _blank(payload.email) and _blank(payload.phone):
            raise InvalidInput("Email or phone is required")
        return Contact(
            email=payload.email,
            phone=payload.phone,
            first_name=payload.firstName,
            last_name=payload.lastName,
            date_of_birth=payload.dateOfBirth,
        )

    def find_or_create_customer(self, payload: ContactIn) -> Dict[str, Any]:
        contact = self._contact(payload)
        ctx = CheckoutContext(
            endpoint="/clubready/customers/resolve",
            request={"email": payload.email, "phone": payload.phone},
        )
        try:
            client = self._client(ctx)
            ctx.step = RESOLVING_IDENTITY
            ctx.api_url = client.url_for("/users/prospects/search")
            customer, created = resolve_customer(self.db, client, contact)
        except Exception as e:
            self._record_failure(ctx, e)
            raise

        return {"success": True, "created": created, **_customer_payload(customer)}

    def search_customer(self, payload: ContactIn) -> Dict[str, Any]:
        contact = self._contact(payload)
        ctx = CheckoutContext(
            endpoint="/clubready/customers/search",
            request={"email": payload.email, "phone": payload.phone},
        )
        try:
            client = self._client(ctx)
            ctx.step = RESOLVING_IDENTITY
            ctx.api_url = client.url_for("/users/prospects/search")
            customer = search_customer(self.db, client, contact)
        except Exception as e:
            self._record_failure(ctx, e)
            raise

        return {
            "found": customer is not None,
            "customer": (_customer_payload(customer) if customer else None),
        }
