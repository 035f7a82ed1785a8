"""
ClubReady API client (API-key, form-encoded generation).

Each public method performs exactly one HTTP call and writes exactly one audit
entry for it, on success, rejection and transport failure alike. Errors raised
after the call was audited carry ``audited = True``.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple, Type

import requests

from app.errors import (
    CheckoutError,
    CrmRejected,
    CrmUnavailable,
    GatewayRejected,
    GatewayUnavailable,
)
from app.services.audit_service import AuditEntry, AuditLogger, redact_text
from app.services.clubready_config_service import ClubReadyConfig


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 20.0

FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}
QUERY_HEADERS = {"Accept": "application/json"}


# ------------------------------------------------------------
# Response dialects
# ------------------------------------------------------------
# Older and newer ClubReady endpoints disagree on field casing, so every
# value is read through an ordered list of candidate names.
USER_ID_FIELDS: Tuple[str, ...] = ("UserId", "userId", "Id", "id")
PAYMENT_ID_FIELDS: Tuple[str, ...] = ("PaymentId", "paymentId", "Id", "id")
MESSAGE_FIELDS: Tuple[str, ...] = ("Message", "message", "error")
REQUEST_ID_FIELDS: Tuple[str, ...] = ("RequestId", "requestId")

EMAIL_FIELDS: Tuple[str, ...] = ("Email", "email")
PHONE_FIELDS: Tuple[str, ...] = ("Phone", "phone", "CellPhone", "cellPhone")
FIRST_NAME_FIELDS: Tuple[str, ...] = ("FirstName", "firstName")
LAST_NAME_FIELDS: Tuple[str, ...] = ("LastName", "lastName")


def extract_first(data: Any, candidates: Sequence[str]) -> Any:
    """Return the first present, non-empty value among ``candidates``."""
    if not isinstance(data, dict):
        return None

    for name in candidates:
        value = data.get(name)
        if value is not None and value != "":
            return value
    return None


def parse_response_body(text: str) -> Any:
    if not text or not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError:
        return {"raw": text}


def unwrap_record(data: Any) -> Optional[Dict[str, Any]]:
    """Pull a single record out of a bare object, a ``data`` envelope, or a list."""
    if isinstance(data, dict) and "data" in data:
        data = data["data"]

    if isinstance(data, list):
        data = data[0] if data else None

    if isinstance(data, dict) and data and "raw" not in data:
        return data
    return None


@dataclass
class CrmResponse:
    status_code: int
    data: Any
    url: str
    duration_ms: int
    request_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def message(self) -> Optional[str]:
        value = extract_first(self.data, MESSAGE_FIELDS)
        return str(value) if value is not None else None


@dataclass
class CrmCall:
    method: str
    endpoint: str
    step: str
    params: Dict[str, Any] = field(default_factory=dict)
    form: Optional[Dict[str, Any]] = None
    # what the audit log is allowed to see of the request
    sanitized_request: Any = None
    transaction_id: Any = None
    secrets: Iterable[str] = field(default_factory=tuple)
    rejected_error: Type[CheckoutError] = CrmRejected
    unavailable_error: Type[CheckoutError] = CrmUnavailable
    fallback_message: str = "ClubReady request failed"


class ClubReadyClient:
    def __init__(
        self,
        config: ClubReadyConfig,
        http: requests.Session,
        audit: AuditLogger,
        timeout: Optional[float] = None,
    ):
        self.config = config
        self.http = http
        self.audit = audit
        if timeout is None:
            timeout = float(os.getenv("CLUBREADY_TIMEOUT_SECONDS") or DEFAULT_TIMEOUT_SECONDS)
        self.timeout = timeout

    # ------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------
    def _credentials(self) -> Dict[str, str]:
        return {
            "ApiKey": self.config.api_key,
            "ChainId": self.config.chain_id,
            "StoreId": self.config.store_id,
        }

    def url_for(self, endpoint: str) -> str:
        return f"{self.config.api_url}{endpoint}"

    def _send(self, call: CrmCall) -> CrmResponse:
        url = self.url_for(call.endpoint)
        headers = dict(FORM_HEADERS if call.form is not None else QUERY_HEADERS)
        secrets = (self.config.api_key, *call.secrets)

        started = time.monotonic()
        try:
            resp = self.http.request(
                call.method,
                url,
                params=call.params or None,
                data=call.form,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            message = (
                f"ClubReady request timed out after {self.timeout:g}s"
                if isinstance(e, requests.Timeout)
                else f"ClubReady is unreachable: {type(e).__name__}"
            )
            # requests puts the full URL, credentials included, in the message
            detail = redact_text(str(e), secrets)
            logger.warning(
                "clubready call failed",
                extra={"step": call.step, "endpoint": call.endpoint, "error": detail},
            )
            self.audit.record(
                AuditEntry(
                    endpoint=call.endpoint,
                    step=call.step,
                    api_url=getattr(e.request, "url", None) or url,
                    request_headers=headers,
                    request_body=call.sanitized_request,
                    http_status=None,
                    error_message=message,
                    error_details={"exception": type(e).__name__, "detail": detail},
                    duration_ms=duration_ms,
                    transaction_id=call.transaction_id,
                    secrets=secrets,
                )
            )
            err = call.unavailable_error(message)
            err.audited = True
            raise err from e

        duration_ms = int((time.monotonic() - started) * 1000)
        data = parse_response_body(resp.text)
        request_id = resp.headers.get("X-Request-Id") or extract_first(data, REQUEST_ID_FIELDS)
        response = CrmResponse(
            status_code=resp.status_code,
            data=data,
            url=resp.url or url,
            duration_ms=duration_ms,
            request_id=str(request_id) if request_id is not None else None,
        )

        error_message = None
        if not response.ok:
            error_message = response.message or call.fallback_message

        self.audit.record(
            AuditEntry(
                endpoint=call.endpoint,
                step=call.step,
                api_url=response.url,
                request_headers=headers,
                request_body=call.sanitized_request,
                response_data=data,
                http_status=response.status_code,
                error_message=error_message,
                error_details=({"response": data} if error_message else None),
                duration_ms=duration_ms,
                clubready_request_id=response.request_id,
                transaction_id=call.transaction_id,
                secrets=secrets,
            )
        )

        logger.info(
            "clubready call finished",
            extra={
                "step": call.step,
                "endpoint": call.endpoint,
                "http_status": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response

    def _reject(self, call: CrmCall, response: CrmResponse) -> CheckoutError:
        err = call.rejected_error(
            response.message or call.fallback_message,
            http_status=response.status_code,
            details={"response": response.data},
        )
        err.audited = True
        return err

    # ------------------------------------------------------------
    # prospects
    # ------------------------------------------------------------
    def search_prospect(self, email: Optional[str] = None, phone: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Return the matching CRM record, or ``None`` when nobody matches."""
        lookup = {}
        if email:
            lookup["email"] = email
        if phone:
            lookup["phone"] = phone

        call = CrmCall(
            method="GET",
            endpoint="/users/prospects/search",
            step="search_prospect",
            params={**self._credentials(), **lookup},
            sanitized_request={"storeId": self.config.store_id, "chainId": self.config.chain_id, **lookup},
            fallback_message="Failed to search prospect",
        )
        response = self._send(call)

        if response.status_code == 404:
            return None
        if not response.ok:
            raise self._reject(call, response)

        return unwrap_record(response.data)

    def create_prospect(
        self,
        *,
        first_name: str,
        last_name: str,
        email: Optional[str],
        phone: Optional[str] = None,
        date_of_birth: Optional[str] = None,
    ) -> Tuple[Optional[Dict[str, Any]], CrmResponse]:
        profile = {
            "FirstName": first_name,
            "LastName": last_name,
            "Email": email or "",
            "Phone": phone or "",
        }
        if date_of_birth:
            profile["DateOfBirth"] = date_of_birth

        call = CrmCall(
            method="POST",
            endpoint="/users/prospects",
            step="create_prospect",
            form={**self._credentials(), **profile},
            sanitized_request={"storeId": self.config.store_id, "chainId": self.config.chain_id, **profile},
            fallback_message="Failed to create prospect",
        )
        response = self._send(call)
        if not response.ok:
            raise self._reject(call, response)

        return unwrap_record(response.data), response

    # ------------------------------------------------------------
    # payments
    # ------------------------------------------------------------
    def make_payment(
        self,
        user_id: str,
        form: Dict[str, Any],
        *,
        sanitized_request: Dict[str, Any],
        secrets: Iterable[str] = (),
        transaction_id: Any = None,
    ) -> CrmResponse:
        call = CrmCall(
            method="POST",
            endpoint=f"/sales/member/{user_id}/payment/makepayment",
            step="make_payment",
            form={**self._credentials(), **form},
            sanitized_request=sanitized_request,
            transaction_id=transaction_id,
            secrets=tuple(secrets),
            rejected_error=GatewayRejected,
            unavailable_error=GatewayUnavailable,
            fallback_message="Payment processing failed",
        )
        response = self._send(call)
        if not response.ok:
            raise self._reject(call, response)
        return response
