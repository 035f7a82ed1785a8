"""
Audit trail for outbound ClubReady calls.

Every call made to the CRM ends up as one ``payment_logs`` row, whether the
call succeeded, was rejected, or never got a response. Rows are written in a
session of their own so that a rollback of the request session never erases
them, and a failure to write one is reported on the module logger only.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import parse_qsl, quote, quote_plus, urlencode, urlsplit, urlunsplit

from sqlalchemy.orm import Session

from app.models.payment_log import PaymentLog


logger = logging.getLogger(__name__)

REDACTED = "***REDACTED***"

# shorter values (a CVV) collide with ids and amounts inside longer strings
# so they are only matched as whole values
MIN_SCRUB_LENGTH = 6

# "?ApiKey=..." or "&ApiKey=..." anywhere in a string, e.g. an exception message
QUERY_PAIR_RE = re.compile(r"([?&;])([A-Za-z0-9_\-]+)=([^&#\s'\"()]*)")

# normalized: lower-cased, "_" and "-" removed
SENSITIVE_FIELDS = {
    "password",
    "apikey",
    "creditcard",
    "cardnumber",
    "accttoken",
    "cvv",
    "cardcvv",
    "cvc",
    "ssn",
    "secret",
    "authorization",
}


@dataclass
class AuditEntry:
    endpoint: str
    step: str
    api_url: str = "N/A"
    request_headers: Optional[Dict[str, Any]] = None
    request_body: Any = None
    response_data: Any = None
    http_status: Optional[int] = None
    error_message: Optional[str] = None
    error_details: Any = None
    duration_ms: int = 0
    clubready_request_id: Optional[str] = None
    transaction_id: Any = None
    # raw values that must not appear anywhere in the stored row
    secrets: Iterable[str] = field(default_factory=tuple)


def _normalize(name: str) -> str:
    return str(name).lower().replace("_", "").replace("-", "")


def is_sensitive_field(name: str) -> bool:
    return _normalize(name) in SENSITIVE_FIELDS


def _is_masked(value: Any) -> bool:
    # "***" or "****4242"
    if not isinstance(value, str) or not value.startswith("***"):
        return False
    tail = value.lstrip("*")
    return tail == "" or (tail.isdigit() and len(tail) <= 4)


def sanitize_request_body(body: Any) -> Any:
    if isinstance(body, dict):
        sanitized = {}
        for key, value in body.items():
            if is_sensitive_field(key) and value not in (None, "") and not _is_masked(value):
                sanitized[key] = REDACTED
            else:
                sanitized[key] = sanitize_request_body(value)
        return sanitized

    if isinstance(body, (list, tuple)):
        return [sanitize_request_body(v) for v in body]

    return body


def sanitize_headers(headers: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if headers is None:
        return None

    sanitized = dict(headers)
    for key in list(sanitized):
        if key.lower() == "authorization" and sanitized[key]:
            sanitized[key] = REDACTED
    return sanitized


def sanitize_url(url: Optional[str]) -> Optional[str]:
    if not url or "?" not in url:
        return url

    parts = urlsplit(url)
    query = [
        (k, REDACTED if is_sensitive_field(k) else v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query, safe="*@"), parts.fragment))


def redact_query_params(value: Any) -> Any:
    """Redact ``name=value`` query pairs with sensitive names inside free text."""
    if isinstance(value, str):
        return QUERY_PAIR_RE.sub(
            lambda m: f"{m.group(1)}{m.group(2)}={REDACTED}" if is_sensitive_field(m.group(2)) else m.group(0),
            value,
        )

    if isinstance(value, dict):
        return {k: redact_query_params(v) for k, v in value.items()}

    if isinstance(value, (list, tuple)):
        return [redact_query_params(v) for v in value]

    return value


def _encoded_forms(secret: str) -> List[str]:
    # as sent on the wire: form bodies use quote_plus, paths and queries quote
    forms = [secret, quote_plus(secret), quote(secret, safe="")]
    return list(dict.fromkeys(forms))


def scrub_secrets(value: Any, secrets: Iterable[str]) -> Any:
    """
    Replace raw secret values inside nested data.

    Secrets of ``MIN_SCRUB_LENGTH`` characters or more are replaced wherever
    they occur, URL-encoded forms included; shorter ones only when they make
    up a whole value.
    """
    secrets = [s for s in secrets if s]
    if not secrets:
        return value

    if isinstance(value, str):
        for secret in secrets:
            if value == secret:
                return REDACTED
            if len(secret) < MIN_SCRUB_LENGTH:
                continue
            for form in _encoded_forms(secret):
                if form in value:
                    value = value.replace(form, REDACTED)
        return value

    if isinstance(value, dict):
        return {scrub_secrets(k, secrets): scrub_secrets(v, secrets) for k, v in value.items()}

    if isinstance(value, (list, tuple)):
        return [scrub_secrets(v, secrets) for v in value]

    return value


def redact_text(value: Any, secrets: Iterable[str] = ()) -> Any:
    """Query-pair redaction followed by secret scrubbing, for free text."""
    return scrub_secrets(redact_query_params(value), secrets)


def build_payment_log(entry: AuditEntry) -> PaymentLog:
    secrets = [str(s) for s in entry.secrets if s]

    def clean(value):
        return redact_text(sanitize_request_body(value), secrets)

    request_body = clean(entry.request_body)

    return PaymentLog(
        endpoint=entry.endpoint,
        step=entry.step,
        api_url=scrub_secrets(sanitize_url(entry.api_url), secrets),
        request_headers=scrub_secrets(sanitize_headers(entry.request_headers), secrets),
        request_body=request_body,
        request_data=request_body,
        response_data=clean(entry.response_data),
        http_status=entry.http_status,
        status_code=entry.http_status,
        error_message=redact_text(entry.error_message, secrets),
        error_details=clean(entry.error_details),
        duration_ms=int(entry.duration_ms or 0),
        clubready_request_id=entry.clubready_request_id,
        transaction_id=entry.transaction_id,
    )


class AuditLogger:
    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def record(self, entry: AuditEntry) -> None:
        try:
            row = build_payment_log(entry)
            db = self.session_factory()
            try:
                db.add(row)
                db.commit()
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()
        except Exception:
            logger.exception(
                "failed to log api call",
                extra={"endpoint": entry.endpoint, "step": entry.step},
            )
