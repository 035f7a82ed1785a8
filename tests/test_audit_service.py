import logging
import uuid

from app.models.payment_log import PaymentLog
from app.services.audit_service import (
    REDACTED,
    AuditEntry,
    AuditLogger,
    redact_query_params,
    sanitize_headers,
    sanitize_request_body,
    sanitize_url,
    scrub_secrets,
)


class TestSanitizers:
    def test_sensitive_fields_are_redacted_in_nested_bodies(self):
        body = {
            "ApiKey": "abc",
            "api_key": "abc",
            "password": "hunter2",
            "payment": {"cardNumber": "4242424242424242", "CVV": "123", "amount": "49.99"},
            "items": [{"AcctToken": "4242424242424242"}],
            "email": "a@b.com",
        }

        sanitized = sanitize_request_body(body)

        assert sanitized["ApiKey"] == REDACTED
        assert sanitized["api_key"] == REDACTED
        assert sanitized["password"] == REDACTED
        assert sanitized["payment"]["cardNumber"] == REDACTED
        assert sanitized["payment"]["CVV"] == REDACTED
        assert sanitized["payment"]["amount"] == "49.99"
        assert sanitized["items"][0]["AcctToken"] == REDACTED
        assert sanitized["email"] == "a@b.com"
        # input untouched
        assert body["ApiKey"] == "abc"

    def test_masked_card_values_are_kept(self):
        sanitized = sanitize_request_body({"cardNumber": "****4242", "cvv": "***"})
        assert sanitized == {"cardNumber": "****4242", "cvv": "***"}

    def test_authorization_header_is_redacted_whatever_the_casing(self):
        assert sanitize_headers({"authorization": "Bearer x", "Content-Type": "a"}) == {
            "authorization": REDACTED,
            "Content-Type": "a",
        }
        assert sanitize_headers({"Content-Type": "a"}) == {"Content-Type": "a"}
        assert sanitize_headers(None) is None

    def test_api_key_is_removed_from_query_string(self):
        url = "https://cr.test/users/prospects/search?ApiKey=secret-key&StoreId=1&email=a%40b.com"

        sanitized = sanitize_url(url)

        assert "secret-key" not in sanitized
        assert "StoreId=1" in sanitized
        assert "email=a@b.com" in sanitized

    def test_scrub_secrets_replaces_values_anywhere(self):
        data = {"raw": "bad key secret-key for card 4242424242424242", "list": ["x secret-key"]}

        scrubbed = scrub_secrets(data, ["secret-key", "4242424242424242", None])

        assert "secret-key" not in str(scrubbed)
        assert "4242424242424242" not in str(scrubbed)
        assert scrubbed["list"] == [f"x {REDACTED}"]

    def test_short_secret_is_only_scrubbed_as_whole_value(self):
        data = {"code": "123", "url": "/sales/member/8123/payment/makepayment"}

        scrubbed = scrub_secrets(data, ["123"])

        assert scrubbed["code"] == REDACTED
        assert scrubbed["url"] == "/sales/member/8123/payment/makepayment"

    def test_scrub_secrets_catches_url_encoded_forms(self):
        data = {"detail": "form ApiKey=k3y%2Fwith%2Bslash%3D%3D path /k3y%2Fwith%2Bslash%3D%3D/"}

        scrubbed = scrub_secrets(data, ["k3y/with+slash=="])

        assert "k3y" not in scrubbed["detail"]

    def test_query_pairs_in_free_text_are_redacted(self):
        text = "Max retries exceeded with url: /api/search?ApiKey=abc&ChainId=55 (Caused by timeout)"

        redacted = redact_query_params(text)

        assert "ApiKey=abc" not in redacted
        assert f"ApiKey={REDACTED}" in redacted
        assert "ChainId=55 (Caused by timeout)" in redacted


class TestAuditLogger:
    def test_record_writes_row_with_mirrored_legacy_columns(self, audit, db):
        tx_id = uuid.uuid4()

        audit.record(
            AuditEntry(
                endpoint="/sales/member/1/payment/makepayment",
                step="make_payment",
                api_url="https://cr.test/sales/member/1/payment/makepayment",
                request_headers={"Authorization": "Bearer abc", "Content-Type": "x"},
                request_body={"cardNumber": "****4242", "ApiKey": "abc"},
                response_data={"PaymentId": 9},
                http_status=200,
                duration_ms=12,
                clubready_request_id="req-1",
                transaction_id=tx_id,
                secrets=("abc",),
            )
        )

        row = db.query(PaymentLog).one()
        assert row.step == "make_payment"
        assert row.request_headers["Authorization"] == REDACTED
        assert row.request_body == {"cardNumber": "****4242", "ApiKey": REDACTED}
        assert row.request_data == row.request_body
        assert row.http_status == 200
        assert row.status_code == 200
        assert row.duration_ms == 12
        assert row.clubready_request_id == "req-1"
        assert row.transaction_id == tx_id

    def test_record_never_raises(self, caplog):
        def broken_factory():
            raise RuntimeError("database is gone")

        logger = AuditLogger(broken_factory)

        with caplog.at_level(logging.ERROR, logger="app.services.audit_service"):
            logger.record(AuditEntry(endpoint="/x", step="make_payment"))

        assert "failed to log api call" in caplog.text

    def test_record_survives_commit_failure(self, session_factory, caplog):
        def factory():
            session = session_factory()

            def fail():
                raise RuntimeError("disk full")

            session.commit = fail
            return session

        with caplog.at_level(logging.ERROR, logger="app.services.audit_service"):
            AuditLogger(factory).record(AuditEntry(endpoint="/x", step="search_prospect"))

        assert "failed to log api call" in caplog.text
