import json
from urllib.parse import quote, quote_plus, urlencode

import pytest
import requests

from app.errors import CrmRejected, CrmUnavailable, GatewayRejected, GatewayUnavailable
from app.models.payment_log import PaymentLog
from app.services.clubready_client import (
    PAYMENT_ID_FIELDS,
    USER_ID_FIELDS,
    ClubReadyClient,
    extract_first,
    parse_response_body,
    unwrap_record,
)
from app.services.clubready_config_service import ClubReadyConfig

from conftest import API_KEY, API_URL, CHAIN_ID, STORE_ID, make_response


SEARCH = "/users/prospects/search"
CREATE = "/users/prospects"
PAY = "/sales/member/7001/payment/makepayment"


class TestResponseDialects:
    def test_extract_first_follows_candidate_order(self):
        assert extract_first({"UserId": 1, "userId": 2, "Id": 3}, USER_ID_FIELDS) == 1
        assert extract_first({"userId": 2, "Id": 3}, USER_ID_FIELDS) == 2
        assert extract_first({"Id": 3}, USER_ID_FIELDS) == 3
        assert extract_first({"PaymentId": "", "Id": "PAY-1"}, PAYMENT_ID_FIELDS) == "PAY-1"
        assert extract_first({"Other": 1}, USER_ID_FIELDS) is None
        assert extract_first(None, USER_ID_FIELDS) is None

    def test_parse_response_body_falls_back_to_raw_text(self):
        assert parse_response_body('{"a": 1}') == {"a": 1}
        assert parse_response_body("<html>Server Error</html>") == {"raw": "<html>Server Error</html>"}
        assert parse_response_body("") is None

    @pytest.mark.parametrize(
        "data, expected",
        [
            ({"UserId": 1}, {"UserId": 1}),
            ({"data": {"userId": 2}}, {"userId": 2}),
            ([{"Id": 3}, {"Id": 4}], {"Id": 3}),
            ({"data": []}, None),
            ([], None),
            ({}, None),
            (None, None),
            ({"raw": "oops"}, None),
        ],
    )
    def test_unwrap_record(self, data, expected):
        assert unwrap_record(data) == expected


class TestSearchProspect:
    def test_search_sends_credentials_and_lookup_as_query(self, clubready, crm):
        crm.on("GET", SEARCH, make_response(200, {"data": {"UserId": 7001, "Email": "a@b.com"}}))

        record = clubready.search_prospect(email="a@b.com")

        assert record == {"UserId": 7001, "Email": "a@b.com"}
        call = crm.calls[0]
        assert call["params"] == {"ApiKey": API_KEY, "ChainId": CHAIN_ID, "StoreId": STORE_ID, "email": "a@b.com"}
        assert call["data"] is None
        assert call["timeout"] == 5

    def test_not_found_statuses_return_none(self, clubready, crm):
        crm.on("GET", SEARCH, make_response(404, {"Message": "No user"}), make_response(200, []))

        assert clubready.search_prospect(phone="555") is None
        assert clubready.search_prospect(phone="555") is None

    def test_rejection_carries_crm_message_and_is_audited(self, clubready, crm, db):
        crm.on("GET", SEARCH, make_response(401, {"Message": "Invalid ApiKey"}))

        with pytest.raises(CrmRejected) as excinfo:
            clubready.search_prospect(email="a@b.com")

        assert excinfo.value.message == "Invalid ApiKey"
        assert excinfo.value.http_status == 401
        assert excinfo.value.audited is True

        row = db.query(PaymentLog).one()
        assert row.step == "search_prospect"
        assert row.http_status == 401
        assert row.error_message == "Invalid ApiKey"
        assert API_KEY not in row.api_url

    def test_transport_failure_is_audited_without_status(self, clubready, crm, db):
        crm.on("GET", SEARCH, requests.ConnectionError("connection refused"))

        with pytest.raises(CrmUnavailable) as excinfo:
            clubready.search_prospect(email="a@b.com")

        assert excinfo.value.audited is True
        row = db.query(PaymentLog).one()
        assert row.http_status is None
        assert row.error_details["exception"] == "ConnectionError"

    @pytest.mark.parametrize("api_key", [API_KEY, "k3y/with+slash=="])
    def test_transport_failure_message_never_leaks_api_key(self, crm, audit, db, caplog, api_key):
        client = ClubReadyClient(
            ClubReadyConfig(api_key=api_key, store_id=STORE_ID, chain_id=CHAIN_ID, api_url=API_URL),
            crm,
            audit,
            timeout=5,
        )
        # requests renders the full request URL into connection errors
        query = urlencode({"ApiKey": api_key, "ChainId": CHAIN_ID, "StoreId": STORE_ID, "email": "a@b.com"})
        crm.on(
            "GET",
            SEARCH,
            requests.ConnectionError(
                "HTTPConnectionPool(host='api.clubready.test', port=443): Max retries exceeded with "
                f"url: /api/current/users/prospects/search?{query} "
                "(Caused by NewConnectionError('Failed to establish a new connection'))"
            ),
        )

        with pytest.raises(CrmUnavailable):
            client.search_prospect(email="a@b.com")

        leaked = {api_key, quote_plus(api_key), quote(api_key, safe="")}
        [failure] = [r for r in caplog.records if r.getMessage() == "clubready call failed"]
        assert not any(form in failure.error for form in leaked)
        assert f"ChainId={CHAIN_ID}" in failure.error

        row = db.query(PaymentLog).one()
        stored = json.dumps([row.api_url, row.error_message, row.error_details, row.request_body])
        assert not any(form in stored for form in leaked)
        assert "ApiKey=" in row.error_details["detail"]


class TestCreateProspect:
    def test_create_posts_form_encoded_profile(self, clubready, crm):
        crm.on("POST", CREATE, make_response(200, {"Id": 8123}))

        record, response = clubready.create_prospect(
            first_name="Ada", last_name="Lovelace", email="a@b.com", phone="555", date_of_birth="1990-01-02"
        )

        assert record == {"Id": 8123}
        assert response.ok
        call = crm.calls[0]
        assert call["headers"]["Content-Type"] == "application/x-www-form-urlencoded"
        assert call["data"]["FirstName"] == "Ada"
        assert call["data"]["DateOfBirth"] == "1990-01-02"
        assert call["data"]["ApiKey"] == API_KEY

    def test_create_failure_uses_fallback_message(self, clubready, crm):
        crm.on("POST", CREATE, make_response(500, text="upstream exploded"))

        with pytest.raises(CrmRejected) as excinfo:
            clubready.create_prospect(first_name="A", last_name="B", email="a@b.com")

        assert excinfo.value.message == "Failed to create prospect"


class TestMakePayment:
    def test_declined_payment_raises_gateway_rejected(self, clubready, crm, db):
        crm.on("POST", PAY, make_response(402, {"Message": "Card declined"}))

        with pytest.raises(GatewayRejected) as excinfo:
            clubready.make_payment(
                "7001",
                {"Amount": "49.99", "AcctToken": "4242424242424242", "CVV": "123"},
                sanitized_request={"cardNumber": "****4242", "cvv": "***"},
                secrets=("4242424242424242", "123"),
            )

        assert excinfo.value.message == "Card declined"
        row = db.query(PaymentLog).one()
        assert row.http_status == 402
        assert row.error_message == "Card declined"
        assert row.request_body == {"cardNumber": "****4242", "cvv": "***"}

    def test_timeout_raises_gateway_unavailable(self, clubready, crm):
        crm.on("POST", PAY, requests.Timeout("read timed out"))

        with pytest.raises(GatewayUnavailable) as excinfo:
            clubready.make_payment("7001", {"Amount": "1.00"}, sanitized_request={})

        assert "timed out" in excinfo.value.message

    def test_request_id_is_taken_from_header(self, clubready, crm, db):
        crm.on("POST", PAY, make_response(200, {"PaymentId": 99}, headers={"X-Request-Id": "abc-123"}))

        response = clubready.make_payment("7001", {"Amount": "1.00"}, sanitized_request={})

        assert response.request_id == "abc-123"
        assert db.query(PaymentLog).one().clubready_request_id == "abc-123"
