import json
import os
from decimal import Decimal
from urllib.parse import urlencode

# Set test environment variables before the app is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("CLUBREADY_CONFIG_SOURCE", None)

import pytest
import requests
from fastapi.testclient import TestClient
from requests.structures import CaseInsensitiveDict
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.db import Base, get_db
from app.deps.clubready import get_audit_logger, get_http_session
from app.main import app
from app.models.clubready_config import ClubReadyConfig as ClubReadyConfigRow
from app.models.customer import Customer
from app.models.package import Package
from app.models.payment_log import PaymentLog
from app.models.transaction import Transaction
from app.services.audit_service import AuditLogger
from app.services.clubready_client import ClubReadyClient
from app.services.clubready_config_service import ClubReadyConfig


API_URL = "https://api.clubready.test/api/current"
API_KEY = "cr-live-5f1d2a9c7e"
STORE_ID = "1234"
CHAIN_ID = "55"

VALID_CARD = {
    "cardNumber": "4242424242424242",
    "cardExpMonth": "12",
    "cardExpYear": "2030",
    "cardCvv": "123",
    "cardholderName": "Ada Lovelace",
    "billingZip": "94107",
}


def make_response(status_code, body=None, *, text=None, headers=None):
    resp = requests.Response()
    resp.status_code = status_code
    if text is None:
        text = json.dumps(body) if body is not None else ""
    resp._content = text.encode("utf-8")
    resp.encoding = "utf-8"
    resp.headers = CaseInsensitiveDict(headers or {})
    return resp


class FakeClubReady:
    """Stands in for ``requests.Session``; answers by (method, path)."""

    def __init__(self, base_url=API_URL):
        self.base_url = base_url
        self.routes = {}
        self.calls = []

    def on(self, method, path, *responses):
        # consumed in order, the last one repeats
        self.routes[(method, path)] = list(responses)

    def request(self, method, url, params=None, data=None, headers=None, timeout=None):
        path = url[len(self.base_url):] if url.startswith(self.base_url) else url
        self.calls.append(
            {
                "method": method,
                "path": path,
                "params": params,
                "data": data,
                "headers": headers,
                "timeout": timeout,
            }
        )

        queue = self.routes.get((method, path))
        if not queue:
            raise AssertionError(f"unexpected ClubReady call: {method} {path}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]

        if isinstance(item, Exception):
            raise item

        item.url = url + (f"?{urlencode(params)}" if params else "")
        return item

    def calls_to(self, path):
        return [c for c in self.calls if c["path"] == path]

    def close(self):
        pass


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'checkout.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def audit(session_factory):
    return AuditLogger(session_factory)


@pytest.fixture
def crm():
    return FakeClubReady()


@pytest.fixture
def config():
    return ClubReadyConfig(api_key=API_KEY, store_id=STORE_ID, chain_id=CHAIN_ID, api_url=API_URL)


@pytest.fixture
def clubready(config, crm, audit):
    return ClubReadyClient(config, crm, audit, timeout=5)


@pytest.fixture
def config_row(db):
    row = ClubReadyConfigRow(id=1, api_key=API_KEY, store_id=STORE_ID, chain_id=CHAIN_ID, api_url=API_URL + "/")
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def package(db):
    pkg = Package(
        clubready_package_id="pkg1",
        name="Monthly Unlimited",
        price=Decimal("49.99"),
        duration_months=1,
    )
    db.add(pkg)
    db.commit()
    db.refresh(pkg)
    return pkg


@pytest.fixture
def customer(db):
    row = Customer(
        clubready_user_id="7001",
        email="known@example.com",
        phone="5550001111",
        first_name="Known",
        last_name="Member",
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.fixture
def client(session_factory, audit, crm):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_logger] = lambda: audit
    app.dependency_overrides[get_http_session] = lambda: crm
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def fetch_logs(session_factory):
    def _fetch():
        session = session_factory()
        try:
            return session.query(PaymentLog).order_by(PaymentLog.created_at.asc(), PaymentLog.id.asc()).all()
        finally:
            session.close()

    return _fetch


@pytest.fixture
def fetch_transactions(session_factory):
    def _fetch():
        session = session_factory()
        try:
            return session.query(Transaction).all()
        finally:
            session.close()

    return _fetch
