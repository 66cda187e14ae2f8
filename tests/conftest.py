import json
import os

# Must be set before anything imports the session module.
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
import requests
from fastapi.testclient import TestClient

from src.api import deps
from src.domain.exceptions import EmailDeliveryError
from src.domain.payments import PaymentMethod
from src.infrastructure.config import Settings, get_settings
from src.infrastructure.db.session import Base, engine
from src.infrastructure.gateways.raiaccept_gateway import RaiAcceptGateway, sign_payload
from src.infrastructure.gateways.razorpay_gateway import RazorpayGateway
from src.infrastructure.gateways.registry import GatewayRegistry
from src.infrastructure.gateways.stripe_gateway import StripeGateway
from src.main import app


ADMIN_TOKEN = "test-admin-token"
RAIACCEPT_SECRET = "raiaccept-webhook-secret"
STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
RAZORPAY_WEBHOOK_SECRET = "razorpay-webhook-secret"
API_URL = "https://api.raiaccept.test"

TEST_SETTINGS = Settings(
    payment_gateway="raiaccept",
    default_currency="EUR",
    public_base_url="http://testserver",
    admin_api_token=ADMIN_TOKEN,
    stripe_secret_key="sk_test_dummy",
    stripe_publishable_key="pk_test_dummy",
    stripe_webhook_secret=STRIPE_WEBHOOK_SECRET,
    raiaccept_username="merchant",
    raiaccept_password="secret",
    raiaccept_cognito_client_id="client-id",
    raiaccept_webhook_secret=RAIACCEPT_SECRET,
    raiaccept_auth_url="https://auth.raiaccept.test",
    raiaccept_api_url=API_URL,
    razorpay_key_id="rzp_test_key",
    razorpay_key_secret="rzp_test_secret",
    razorpay_webhook_secret=RAZORPAY_WEBHOOK_SECRET,
    email_from="tickets@example.com",
)


class FakeResponse:
    def __init__(self, payload, status_code: int = 200):
        self._payload = payload
        self.status_code = status_code

    def json(self):
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


class FakeRaiAcceptSession:
    """Stands in for requests.Session against the RaiAccept API."""

    def __init__(self):
        self.calls = []
        self.unavailable = False
        self.order_count = 0
        self.transactions: dict[str, list] = {}
        self.refund_transaction = {
            "transactionId": "refund-txn-1",
            "status": "SUCCESS",
            "statusCode": "0000",
        }

    def post(self, url, data=None, headers=None, timeout=None):
        self.calls.append(("POST", url, None))
        if self.unavailable:
            return FakeResponse({"message": "unavailable"}, 503)
        return FakeResponse({"AuthenticationResult": {"IdToken": "id-token"}})

    def request(self, method, url, json=None, headers=None, timeout=None):
        self.calls.append((method, url, json))
        if self.unavailable:
            return FakeResponse({"message": "unavailable"}, 503)

        path = url[len(API_URL):]
        if method == "POST" and path == "/orders":
            self.order_count += 1
            return FakeResponse({"orderIdentification": f"order-{self.order_count}"})
        if method == "POST" and path.endswith("/checkout"):
            return FakeResponse({"paymentSessionUrl": f"https://pay.raiaccept.test{path}"})
        if method == "POST" and path == "/refunds":
            return FakeResponse({"transaction": self.refund_transaction})
        if method == "GET" and path.endswith("/transactions"):
            order_id = path.split("/")[2]
            return FakeResponse({"transactions": self.transactions.get(order_id, [])})
        return FakeResponse({"message": "not found"}, 404)


class RecordingMailer:
    sender = "tickets@example.com"

    def __init__(self):
        self.sent = []
        self.failing = False

    def send(self, message) -> None:
        if self.failing:
            raise EmailDeliveryError("SMTP relay unavailable")
        self.sent.append(message)


@pytest.fixture
def db_schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def rai_session():
    return FakeRaiAcceptSession()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def registry(rai_session):
    return GatewayRegistry(
        {
            PaymentMethod.STRIPE: StripeGateway(
                secret_key=TEST_SETTINGS.stripe_secret_key,
                webhook_secret=STRIPE_WEBHOOK_SECRET,
                publishable_key=TEST_SETTINGS.stripe_publishable_key,
            ),
            PaymentMethod.RAIACCEPT: RaiAcceptGateway(
                username=TEST_SETTINGS.raiaccept_username,
                password=TEST_SETTINGS.raiaccept_password,
                cognito_client_id=TEST_SETTINGS.raiaccept_cognito_client_id,
                webhook_secret=RAIACCEPT_SECRET,
                auth_url=TEST_SETTINGS.raiaccept_auth_url,
                api_url=API_URL,
                session=rai_session,
            ),
            PaymentMethod.RAZORPAY: RazorpayGateway(
                key_id=TEST_SETTINGS.razorpay_key_id,
                key_secret=TEST_SETTINGS.razorpay_key_secret,
                webhook_secret=RAZORPAY_WEBHOOK_SECRET,
            ),
        },
        default_method=PaymentMethod.RAIACCEPT,
    )


@pytest.fixture
def client(db_schema, registry, mailer):
    app.dependency_overrides[get_settings] = lambda: TEST_SETTINGS
    app.dependency_overrides[deps.get_gateway_registry] = lambda: registry
    app.dependency_overrides[deps.get_mailer] = lambda: mailer
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": ADMIN_TOKEN, "X-Admin-Id": "admin-1"}


@pytest.fixture
def user_headers():
    return {"X-User-Id": "user-1", "X-User-Email": "fan@example.com"}


@pytest.fixture
def create_event(client, admin_headers):
    def _create(capacity: int = 10, price_cents: int = 2500, extra_types=()):
        ticket_types = [{"name": "Regular", "price_cents": price_cents, "capacity": capacity}]
        ticket_types.extend(extra_types)
        response = client.post(
            "/admin/events",
            json={
                "title": "Jazz Night",
                "date_time": "2030-06-01T20:00:00+00:00",
                "location": "Prishtina",
                "venue": "National Theatre",
                "ticket_types": ticket_types,
            },
            headers=admin_headers,
        )
        assert response.status_code == 201
        return response.json()

    return _create


@pytest.fixture
def book(client, user_headers):
    def _book(event: dict, quantity: int = 1, ticket_type_index: int = 0, **extra):
        ticket_type = event["ticket_types"][ticket_type_index]
        payload = {
            "tickets": [{"ticket_type_id": ticket_type["id"], "quantity": quantity}],
            **extra,
        }
        return client.post(
            f"/events/{event['id']}/book",
            json=payload,
            headers=user_headers,
        )

    return _book


def raiaccept_payload(
    booking_id: str,
    order_id: str,
    status: str,
    amount: float = 25.00,
    transaction_id: str = "txn-1",
    status_code: str | None = None,
) -> dict:
    transaction = {
        "transactionId": transaction_id,
        "status": status,
        "transactionAmount": amount,
        "transactionCurrency": "EUR",
    }
    if status_code is not None:
        transaction["statusCode"] = status_code
    return {
        "transaction": transaction,
        "order": {
            "orderIdentification": order_id,
            "invoice": {"merchantOrderReference": booking_id},
        },
    }


@pytest.fixture
def send_raiaccept_webhook(client):
    def _send(payload: dict, secret: str = RAIACCEPT_SECRET):
        return client.post(
            "/webhooks/raiaccept",
            content=json.dumps(payload),
            headers={
                "Content-Type": "application/json",
                "X-Signature": sign_payload(payload, secret),
            },
        )

    return _send


@pytest.fixture
def settle_checkout(send_raiaccept_webhook):
    """Delivers a signed RaiAccept status for a checkout response."""

    def _settle(checkout: dict, status: str = "COMPLETED", **kwargs):
        payload = raiaccept_payload(
            booking_id=checkout["booking"]["id"],
            order_id=checkout["payment"]["correlation_id"],
            status=status,
            **kwargs,
        )
        return send_raiaccept_webhook(payload)

    return _settle
