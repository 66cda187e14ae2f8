def _availability(client, event_id: str) -> dict:
    event = client.get(f"/events/{event_id}").json()
    return {item["name"]: item["available_tickets"] for item in event["ticket_types"]}


def test_checkout_holds_inventory_and_opens_session(client, create_event, book, rai_session):
    event = create_event(capacity=10)

    response = book(event, quantity=1)

    assert response.status_code == 201
    body = response.json()
    booking = body["booking"]
    assert booking["status"] == "pending"
    assert booking["payment_status"] == "pending"
    assert booking["payment_method"] == "raiaccept"
    assert booking["total_amount_cents"] == 2500
    assert booking["currency"] == "EUR"
    assert booking["booking_reference"].startswith("BKNG")
    assert len(booking["tickets"]) == 1

    assert body["payment"]["provider"] == "raiaccept"
    assert body["payment"]["correlation_id"] == "order-1"
    assert body["payment"]["redirect_url"].startswith("https://pay.raiaccept.test")

    order_call = next(call for call in rai_session.calls if call[1] == "https://api.raiaccept.test/orders")
    assert order_call[2]["amount"] == 25.0
    assert order_call[2]["invoice"]["merchantOrderReference"] == booking["id"]

    assert _availability(client, event["id"]) == {"Regular": 9}


def test_checkout_requires_identity(client, create_event):
    event = create_event()

    response = client.post(
        f"/events/{event['id']}/book",
        json={"tickets": [{"ticket_type_id": event["ticket_types"][0]["id"], "quantity": 1}]},
    )

    assert response.status_code == 401


def test_oversold_request_rejected(client, create_event, book, user_headers):
    event = create_event(capacity=2)

    response = book(event, quantity=3)

    assert response.status_code == 409
    assert _availability(client, event["id"]) == {"Regular": 2}
    assert client.get("/bookings", headers=user_headers).json() == []


def test_partial_shortage_rolls_back_every_hold(client, create_event, user_headers):
    event = create_event(
        capacity=5,
        extra_types=[{"name": "VIP", "price_cents": 6000, "capacity": 1}],
    )
    types = {item["name"]: item["id"] for item in event["ticket_types"]}

    response = client.post(
        f"/events/{event['id']}/book",
        json={
            "tickets": [
                {"ticket_type_id": types["Regular"], "quantity": 2},
                {"ticket_type_id": types["VIP"], "quantity": 2},
            ]
        },
        headers=user_headers,
    )

    assert response.status_code == 409
    assert _availability(client, event["id"]) == {"Regular": 5, "VIP": 1}


def test_mixed_ticket_types_total(client, create_event, user_headers):
    event = create_event(
        capacity=5,
        extra_types=[{"name": "VIP", "price_cents": 6000, "capacity": 2}],
    )
    types = {item["name"]: item["id"] for item in event["ticket_types"]}

    response = client.post(
        f"/events/{event['id']}/book",
        json={
            "tickets": [
                {"ticket_type_id": types["Regular"], "quantity": 2},
                {"ticket_type_id": types["VIP"], "quantity": 1},
            ]
        },
        headers=user_headers,
    )

    assert response.status_code == 201
    booking = response.json()["booking"]
    assert booking["total_amount_cents"] == 2 * 2500 + 6000
    assert len(booking["tickets"]) == 3
    assert len({ticket["redemption_code"] for ticket in booking["tickets"]}) == 3
    assert _availability(client, event["id"]) == {"Regular": 3, "VIP": 1}


def test_gateway_failure_releases_holds(client, create_event, book, rai_session, user_headers):
    event = create_event(capacity=4)
    rai_session.unavailable = True

    response = book(event, quantity=2)

    assert response.status_code == 502
    assert _availability(client, event["id"]) == {"Regular": 4}
    assert client.get("/bookings", headers=user_headers).json() == []


def test_unknown_ticket_type(client, create_event, user_headers):
    event = create_event()

    response = client.post(
        f"/events/{event['id']}/book",
        json={"tickets": [{"ticket_type_id": "missing", "quantity": 1}]},
        headers=user_headers,
    )

    assert response.status_code == 404


def test_unknown_event(client, user_headers):
    response = client.post(
        "/events/missing/book",
        json={"tickets": [{"ticket_type_id": "missing", "quantity": 1}]},
        headers=user_headers,
    )

    assert response.status_code == 404


def test_bookings_are_private(client, create_event, book):
    event = create_event()
    booking_id = book(event).json()["booking"]["id"]

    own = client.get(f"/bookings/{booking_id}", headers={"X-User-Id": "user-1"})
    other = client.get(f"/bookings/{booking_id}", headers={"X-User-Id": "user-2"})

    assert own.status_code == 200
    assert other.status_code == 403


def test_stripe_checkout_returns_client_secret(client, create_event, book, monkeypatch):
    captured = {}

    class FakeIntent:
        id = "pi_checkout_1"
        client_secret = "pi_checkout_1_secret"

    def fake_create(**kwargs):
        captured.update(kwargs)
        return FakeIntent()

    monkeypatch.setattr("stripe.PaymentIntent.create", fake_create)
    event = create_event()

    response = book(event, payment_method="stripe")

    assert response.status_code == 201
    payment = response.json()["payment"]
    assert payment["provider"] == "stripe"
    assert payment["correlation_id"] == "pi_checkout_1"
    assert payment["client_secret"] == "pi_checkout_1_secret"
    assert payment["public_key"] == "pk_test_dummy"
    assert captured["amount"] == 2500
    assert captured["currency"] == "eur"
    assert captured["metadata"]["booking_id"] == response.json()["booking"]["id"]
