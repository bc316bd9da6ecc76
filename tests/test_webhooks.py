"""Tests for payment webhook verification and order reconciliation."""

import json
from http import HTTPStatus

import pytest
from fastapi.testclient import TestClient

from api.dependencies import Services
from api.server import create_app
from errors import Internal


def completed_session(session_id, order_id, intent_id="pi_test_1"):
    return {
        "id": session_id,
        "object": "checkout.session",
        "payment_status": "paid",
        "payment_intent": intent_id,
        "metadata": {"order_id": order_id},
    }


def payment_intent(intent_id, order_id=None):
    return {
        "id": intent_id,
        "object": "payment_intent",
        "metadata": {"order_id": order_id} if order_id else {},
    }


def _order(client, headers, order_id):
    return client.get(f"/api/orders/{order_id}", headers=headers).json()["order"]


def _stock(client, product_id):
    return client.get(f"/api/products/{product_id}").json()["product"]["stock"]


def test_session_completed_marks_paid_and_decrements_stock(
    client, checkout, send_event, user_headers
):
    result = checkout([{"productId": "prod-mug", "quantity": 2}])

    response = send_event("checkout.session.completed",
                          completed_session(result["sessionId"], result["orderId"]))

    assert response.status_code == HTTPStatus.OK
    assert response.json() == {"received": True}
    order = _order(client, user_headers, result["orderId"])
    assert order["status"] == "PROCESSING"
    assert order["paymentIntentId"] == "pi_test_1"
    assert _stock(client, "prod-mug") == 13


def test_duplicate_session_completed_decrements_once(client, checkout, send_event):
    """Redelivered notifications do not decrement stock again."""
    result = checkout([{"productId": "prod-mug", "quantity": 2},
                       {"productId": "prod-vase", "quantity": 1}])
    session = completed_session(result["sessionId"], result["orderId"])

    first = send_event("checkout.session.completed", session, event_id="evt_1")
    second = send_event("checkout.session.completed", session, event_id="evt_1")

    assert first.status_code == second.status_code == HTTPStatus.OK
    assert _stock(client, "prod-mug") == 13
    assert _stock(client, "prod-vase") == 2


def test_tampered_payload_rejected_before_processing(
    client, checkout, send_event, sign_payload, user_headers
):
    result = checkout([{"productId": "prod-mug", "quantity": 1}])
    session = completed_session(result["sessionId"], result["orderId"])
    honest = json.dumps({"id": "evt_x", "type": "checkout.session.completed",
                         "data": {"object": {**session, "amount_total": 1}}})
    signature = sign_payload(honest)

    response = send_event("checkout.session.completed", session, signature=signature)

    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.json() == {"error": "Webhook signature verification failed"}
    assert _order(client, user_headers, result["orderId"])["status"] == "PENDING"
    assert _stock(client, "prod-mug") == 15


def test_wrong_secret_rejected(client, checkout, send_event, sign_payload):
    result = checkout([{"productId": "prod-mug", "quantity": 1}])
    session = completed_session(result["sessionId"], result["orderId"])
    payload = json.dumps({"id": "evt_x", "type": "checkout.session.completed",
                          "data": {"object": session}})
    response = send_event("checkout.session.completed", session,
                          signature=sign_payload(payload, secret="whsec_attacker"))

    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert _stock(client, "prod-mug") == 15


def test_missing_signature_header(client):
    response = client.post("/api/webhooks/stripe", content=b'{"type": "ping"}')

    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.json()["error"] == "Missing stripe-signature header"


def test_missing_secret_is_server_error(processor):
    services = Services.in_memory(processor=processor, webhook_secret="")
    with TestClient(create_app(services)) as unconfigured:
        response = unconfigured.post(
            "/api/webhooks/stripe",
            content=b"{}",
            headers={"stripe-signature": "t=1,v1=abc"},
        )

    assert response.status_code == HTTPStatus.INTERNAL_SERVER_ERROR
    assert response.json() == {"error": "Webhook secret not configured"}


def test_unknown_event_acknowledged(send_event):
    response = send_event("customer.created", {"id": "cus_1"})

    assert response.status_code == HTTPStatus.OK
    assert response.json() == {"received": True}


def test_session_without_order_metadata_is_noop(client, send_event):
    response = send_event("checkout.session.completed",
                          {"id": "cs_other", "metadata": {}, "payment_intent": "pi_other"})

    assert response.status_code == HTTPStatus.OK
    assert _stock(client, "prod-mug") == 15


def test_session_for_unknown_order_is_noop(send_event):
    response = send_event("checkout.session.completed",
                          completed_session("cs_ghost", "order-does-not-exist"))
    assert response.status_code == HTTPStatus.OK


def test_payment_failed_cancels_pending_order(client, checkout, send_event, user_headers):
    """Looked up through the order id copied into the intent metadata."""
    result = checkout([{"productId": "prod-mug", "quantity": 1}])

    response = send_event("payment_intent.payment_failed",
                          payment_intent("pi_failed", result["orderId"]))

    assert response.status_code == HTTPStatus.OK
    order = _order(client, user_headers, result["orderId"])
    assert order["status"] == "CANCELLED"
    assert order["paymentIntentId"] == "pi_failed"


def test_payment_failed_after_payment_is_ignored(client, checkout, send_event, user_headers):
    result = checkout([{"productId": "prod-mug", "quantity": 1}])
    send_event("checkout.session.completed",
               completed_session(result["sessionId"], result["orderId"], intent_id="pi_9"))

    response = send_event("payment_intent.payment_failed", payment_intent("pi_9"))

    assert response.status_code == HTTPStatus.OK
    assert _order(client, user_headers, result["orderId"])["status"] == "PROCESSING"
    assert _stock(client, "prod-mug") == 14


def test_payment_succeeded_before_session_completed(client, checkout, send_event, user_headers):
    """Intent success moves the order on; stock waits for the session event."""
    result = checkout([{"productId": "prod-mug", "quantity": 3}])

    send_event("payment_intent.succeeded", payment_intent("pi_early", result["orderId"]))
    order = _order(client, user_headers, result["orderId"])
    assert order["status"] == "PROCESSING"
    assert _stock(client, "prod-mug") == 15

    send_event("checkout.session.completed",
               completed_session(result["sessionId"], result["orderId"], intent_id="pi_early"))
    send_event("checkout.session.completed",
               completed_session(result["sessionId"], result["orderId"], intent_id="pi_early"))
    assert _stock(client, "prod-mug") == 12


def test_payment_succeeded_for_untracked_intent(send_event):
    response = send_event("payment_intent.succeeded", payment_intent("pi_unknown"))
    assert response.status_code == HTTPStatus.OK


def test_intent_metadata_ignored_for_order_without_session(
    client, send_event, user_headers, processor, shipping_address
):
    """An order whose session was never recorded is not reconciled."""
    processor.fail_with = Internal("Payment processor unavailable")
    client.post(
        "/api/checkout",
        json={"items": [{"productId": "prod-mug", "quantity": 1}],
              "shippingAddress": shipping_address},
        headers=user_headers,
    )
    orphan = client.get("/api/orders", headers=user_headers).json()["orders"][0]

    send_event("payment_intent.payment_failed", payment_intent("pi_orphan", orphan["id"]))

    assert _order(client, user_headers, orphan["id"])["status"] == "PENDING"


def test_session_expired_cancels_pending_order(client, checkout, send_event, user_headers):
    result = checkout([{"productId": "prod-mug", "quantity": 1}])

    send_event("checkout.session.expired",
               {"id": result["sessionId"], "metadata": {"order_id": result["orderId"]}})

    assert _order(client, user_headers, result["orderId"])["status"] == "CANCELLED"


def test_concurrent_last_unit_orders_never_go_negative(
    client, checkout, send_event, user_headers, other_user_headers
):
    """Both checkouts pass the point-in-time stock check; stock floors at zero."""
    first = checkout([{"productId": "prod-vase", "quantity": 2}])
    second = checkout([{"productId": "prod-vase", "quantity": 2}], headers=other_user_headers)

    send_event("checkout.session.completed",
               completed_session(first["sessionId"], first["orderId"], intent_id="pi_a"))
    send_event("checkout.session.completed",
               completed_session(second["sessionId"], second["orderId"], intent_id="pi_b"))

    assert _stock(client, "prod-vase") == 0
    assert _order(client, other_user_headers, second["orderId"])["status"] == "PROCESSING"


@pytest.mark.parametrize("header", ["garbage", "t=notanumber,v1=abc", "v1=abc"])
def test_malformed_signature_headers(send_event, header):
    response = send_event("checkout.session.completed", {"id": "cs_1"}, signature=header)
    assert response.status_code == HTTPStatus.BAD_REQUEST


def test_redelivery_after_failed_stock_update_commits_once(
    services, user_headers, shipping_address, sign_payload, mocker
):
    """A notification that fails midway leaves the order payable for the retry."""
    decrement = services.products.decrement_stock
    failures = [ConnectionError("connection reset")]

    async def flaky_decrement(lines):
        if failures:
            raise failures.pop()
        return await decrement(lines)

    mocker.patch.object(services.products, "decrement_stock", side_effect=flaky_decrement)

    with TestClient(create_app(services), raise_server_exceptions=False) as client:
        result = client.post(
            "/api/checkout",
            json={"items": [{"productId": "prod-mug", "quantity": 2}],
                  "shippingAddress": shipping_address},
            headers=user_headers,
        ).json()
        payload = json.dumps({
            "id": "evt_retry",
            "type": "checkout.session.completed",
            "data": {"object": completed_session(result["sessionId"], result["orderId"])},
        })

        def deliver():
            return client.post(
                "/api/webhooks/stripe",
                content=payload,
                headers={"stripe-signature": sign_payload(payload),
                         "Content-Type": "application/json"},
            )

        failed = deliver()
        assert failed.status_code == HTTPStatus.INTERNAL_SERVER_ERROR
        assert _order(client, user_headers, result["orderId"])["status"] == "PENDING"
        assert _stock(client, "prod-mug") == 15

        assert deliver().status_code == HTTPStatus.OK
        assert deliver().status_code == HTTPStatus.OK
        order = _order(client, user_headers, result["orderId"])
        assert order["status"] == "PROCESSING"
        assert order["paymentIntentId"] == "pi_test_1"
        assert _stock(client, "prod-mug") == 13
