import base64
import json
from datetime import timedelta

import pytest

from checkout import app as checkout_app
from history import app as history_app
from payment import app as payment_app
from reservation import app as reservation_app
from spaces import app as spaces_app
from webhook import app as webhook_app

from conftest import WEBHOOK_SECRET


def api_event(body=None, query=None, headers=None, encoded=False):
    raw = json.dumps(body) if isinstance(body, dict) else body
    if encoded and raw is not None:
        raw = base64.b64encode(raw.encode("utf-8")).decode("ascii")
    return {
        "body": raw,
        "queryStringParameters": query,
        "headers": headers or {},
        "isBase64Encoded": encoded,
    }


def body_of(response):
    return json.loads(response["body"])


@pytest.fixture
def wired(monkeypatch, reservation_service, dispatcher, checkout_service, spaces):
    for module in (reservation_app, payment_app, spaces_app, history_app):
        monkeypatch.setattr(module, "get_service", lambda: reservation_service)
    monkeypatch.setattr(checkout_app, "get_service", lambda: checkout_service)
    monkeypatch.setattr(webhook_app, "get_dispatcher", lambda: dispatcher)


def reserve(lambda_context, clock, space_number="A1", minutes=45):
    payload = {
        "spaceNumber": space_number,
        "checkoutTime": (clock.now + timedelta(minutes=minutes)).isoformat(),
        "email": "driver@example.com",
    }
    return reservation_app.lambda_handler(api_event(payload), lambda_context)


def signed(payload):
    return api_event(payload, headers={"verif-hash": WEBHOOK_SECRET})


class TestReserveHandler:
    def test_returns_payment_envelope(self, wired, lambda_context, clock):
        response = reserve(lambda_context, clock)

        assert response["statusCode"] == 200
        body = body_of(response)
        assert body["success"] is True
        assert body["message"] == "Proceed to payment"
        assert body["data"]["charge"] == 529.95
        assert body["data"]["spaceNumber"] == "A1"
        assert body["data"]["paymentId"]
        assert "timestamp" in body

    def test_sets_cors_and_security_headers(self, wired, lambda_context, clock):
        headers = reserve(lambda_context, clock)["headers"]

        assert headers["Access-Control-Allow-Origin"] == "https://park.example.com"
        assert headers["Content-Type"] == "application/json"
        assert headers["X-Content-Type-Options"] == "nosniff"
        assert headers["X-Frame-Options"] == "DENY"

    def test_invalid_space_number_is_a_validation_error(self, wired, lambda_context, clock):
        event = api_event({"spaceNumber": "A-1", "checkoutTime": clock.now.isoformat(), "email": "driver@example.com"})

        response = reservation_app.lambda_handler(event, lambda_context)

        assert response["statusCode"] == 400
        body = body_of(response)
        assert body["success"] is False
        assert body["code"] == "VALIDATION_ERROR"
        assert body["details"][0]["field"] == "spaceNumber"

    def test_malformed_json_is_rejected(self, wired, lambda_context):
        response = reservation_app.lambda_handler(api_event("{not json"), lambda_context)

        assert response["statusCode"] == 400
        assert body_of(response)["message"] == "Invalid JSON in request body"

    def test_base64_body_is_decoded(self, wired, lambda_context, clock):
        payload = {
            "spaceNumber": "B1",
            "checkoutTime": (clock.now + timedelta(minutes=20)).isoformat(),
            "email": "driver@example.com",
        }

        response = reservation_app.lambda_handler(api_event(payload, encoded=True), lambda_context)

        assert response["statusCode"] == 200
        assert body_of(response)["data"]["spaceNumber"] == "B1"

    def test_reserved_space_is_a_conflict(self, wired, lambda_context, clock):
        response = reserve(lambda_context, clock, space_number="A2")

        assert response["statusCode"] == 409
        assert body_of(response)["code"] == "CONFLICT"

    def test_unexpected_failure_hides_internals(self, monkeypatch, lambda_context, clock):
        class Broken:
            def make_reservation(self, request):
                raise RuntimeError("table exploded")

        monkeypatch.setattr(reservation_app, "get_service", lambda: Broken())

        response = reserve(lambda_context, clock)

        assert response["statusCode"] == 500
        body = body_of(response)
        assert body == {
            "success": False,
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "timestamp": body["timestamp"],
        }


class TestPayHandler:
    def test_returns_payment_link(self, wired, lambda_context, clock):
        payment_id = body_of(reserve(lambda_context, clock))["data"]["paymentId"]

        response = payment_app.lambda_handler(api_event({"paymentId": payment_id}), lambda_context)

        assert response["statusCode"] == 200
        data = body_of(response)["data"]
        assert data["paymentLink"] == f"https://checkout.example.com/pay/{payment_id}"
        assert data["amount"] == 529.95

    def test_redirect_query_answers_with_location(self, wired, lambda_context, clock):
        payment_id = body_of(reserve(lambda_context, clock))["data"]["paymentId"]

        response = payment_app.lambda_handler(
            api_event({"paymentId": payment_id}, query={"redirect": "true"}),
            lambda_context,
        )

        assert response["statusCode"] == 302
        assert response["headers"]["Location"] == f"https://checkout.example.com/pay/{payment_id}"
        assert response["body"] == ""

    def test_unknown_payment_is_not_found(self, wired, lambda_context):
        response = payment_app.lambda_handler(api_event({"paymentId": "missing"}), lambda_context)

        assert response["statusCode"] == 404
        assert body_of(response)["code"] == "NOT_FOUND"


class TestWebhookHandler:
    def test_missing_signature_is_rejected_without_changes(self, wired, lambda_context, clock, repositories):
        payment_id = body_of(reserve(lambda_context, clock))["data"]["paymentId"]
        payload = {"event": "charge.completed", "data": {"id": 7001, "tx_ref": payment_id, "status": "successful"}}

        response = webhook_app.lambda_handler(api_event(payload), lambda_context)

        assert response["statusCode"] == 401
        assert body_of(response)["code"] == "UNAUTHORIZED"
        assert repositories.payments.get(payment_id).payment_status == "unprocessed"
        assert repositories.spaces.get("A1").reserved is False

    def test_wrong_signature_is_rejected(self, wired, lambda_context):
        event = api_event({"event": "charge.completed"}, headers={"verif-hash": "guess"})

        assert webhook_app.lambda_handler(event, lambda_context)["statusCode"] == 401

    def test_completed_charge_confirms_reservation(self, wired, lambda_context, clock, repositories):
        payment_id = body_of(reserve(lambda_context, clock))["data"]["paymentId"]
        payload = {"event": "charge.completed", "data": {"id": 7001, "tx_ref": payment_id, "status": "successful"}}

        response = webhook_app.lambda_handler(signed(payload), lambda_context)

        assert response["statusCode"] == 200
        body = body_of(response)
        assert body["message"] == "Payment confirmed and reservation created"
        assert body["data"]["status"] == "confirmed"
        assert repositories.spaces.get("A1").reserved is True

    def test_header_name_is_case_insensitive(self, wired, lambda_context):
        event = api_event({"event": "transfer.completed", "data": {}}, headers={"Verif-Hash": WEBHOOK_SECRET})

        response = webhook_app.lambda_handler(event, lambda_context)

        assert response["statusCode"] == 200
        assert body_of(response)["message"] == "Webhook received"

    def test_malformed_payload_is_a_validation_error(self, wired, lambda_context):
        response = webhook_app.lambda_handler(signed({"data": {"id": 1}}), lambda_context)

        assert response["statusCode"] == 400

    def test_unknown_payment_is_not_found(self, wired, lambda_context):
        payload = {"event": "charge.completed", "data": {"id": 7001, "tx_ref": "missing", "status": "successful"}}

        response = webhook_app.lambda_handler(signed(payload), lambda_context)

        assert response["statusCode"] == 404


class TestCheckoutHandler:
    def test_checks_out_active_reservation(self, wired, lambda_context, clock, dispatcher):
        payment_id = body_of(reserve(lambda_context, clock))["data"]["paymentId"]
        dispatcher.confirm_payment(payment_id, transaction_id="7001")
        clock.advance(minutes=30)

        response = checkout_app.lambda_handler(api_event({"spaceNumber": "A1"}), lambda_context)

        assert response["statusCode"] == 200
        body = body_of(response)
        assert body["message"] == "Checkout completed successfully"
        assert body["data"]["charge"] == 317.97
        assert body["data"]["reservation"]["status"] == "completed"

    def test_space_without_reservation_is_not_found(self, wired, lambda_context):
        response = checkout_app.lambda_handler(api_event({"spaceNumber": "B1"}), lambda_context)

        assert response["statusCode"] == 404
        assert body_of(response)["message"] == "Active reservation for parking space B1 not found"


class TestListingHandlers:
    def test_lists_available_spaces(self, wired, lambda_context):
        response = spaces_app.lambda_handler(api_event(query={"limit": "50"}), lambda_context)

        assert response["statusCode"] == 200
        numbers = sorted(item["spaceNumber"] for item in body_of(response)["data"]["items"])
        assert numbers == ["A1", "B1"]

    def test_page_size_is_bounded(self, wired, lambda_context):
        response = spaces_app.lambda_handler(api_event(query={"limit": "101"}), lambda_context)

        assert response["statusCode"] == 400
        assert body_of(response)["details"][0]["field"] == "limit"

    def test_lists_payment_history(self, wired, lambda_context, clock):
        reserve(lambda_context, clock)

        response = history_app.lambda_handler(
            api_event(query={"email": "driver@example.com"}),
            lambda_context,
        )

        assert response["statusCode"] == 200
        items = body_of(response)["data"]["items"]
        assert len(items) == 1
        assert items[0]["userEmail"] == "driver@example.com"

    def test_history_requires_email(self, wired, lambda_context):
        response = history_app.lambda_handler(api_event(), lambda_context)

        assert response["statusCode"] == 400
