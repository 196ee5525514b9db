"""HTTP endpoint tests"""
import pytest
from unittest.mock import patch
from sqlalchemy.exc import SQLAlchemyError

from app.models.payment import Payment
from app.models.webhook_event import WebhookEvent, WebhookStatus

WEBHOOK_URL = "/webhooks/payment"
SIGNATURE_HEADER = "X-Webhook-Signature"


def _post(client, body: bytes, signature=None):
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers[SIGNATURE_HEADER] = signature
    return client.post(WEBHOOK_URL, content=body, headers=headers)


@pytest.mark.critical
class TestWebhookAuthentication:
    """Unsigned or tampered requests never reach processing"""

    def test_missing_signature_returns_401(self, client, db_session, sign, payment_data):
        """Test a request without signature header is rejected"""
        body, _ = sign(payment_data)
        response = _post(client, body)

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid webhook signature"
        assert db_session.query(WebhookEvent).count() == 0

    def test_wrong_signature_returns_401(self, client, db_session, sign, payment_data):
        """Test a well-formed but wrong signature is rejected before bookkeeping"""
        body, _ = sign(payment_data)
        response = _post(client, body, "0" * 64)

        assert response.status_code == 401
        assert db_session.query(WebhookEvent).count() == 0

    def test_tampered_body_returns_401(self, client, db_session, sign, payment_data):
        """Test a body changed after signing is rejected"""
        body, signature = sign(payment_data)
        tampered = body.replace(b"999", b"1")
        response = _post(client, tampered, signature)

        assert response.status_code == 401
        assert db_session.query(Payment).count() == 0

    def test_signature_checked_before_parsing(self, client):
        """Garbage with a bad signature is 401, not 400"""
        response = _post(client, b"not json", "abc")
        assert response.status_code == 401


@pytest.mark.critical
class TestPaymentWebhook:
    """Authenticated deliveries always get 200 once parsed"""

    def test_valid_webhook_is_processed(self, client, db_session, sign, payment_data):
        """Test a signed payment returns 200 with the new payment id"""
        body, signature = sign(payment_data)
        response = _post(client, body, signature)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == 200
        assert data["message"] == "Webhook processed successfully"
        payment = db_session.query(Payment).one()
        assert data["paymentId"] == payment.id
        assert "webhookEventId" not in data

    def test_redelivery_reports_duplicate(self, client, db_session, sign, payment_data):
        """Test resending the same body returns 200 flagged as duplicate"""
        body, signature = sign(payment_data)
        first = _post(client, body, signature)
        second = _post(client, body, signature)

        assert second.status_code == 200
        data = second.json()
        assert data["message"] == "Webhook already processed (duplicate)"
        assert data["paymentId"] == first.json()["paymentId"]
        assert data["webhookEventId"] == db_session.query(WebhookEvent).one().id
        assert db_session.query(Payment).count() == 1

    def test_new_event_type_for_recorded_payment_is_not_duplicate(self, client, db_session, sign, payment_data):
        """Test another event type for the same payment is acknowledged as processed, not duplicate"""
        body, signature = sign(payment_data)
        first = _post(client, body, signature)

        payment_data["eventType"] = "payment.captured"
        body, signature = sign(payment_data)
        second = _post(client, body, signature)

        assert second.status_code == 200
        assert second.json()["message"] == "Webhook processed successfully"
        assert second.json()["paymentId"] == first.json()["paymentId"]
        assert db_session.query(Payment).count() == 1
        assert db_session.query(WebhookEvent).count() == 2

    def test_validation_failure_still_returns_200(self, client, db_session, sign, payment_data):
        """Test a rejected payment is acknowledged so the sender stops retrying"""
        payment_data["amount"] = 0
        body, signature = sign(payment_data)
        response = _post(client, body, signature)

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Webhook received, rejected by validation"
        assert "paymentId" not in data
        assert db_session.query(WebhookEvent).one().status == WebhookStatus.FAILED.value

    def test_processing_failure_still_returns_200(self, client, db_session, sign, payment_data):
        """Test an internal failure is acknowledged and the event left RECEIVED"""
        body, signature = sign(payment_data)
        with patch(
            "app.services.webhook_service.activate_or_extend_subscription",
            side_effect=SQLAlchemyError("database unavailable")
        ):
            response = _post(client, body, signature)

        assert response.status_code == 200
        assert response.json()["message"] == "Webhook received, processing failed"
        assert db_session.query(WebhookEvent).one().status == WebhookStatus.RECEIVED.value

    def test_uppercase_signature_is_accepted(self, client, sign, payment_data):
        """Test hex case does not matter"""
        body, signature = sign(payment_data)
        response = _post(client, body, signature.upper())
        assert response.status_code == 200

    def test_payload_without_email(self, client, db_session, sign, payment_data):
        """Test a payment without email is processed for a placeholder user"""
        del payment_data["email"]
        body, signature = sign(payment_data)
        response = _post(client, body, signature)

        assert response.status_code == 200
        assert response.json()["message"] == "Webhook processed successfully"
        assert db_session.query(Payment).one().user.email.endswith("@pending.com")

    def test_metadata_is_stored(self, client, db_session, sign, payment_data):
        """Test metadata is kept on the payment and in the event snapshot"""
        payment_data["metadata"] = {"orderId": "ord_42"}
        body, signature = sign(payment_data)
        _post(client, body, signature)

        assert db_session.query(Payment).one().payment_metadata == {"orderId": "ord_42"}
        assert db_session.query(WebhookEvent).one().payload["metadata"] == {"orderId": "ord_42"}


@pytest.mark.high
class TestMalformedPayloads:
    """Signed but unparseable bodies"""

    def test_invalid_json_returns_400(self, client, verifier):
        """Test a signed body that is not JSON returns 400"""
        body = b"{not json"
        response = _post(client, body, verifier.compute_signature(body))
        assert response.status_code == 400

    @pytest.mark.parametrize("field", ["externalPaymentId", "eventType", "amount", "currency", "planType"])
    def test_missing_required_field_returns_400(self, client, sign, payment_data, field):
        """Test each required field is enforced"""
        del payment_data[field]
        body, signature = sign(payment_data)
        assert _post(client, body, signature).status_code == 400

    def test_unknown_field_returns_400(self, client, sign, payment_data):
        """Test fields outside the payload schema are refused"""
        payment_data["couponCode"] = "FREE"
        body, signature = sign(payment_data)
        assert _post(client, body, signature).status_code == 400

    def test_invalid_email_returns_400(self, client, sign, payment_data):
        """Test a malformed email is refused at parse time"""
        payment_data["email"] = "not-an-email"
        body, signature = sign(payment_data)
        assert _post(client, body, signature).status_code == 400

    def test_negative_amount_returns_400(self, client, db_session, sign, payment_data):
        """Test a negative amount never reaches the event log"""
        payment_data["amount"] = -5
        body, signature = sign(payment_data)
        assert _post(client, body, signature).status_code == 400
        assert db_session.query(WebhookEvent).count() == 0


@pytest.mark.medium
class TestMonitoringEndpoints:
    """Health and metrics"""

    def test_health(self, client):
        """Test GET /health"""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_webhook_health(self, client):
        """Test POST /webhooks/health returns a timestamp"""
        response = client.post("/webhooks/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert "timestamp" in response.json()

    def test_metrics_exposes_webhook_counters(self, client, sign, payment_data):
        """Test /metrics lists the webhook metrics after a delivery"""
        body, signature = sign(payment_data)
        _post(client, body, signature)

        response = client.get("/metrics")
        assert response.status_code == 200
        assert "payhook_webhook_events_total" in response.text
        assert "payhook_webhook_processing_seconds" in response.text
