"""Model and constraint tests"""
import pytest
from datetime import timedelta
from sqlalchemy.exc import IntegrityError

from app.models.payment import Payment
from app.models.subscription import Subscription
from app.models.user import User
from app.models.webhook_event import WebhookEvent, WebhookStatus


@pytest.mark.critical
class TestUniqueConstraints:
    """Database constraints backing idempotency"""

    def test_webhook_event_key_is_unique(self, db_session):
        """Test (external_payment_id, event_type) cannot be stored twice"""
        db_session.add(WebhookEvent(external_payment_id="pay_1", event_type="payment.success", payload={}))
        db_session.commit()

        db_session.add(WebhookEvent(external_payment_id="pay_1", event_type="payment.success", payload={}))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_same_payment_different_event_type_is_allowed(self, db_session):
        """Test the event key is composite, not the payment id alone"""
        db_session.add(WebhookEvent(external_payment_id="pay_1", event_type="payment.success", payload={}))
        db_session.add(WebhookEvent(external_payment_id="pay_1", event_type="payment.refunded", payload={}))
        db_session.commit()

        assert db_session.query(WebhookEvent).count() == 2

    def test_payment_external_id_is_unique(self, db_session, test_user):
        """Test a payment external id can only be stored once"""
        for _ in range(2):
            db_session.add(Payment(
                user_id=test_user.id, external_payment_id="pay_1",
                amount=999, currency="USD", plan_type="monthly"
            ))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_one_subscription_per_user_and_plan(self, db_session, test_user, now):
        """Test a user has at most one subscription row per plan"""
        for _ in range(2):
            db_session.add(Subscription(
                user_id=test_user.id, plan_type="monthly", status="ACTIVE",
                started_at=now, expires_at=now + timedelta(days=30), updated_at=now
            ))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_user_email_is_unique(self, db_session):
        """Test user emails are unique"""
        db_session.add(User(email="dup@example.com"))
        db_session.add(User(email="dup@example.com"))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()


@pytest.mark.medium
class TestModelDefaults:
    """Column defaults"""

    def test_webhook_event_defaults(self, db_session):
        """Test a new event defaults to RECEIVED with no processed_at"""
        event = WebhookEvent(external_payment_id="pay_1", event_type="payment.success", payload={"a": 1})
        db_session.add(event)
        db_session.commit()
        db_session.refresh(event)

        assert event.status == WebhookStatus.RECEIVED.value
        assert event.received_at is not None
        assert event.processed_at is None
        assert event.payload == {"a": 1}

    def test_payment_metadata_round_trips(self, db_session, test_user):
        """Test the metadata column and the user relationship"""
        payment = Payment(
            user_id=test_user.id, external_payment_id="pay_meta", amount=999,
            currency="USD", plan_type="monthly", payment_metadata={"orderId": "ord_7"}
        )
        db_session.add(payment)
        db_session.commit()
        db_session.refresh(payment)

        assert payment.status == "COMPLETED"
        assert payment.payment_metadata == {"orderId": "ord_7"}
        assert payment.user.email == test_user.email
