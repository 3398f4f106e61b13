"""
Payment tests
Saved cards, fee-bearing deposits, reserve-then-transfer withdrawals,
reconciliation and Stripe error classification
"""

from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest
import stripe
from sqlalchemy import select

from config import Config
from models import (
    Payment, PaymentStatus, PlatformRevenue, RevenueSource, Transaction,
    TransactionStatus, TransactionType, User,
)
from services.payment_error_classifier import PaymentErrorClassifier
from services.payment_service import payment_service
from utils.datetime_helpers import get_naive_utc_now
from utils.exception_handler import (
    ConflictError, InsufficientBalanceError, PaymentDeclinedError, PaymentNotConfiguredError,
    PermissionDeniedError, ValidationError,
)


def reload_user(session, user_id) -> User:
    session.expire_all()
    return session.get(User, user_id)


@pytest.fixture
def customer(make_user):
    return make_user("payer", balance="20.00", stripe_customer_id="cus_test123")


def card(pm_id="pm_visa", customer="cus_test123", last4="4242"):
    return SimpleNamespace(
        id=pm_id,
        customer=customer,
        type="card",
        card=SimpleNamespace(brand="visa", last4=last4, exp_month=12, exp_year=2030),
    )


class TestSavedCards:

    def test_setup_intent_creates_customer_once(self, db_session, make_user, stripe_mock):
        make_user("fresh")

        first = payment_service.create_setup_intent(db_session, "fresh", stripe_mock)
        second = payment_service.create_setup_intent(db_session, "fresh", stripe_mock)

        assert first == {"clientSecret": "seti_123_secret", "customerId": "cus_test123"}
        assert second["customerId"] == "cus_test123"
        stripe_mock.create_customer.assert_called_once()
        assert reload_user(db_session, "fresh").stripe_customer_id == "cus_test123"

    def test_first_card_becomes_default(self, db_session, customer, stripe_mock):
        stripe_mock.retrieve_payment_method.side_effect = [card("pm_1"), card("pm_2", last4="1111")]

        first = payment_service.save_method(db_session, customer.id, "pm_1", stripe_mock)
        second = payment_service.save_method(db_session, customer.id, "pm_2", stripe_mock)

        assert first["isDefault"] is True
        assert second["isDefault"] is False
        assert second["last4"] == "1111"

    def test_unattached_card_is_attached(self, db_session, customer, stripe_mock):
        stripe_mock.retrieve_payment_method.return_value = card(customer=None)
        stripe_mock.attach_payment_method.return_value = card()

        payment_service.save_method(db_session, customer.id, "pm_visa", stripe_mock)

        stripe_mock.attach_payment_method.assert_called_once_with("pm_visa", "cus_test123")

    def test_card_of_another_customer_is_refused(self, db_session, customer, stripe_mock):
        stripe_mock.retrieve_payment_method.return_value = card(customer="cus_someone_else")
        with pytest.raises(PermissionDeniedError):
            payment_service.save_method(db_session, customer.id, "pm_visa", stripe_mock)

    def test_duplicate_card_conflicts(self, db_session, customer, stripe_mock):
        stripe_mock.retrieve_payment_method.return_value = card()
        payment_service.save_method(db_session, customer.id, "pm_visa", stripe_mock)
        with pytest.raises(ConflictError):
            payment_service.save_method(db_session, customer.id, "pm_visa", stripe_mock)

    def test_set_default_keeps_single_default(self, db_session, customer, stripe_mock):
        stripe_mock.retrieve_payment_method.side_effect = [card("pm_1"), card("pm_2")]
        payment_service.save_method(db_session, customer.id, "pm_1", stripe_mock)
        second = payment_service.save_method(db_session, customer.id, "pm_2", stripe_mock)

        payment_service.set_default_method(db_session, customer.id, second["id"])

        db_session.expire_all()
        defaults = [m["stripePaymentMethodId"] for m in payment_service.list_methods(db_session, customer.id)
                    if m["isDefault"]]
        assert defaults == ["pm_2"]

    def test_deleting_default_promotes_another_card(self, db_session, customer, stripe_mock):
        stripe_mock.retrieve_payment_method.side_effect = [card("pm_1"), card("pm_2")]
        first = payment_service.save_method(db_session, customer.id, "pm_1", stripe_mock)
        payment_service.save_method(db_session, customer.id, "pm_2", stripe_mock)

        payment_service.delete_method(db_session, customer.id, first["id"], stripe_mock)

        stripe_mock.detach_payment_method.assert_called_once_with("pm_1")
        remaining = payment_service.list_methods(db_session, customer.id)
        assert [(m["stripePaymentMethodId"], m["isDefault"]) for m in remaining] == [("pm_2", True)]


class TestDeposits:

    def test_successful_deposit_credits_amount_and_books_fee(self, db_session, customer, stripe_mock):
        result = payment_service.deposit(db_session, customer.id, Decimal("50.00"), "pm_visa", stripe_mock)

        assert result["success"] is True
        assert result["credited"] is True
        assert (result["amount"], result["fee"], result["totalCharged"]) == ("50.00", "2.50", "52.50")
        args, kwargs = stripe_mock.create_payment_intent.call_args
        assert args[0] == Decimal("52.50")
        assert kwargs["confirm"] is True

        assert reload_user(db_session, customer.id).balance == Decimal("70.00")
        revenue = db_session.execute(select(PlatformRevenue)).scalar_one()
        assert revenue.amount == Decimal("2.50")
        assert revenue.source == RevenueSource.DEPOSIT.value
        payment = db_session.execute(select(Payment)).scalar_one()
        assert payment.status == PaymentStatus.SUCCEEDED.value
        assert payment.credited_at is not None

    def test_requires_action_deposit_settles_once_on_confirm(self, db_session, customer, stripe_mock):
        stripe_mock.create_payment_intent.return_value = SimpleNamespace(
            id="pi_3ds", status="requires_action", client_secret="pi_3ds_secret"
        )
        pending = payment_service.deposit(db_session, customer.id, Decimal("10.00"), "pm_visa", stripe_mock)
        assert pending["credited"] is False
        assert pending["clientSecret"] == "pi_3ds_secret"
        assert reload_user(db_session, customer.id).balance == Decimal("20.00")

        stripe_mock.retrieve_payment_intent.return_value = SimpleNamespace(id="pi_3ds", status="succeeded")
        first = payment_service.confirm_deposit(db_session, customer.id, "pi_3ds", stripe_mock)
        second = payment_service.confirm_deposit(db_session, customer.id, "pi_3ds", stripe_mock)

        assert first["credited"] is True
        assert second["credited"] is False
        assert reload_user(db_session, customer.id).balance == Decimal("30.00")
        deposits = db_session.execute(
            select(Transaction).where(Transaction.type == TransactionType.DEPOSIT.value)
        ).scalars().all()
        assert len(deposits) == 1

    def test_confirm_of_someone_elses_deposit_is_refused(self, db_session, customer, make_user, stripe_mock):
        make_user("intruder")
        stripe_mock.create_payment_intent.return_value = SimpleNamespace(
            id="pi_3ds", status="requires_action", client_secret="secret"
        )
        payment_service.deposit(db_session, customer.id, Decimal("10.00"), "pm_visa", stripe_mock)
        with pytest.raises(PermissionDeniedError):
            payment_service.confirm_deposit(db_session, "intruder", "pi_3ds", stripe_mock)

    def test_declined_card_maps_to_friendly_message(self, db_session, customer, stripe_mock):
        stripe_mock.create_payment_intent.side_effect = stripe.CardError(
            "Your card has insufficient funds.", "card", "insufficient_funds"
        )

        with pytest.raises(PaymentDeclinedError) as exc_info:
            payment_service.deposit(db_session, customer.id, Decimal("10.00"), "pm_visa", stripe_mock)

        assert exc_info.value.message == "Your card has insufficient funds. Please try a different card."
        assert exc_info.value.decline_code == "insufficient_funds"
        assert reload_user(db_session, customer.id).balance == Decimal("20.00")
        assert db_session.execute(select(Payment)).first() is None

    def test_deposit_requires_saved_customer(self, db_session, make_user, stripe_mock):
        make_user("nocard")
        with pytest.raises(ValidationError, match="add a payment method"):
            payment_service.deposit(db_session, "nocard", Decimal("10.00"), "pm_visa", stripe_mock)

    def test_unconfigured_provider_is_reported(self, db_session, customer, stripe_mock):
        stripe_mock.is_configured = False
        with pytest.raises(PaymentNotConfiguredError):
            payment_service.deposit(db_session, customer.id, Decimal("10.00"), "pm_visa", stripe_mock)

    def test_dev_deposit_can_be_disabled(self, db_session, customer, monkeypatch):
        result = payment_service.dev_deposit(db_session, customer.id, Decimal("100.00"))
        assert result == {"success": True, "amount": "100.00", "newBalance": "120.00"}

        monkeypatch.setattr(Config, "TEST_DEPOSIT_ENABLED", False)
        with pytest.raises(PermissionDeniedError):
            payment_service.dev_deposit(db_session, customer.id, Decimal("100.00"))


class TestWithdrawals:

    def test_below_minimum_is_rejected(self, db_session, customer, stripe_mock):
        with pytest.raises(ValidationError, match=r"Minimum withdrawal amount is \$5\.00"):
            payment_service.withdraw(db_session, customer.id, Decimal("4.99"), "bank_transfer", stripe_mock)
        stripe_mock.create_transfer.assert_not_called()
        assert reload_user(db_session, customer.id).balance == Decimal("20.00")

    def test_minimum_is_accepted(self, db_session, customer, stripe_mock):
        result = payment_service.withdraw(db_session, customer.id, Decimal("5.00"), "bank_transfer", stripe_mock)

        assert result["success"] is True
        assert result["status"] == TransactionStatus.PENDING.value
        assert (result["amount"], result["fee"], result["payoutAmount"]) == ("5.00", "0.00", "5.00")
        assert result["newBalance"] == "15.00"

        args, kwargs = stripe_mock.create_transfer.call_args
        assert args[0] == Decimal("5.00")
        assert kwargs["destination"] == "cus_test123"
        assert kwargs["idempotency_key"] == f"withdrawal-{result['transactionId']}"
        withdrawal = db_session.get(Transaction, result["transactionId"])
        assert withdrawal.reference == "tr_test123"

    def test_instant_payout_withholds_fee(self, db_session, customer, stripe_mock):
        result = payment_service.withdraw(db_session, customer.id, Decimal("10.00"), "debit_card", stripe_mock)

        assert (result["fee"], result["payoutAmount"]) == ("0.25", "9.75")
        assert stripe_mock.create_transfer.call_args[0][0] == Decimal("9.75")
        assert db_session.execute(select(PlatformRevenue)).first() is None

    def test_insufficient_balance(self, db_session, customer, stripe_mock):
        with pytest.raises(InsufficientBalanceError):
            payment_service.withdraw(db_session, customer.id, Decimal("20.01"), "bank_transfer", stripe_mock)
        stripe_mock.create_transfer.assert_not_called()

    def test_provider_failure_reverses_reservation(self, db_session, customer, stripe_mock):
        stripe_mock.create_transfer.side_effect = stripe.InvalidRequestError(
            "No such destination", "destination", code="account_invalid"
        )

        with pytest.raises(PaymentDeclinedError) as exc_info:
            payment_service.withdraw(db_session, customer.id, Decimal("10.00"), "bank_transfer", stripe_mock)

        assert "payout account is invalid" in exc_info.value.message
        assert reload_user(db_session, customer.id).balance == Decimal("20.00")
        withdrawal = db_session.execute(
            select(Transaction).where(Transaction.type == TransactionType.WITHDRAWAL.value)
        ).scalar_one()
        assert withdrawal.status == TransactionStatus.FAILED.value
        refund = db_session.execute(
            select(Transaction).where(Transaction.type == TransactionType.REFUND.value)
        ).scalar_one()
        assert refund.amount == Decimal("10.00")

    def test_failure_is_reversed_only_once(self, db_session, customer, stripe_mock):
        stripe_mock.create_transfer.side_effect = stripe.InvalidRequestError(
            "No such destination", "destination", code="account_invalid"
        )
        with pytest.raises(PaymentDeclinedError):
            payment_service.withdraw(db_session, customer.id, Decimal("10.00"), "bank_transfer", stripe_mock)

        withdrawal_id = db_session.execute(
            select(Transaction.id).where(Transaction.type == TransactionType.WITHDRAWAL.value)
        ).scalar_one()
        assert payment_service.mark_withdrawal_failed(db_session, withdrawal_id, "again") is False
        assert reload_user(db_session, customer.id).balance == Decimal("20.00")

    def test_network_failure_leaves_withdrawal_pending(self, db_session, customer, stripe_mock):
        stripe_mock.create_transfer.side_effect = stripe.APIConnectionError("Request timed out")

        result = payment_service.withdraw(db_session, customer.id, Decimal("10.00"), "bank_transfer", stripe_mock)

        assert result["status"] == TransactionStatus.PENDING.value
        assert result["newBalance"] == "10.00"
        assert "processing" in result["message"]
        assert reload_user(db_session, customer.id).balance == Decimal("10.00")
        withdrawal = db_session.get(Transaction, result["transactionId"])
        assert withdrawal.status == TransactionStatus.PENDING.value
        assert withdrawal.reference is None
        assert db_session.execute(
            select(Transaction).where(Transaction.type == TransactionType.REFUND.value)
        ).first() is None

    def test_provider_outage_leaves_withdrawal_pending(self, db_session, customer, stripe_mock):
        stripe_mock.create_transfer.side_effect = stripe.APIError("Service unavailable")

        result = payment_service.withdraw(db_session, customer.id, Decimal("10.00"), "bank_transfer", stripe_mock)

        assert result["status"] == TransactionStatus.PENDING.value
        assert reload_user(db_session, customer.id).balance == Decimal("10.00")


class TestWithdrawalReconciliation:

    def _pending_withdrawal(self, db_session, customer, stripe_mock, amount="10.00"):
        result = payment_service.withdraw(db_session, customer.id, Decimal(amount), "bank_transfer", stripe_mock)
        return result["transactionId"]

    def later(self):
        return get_naive_utc_now() + timedelta(minutes=30)

    def test_paid_transfer_completes_withdrawal(self, db_session, customer, stripe_mock):
        withdrawal_id = self._pending_withdrawal(db_session, customer, stripe_mock)
        stripe_mock.retrieve_transfer.return_value = SimpleNamespace(id="tr_test123", reversed=False)

        results = payment_service.reconcile_pending_withdrawals(db_session, stripe_mock, now=self.later())

        assert results == {"completed": 1, "reversed": 0, "errors": 0}
        db_session.expire_all()
        assert db_session.get(Transaction, withdrawal_id).status == TransactionStatus.COMPLETED.value

    def test_reversed_transfer_returns_funds(self, db_session, customer, stripe_mock):
        withdrawal_id = self._pending_withdrawal(db_session, customer, stripe_mock)
        stripe_mock.retrieve_transfer.return_value = SimpleNamespace(id="tr_test123", reversed=True)

        results = payment_service.reconcile_pending_withdrawals(db_session, stripe_mock, now=self.later())

        assert results["reversed"] == 1
        assert reload_user(db_session, customer.id).balance == Decimal("20.00")
        assert db_session.get(Transaction, withdrawal_id).status == TransactionStatus.FAILED.value

    def test_recent_withdrawals_are_left_alone(self, db_session, customer, stripe_mock):
        self._pending_withdrawal(db_session, customer, stripe_mock)
        results = payment_service.reconcile_pending_withdrawals(db_session, stripe_mock)
        assert results == {"completed": 0, "reversed": 0, "errors": 0}
        stripe_mock.retrieve_transfer.assert_not_called()

    def test_missing_transfer_is_reissued_with_same_key(self, db_session, customer, stripe_mock):
        withdrawal_id = self._pending_withdrawal(db_session, customer, stripe_mock)
        withdrawal = db_session.get(Transaction, withdrawal_id)
        withdrawal.reference = None
        db_session.commit()
        stripe_mock.create_transfer.reset_mock()
        stripe_mock.create_transfer.return_value = SimpleNamespace(id="tr_retry", reversed=False)

        payment_service.reconcile_pending_withdrawals(db_session, stripe_mock, now=self.later())

        kwargs = stripe_mock.create_transfer.call_args.kwargs
        assert kwargs["idempotency_key"] == f"withdrawal-{withdrawal_id}"
        db_session.expire_all()
        assert db_session.get(Transaction, withdrawal_id).reference == "tr_retry"

    def test_timed_out_transfer_is_reissued_with_same_key(self, db_session, customer, stripe_mock):
        stripe_mock.create_transfer.side_effect = stripe.APIConnectionError("Request timed out")
        withdrawal_id = self._pending_withdrawal(db_session, customer, stripe_mock)
        first_key = stripe_mock.create_transfer.call_args.kwargs["idempotency_key"]

        stripe_mock.create_transfer.side_effect = None
        stripe_mock.create_transfer.return_value = SimpleNamespace(id="tr_after_timeout", reversed=False)
        results = payment_service.reconcile_pending_withdrawals(db_session, stripe_mock, now=self.later())

        assert results == {"completed": 0, "reversed": 0, "errors": 0}
        assert stripe_mock.create_transfer.call_count == 2
        assert stripe_mock.create_transfer.call_args.kwargs["idempotency_key"] == first_key
        assert first_key == f"withdrawal-{withdrawal_id}"
        db_session.expire_all()
        withdrawal = db_session.get(Transaction, withdrawal_id)
        assert withdrawal.reference == "tr_after_timeout"
        assert withdrawal.status == TransactionStatus.PENDING.value
        assert reload_user(db_session, customer.id).balance == Decimal("10.00")

    def test_repeated_outage_keeps_withdrawal_for_next_run(self, db_session, customer, stripe_mock):
        stripe_mock.create_transfer.side_effect = stripe.APIConnectionError("Request timed out")
        withdrawal_id = self._pending_withdrawal(db_session, customer, stripe_mock)

        results = payment_service.reconcile_pending_withdrawals(db_session, stripe_mock, now=self.later())

        assert results["errors"] == 1
        db_session.expire_all()
        assert db_session.get(Transaction, withdrawal_id).status == TransactionStatus.PENDING.value
        assert reload_user(db_session, customer.id).balance == Decimal("10.00")


class TestPaymentErrorClassifier:

    def test_expired_card(self):
        error = stripe.CardError("Your card has expired.", "exp_month", "expired_card")
        assert PaymentErrorClassifier.classify_deposit_error(error).message == (
            "Your card has expired. Please update your payment method."
        )

    def test_unknown_code_surfaces_provider_message(self):
        error = stripe.CardError("Your card does not support this type of purchase.", None, "card_not_supported")
        declined = PaymentErrorClassifier.classify_deposit_error(error)
        assert declined.message == "Your card does not support this type of purchase."
        assert declined.status_code == 400

    def test_network_errors_are_technical(self):
        technical, _ = PaymentErrorClassifier.is_technical_error(stripe.APIConnectionError("Connection reset"))
        assert technical is True

    def test_decline_is_not_technical(self):
        technical, code = PaymentErrorClassifier.is_technical_error(
            stripe.CardError("Your card was declined.", None, "card_declined")
        )
        assert (technical, code) == (False, None)
