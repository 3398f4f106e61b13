"""
Payment Service - saved cards, deposits and withdrawals through Stripe

Deposits charge amount + platform fee and credit the requested amount once
the PaymentIntent succeeds. Withdrawals reserve the balance first, then call
the provider; a provider failure reverses the reservation, and pending
withdrawals are reconciled later against the provider's transfer state.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

import stripe
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import Config
from models import (
    ActivityType, Payment, PaymentMethod, PaymentStatus, PaymentType, RevenueSource,
    Transaction, TransactionStatus, TransactionType, User, WithdrawalMethod,
)
from services.ledger_service import ledger
from services.payment_error_classifier import PaymentErrorClassifier
from services.stripe_service import StripeService
from services.wallet_service import wallet_service
from utils.atomic_transactions import atomic_transaction
from utils.datetime_helpers import get_naive_utc_now
from utils.decimal_precision import MonetaryDecimal
from utils.exception_handler import (
    ConflictError, NotFoundError, PaymentNotConfiguredError, PermissionDeniedError, ValidationError,
)
from utils.fee_calculator import FeeCalculator, get_fee_calculator
from utils.serializers import money, payment_dict, payment_method_dict

logger = logging.getLogger(__name__)

INTENT_STATUS_MAP = {
    "succeeded": PaymentStatus.SUCCEEDED,
    "requires_action": PaymentStatus.REQUIRES_ACTION,
    "requires_payment_method": PaymentStatus.FAILED,
    "canceled": PaymentStatus.FAILED,
}


def payment_status_from_intent(intent_status: str) -> PaymentStatus:
    return INTENT_STATUS_MAP.get(intent_status, PaymentStatus.PENDING)


class PaymentService:

    def __init__(self, fee_calculator: Optional[FeeCalculator] = None):
        self._fee_calculator = fee_calculator

    @property
    def fee_calculator(self) -> FeeCalculator:
        return self._fee_calculator or get_fee_calculator()

    # ------------------------------------------------------------------
    # Customers and saved cards
    # ------------------------------------------------------------------

    def ensure_customer(self, session: Session, user_id: str, stripe_service: StripeService) -> str:
        """Stripe customer id for the user, created on first use"""
        user = session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        if user.stripe_customer_id:
            return user.stripe_customer_id

        customer_id = stripe_service.create_customer(user.email, user.display_name, user.id)
        with atomic_transaction(session):
            user.stripe_customer_id = customer_id
        return customer_id

    def create_setup_intent(self, session: Session, user_id: str, stripe_service: StripeService) -> Dict[str, Any]:
        customer_id = self.ensure_customer(session, user_id, stripe_service)
        setup_intent = stripe_service.create_setup_intent(customer_id)
        return {"clientSecret": setup_intent["clientSecret"], "customerId": customer_id}

    def list_methods(self, session: Session, user_id: str) -> List[Dict[str, Any]]:
        methods = session.execute(
            select(PaymentMethod)
            .where(PaymentMethod.user_id == user_id)
            .order_by(PaymentMethod.is_default.desc(), PaymentMethod.created_at.desc())
        ).scalars().all()
        return [payment_method_dict(method) for method in methods]

    def save_method(self, session: Session, user_id: str, stripe_payment_method_id: str,
                    stripe_service: StripeService) -> Dict[str, Any]:
        customer_id = self.ensure_customer(session, user_id, stripe_service)

        try:
            stripe_method = stripe_service.retrieve_payment_method(stripe_payment_method_id)
            if not stripe_method.customer:
                stripe_method = stripe_service.attach_payment_method(stripe_payment_method_id, customer_id)
        except stripe.StripeError as e:
            logger.warning(f"⚠️ SAVE_PAYMENT_METHOD_FAILED: user={user_id} {stripe_payment_method_id}: {e}")
            raise ValidationError(getattr(e, "user_message", None) or "Could not save this payment method")

        if stripe_method.customer != customer_id:
            raise PermissionDeniedError("Payment method belongs to another customer")

        card = getattr(stripe_method, "card", None)
        has_methods = session.execute(
            select(PaymentMethod.id).where(PaymentMethod.user_id == user_id).limit(1)
        ).first() is not None

        try:
            with atomic_transaction(session):
                method = PaymentMethod(
                    user_id=user_id,
                    stripe_payment_method_id=stripe_payment_method_id,
                    type=getattr(stripe_method, "type", None) or "card",
                    last4=getattr(card, "last4", None) if card else None,
                    brand=getattr(card, "brand", None) if card else None,
                    expiry_month=getattr(card, "exp_month", None) if card else None,
                    expiry_year=getattr(card, "exp_year", None) if card else None,
                    is_default=not has_methods,
                )
                session.add(method)
        except IntegrityError:
            raise ConflictError("Payment method already saved")

        logger.info(f"💳 PAYMENT_METHOD_SAVED: user={user_id} {method.brand} ****{method.last4}")
        return payment_method_dict(method)

    def _get_owned_method(self, session: Session, user_id: str, method_id: int) -> PaymentMethod:
        method = session.get(PaymentMethod, method_id)
        if not method or method.user_id != user_id:
            raise NotFoundError("Payment method not found")
        return method

    def set_default_method(self, session: Session, user_id: str, method_id: int) -> Dict[str, Any]:
        with atomic_transaction(session):
            method = self._get_owned_method(session, user_id, method_id)
            session.execute(
                update(PaymentMethod)
                .where(PaymentMethod.user_id == user_id, PaymentMethod.id != method_id)
                .values(is_default=False)
                .execution_options(synchronize_session=False)
            )
            method.is_default = True
        return payment_method_dict(method)

    def delete_method(self, session: Session, user_id: str, method_id: int,
                      stripe_service: StripeService) -> None:
        method = self._get_owned_method(session, user_id, method_id)
        try:
            stripe_service.detach_payment_method(method.stripe_payment_method_id)
        except stripe.InvalidRequestError as e:
            # Already detached on the provider side; still remove our copy
            logger.warning(f"⚠️ DETACH_SKIPPED: {method.stripe_payment_method_id}: {e}")

        with atomic_transaction(session):
            was_default = method.is_default
            session.delete(method)
            session.flush()
            if was_default:
                replacement = session.execute(
                    select(PaymentMethod)
                    .where(PaymentMethod.user_id == user_id)
                    .order_by(PaymentMethod.created_at.desc())
                    .limit(1)
                ).scalar_one_or_none()
                if replacement:
                    replacement.is_default = True
        logger.info(f"🗑️ PAYMENT_METHOD_DELETED: user={user_id} method=#{method_id}")

    def payment_history(self, session: Session, user_id: str) -> List[Dict[str, Any]]:
        payments = session.execute(
            select(Payment).where(Payment.user_id == user_id).order_by(Payment.created_at.desc())
        ).scalars().all()
        return [payment_dict(payment) for payment in payments]

    # ------------------------------------------------------------------
    # Deposits
    # ------------------------------------------------------------------

    def deposit(self, session: Session, user_id: str, amount: Decimal, payment_method_id: str,
                stripe_service: StripeService) -> Dict[str, Any]:
        """Charge amount + fee to a saved card and credit `amount` when the charge succeeds"""
        if not stripe_service.is_configured:
            raise PaymentNotConfiguredError("Payment processing is not configured")

        user = session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        if not user.stripe_customer_id:
            raise ValidationError("Please add a payment method first")

        charge = self.fee_calculator.calculate_deposit_charge(amount)
        try:
            intent = stripe_service.create_payment_intent(
                charge["totalCharge"],
                customer_id=user.stripe_customer_id,
                payment_method_id=payment_method_id,
                confirm=True,
                description=f"Deposit ${money(charge['creditAmount'])} (+ ${money(charge['fee'])} fee)",
                metadata={
                    "userId": user_id,
                    "type": PaymentType.DEPOSIT.value,
                    "creditAmount": money(charge["creditAmount"]),
                },
            )
        except stripe.StripeError as e:
            raise PaymentErrorClassifier.classify_deposit_error(e)

        status = payment_status_from_intent(intent.status)
        with atomic_transaction(session):
            payment = Payment(
                user_id=user_id,
                stripe_payment_intent_id=intent.id,
                amount=charge["totalCharge"],
                platform_fee=charge["fee"],
                net_amount=charge["creditAmount"],
                status=status.value,
                type=PaymentType.DEPOSIT.value,
                description=f"Wallet deposit of ${money(charge['creditAmount'])}",
            )
            session.add(payment)

        credited = False
        if status == PaymentStatus.SUCCEEDED:
            credited = self._settle_deposit(session, payment.id)

        logger.info(
            f"💳 DEPOSIT_{status.value.upper()}: user={user_id} credit=${charge['creditAmount']} "
            f"fee=${charge['fee']} intent={intent.id}"
        )
        return {
            "success": status == PaymentStatus.SUCCEEDED,
            "status": status.value,
            "credited": credited,
            "paymentIntentId": intent.id,
            "clientSecret": getattr(intent, "client_secret", None) if status == PaymentStatus.REQUIRES_ACTION else None,
            "amount": money(charge["creditAmount"]),
            "fee": money(charge["fee"]),
            "totalCharged": money(charge["totalCharge"]),
        }

    def confirm_deposit(self, session: Session, user_id: str, payment_intent_id: str,
                        stripe_service: StripeService) -> Dict[str, Any]:
        """Settle a deposit whose intent finished after extra authentication"""
        payment = session.execute(
            select(Payment).where(Payment.stripe_payment_intent_id == payment_intent_id)
        ).scalar_one_or_none()
        if not payment or payment.type != PaymentType.DEPOSIT.value:
            raise NotFoundError("Deposit not found")
        if payment.user_id != user_id:
            raise PermissionDeniedError("Payment does not belong to you")

        intent = stripe_service.retrieve_payment_intent(payment_intent_id)
        status = payment_status_from_intent(intent.status)

        credited = False
        if status == PaymentStatus.SUCCEEDED:
            credited = self._settle_deposit(session, payment.id)
        else:
            with atomic_transaction(session):
                payment.status = status.value

        return {
            "success": status == PaymentStatus.SUCCEEDED,
            "status": status.value,
            "credited": credited,
            "amount": money(payment.net_amount),
        }

    def _settle_deposit(self, session: Session, payment_id: int) -> bool:
        """Credit a succeeded deposit exactly once; returns False if it was already credited"""
        now = get_naive_utc_now()
        with atomic_transaction(session):
            claim = session.execute(
                update(Payment)
                .where(Payment.id == payment_id, Payment.credited_at.is_(None))
                .values(credited_at=now, status=PaymentStatus.SUCCEEDED.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if claim.rowcount != 1:
                return False

            payment = session.get(Payment, payment_id, populate_existing=True)
            wallet_service.credit(session, payment.user_id, payment.net_amount)
            deposit = ledger.record_transaction(
                session,
                user_id=payment.user_id,
                transaction_type=TransactionType.DEPOSIT,
                amount=payment.net_amount,
                description=f"Deposit via card (${money(payment.platform_fee)} processing fee)",
                reference=payment.stripe_payment_intent_id,
            )
            ledger.record_revenue(
                session,
                amount=payment.platform_fee,
                source=RevenueSource.DEPOSIT,
                description=f"Deposit fee on ${money(payment.net_amount)}",
                transaction_id=deposit.id,
                payment_id=payment.id,
            )
            ledger.record_activity(
                session,
                user_id=payment.user_id,
                activity_type=ActivityType.DEPOSIT,
                description=f"Deposited ${money(payment.net_amount)}",
                metadata={"paymentId": payment.id, "amount": money(payment.net_amount),
                          "fee": money(payment.platform_fee)},
            )
        return True

    def dev_deposit(self, session: Session, user_id: str, amount: Decimal) -> Dict[str, Any]:
        """Free funds for development environments"""
        if not Config.TEST_DEPOSIT_ENABLED:
            raise PermissionDeniedError("Test deposits are disabled")

        with atomic_transaction(session):
            user = wallet_service.credit(session, user_id, amount)
            ledger.record_transaction(
                session,
                user_id=user_id,
                transaction_type=TransactionType.DEPOSIT,
                amount=amount,
                description="Test deposit",
            )
            ledger.record_activity(
                session,
                user_id=user_id,
                activity_type=ActivityType.DEPOSIT,
                description=f"Test deposit of ${money(amount)}",
                metadata={"amount": money(amount), "test": True},
            )
        logger.info(f"🧪 TEST_DEPOSIT: user={user_id} +${amount}")
        return {"success": True, "amount": money(amount), "newBalance": money(user.balance)}

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------

    def withdraw(self, session: Session, user_id: str, amount: Decimal, method: str,
                 stripe_service: StripeService) -> Dict[str, Any]:
        amount = MonetaryDecimal.quantize_usd(amount)
        if amount < Config.MIN_WITHDRAWAL_AMOUNT:
            raise ValidationError(
                f"Minimum withdrawal amount is ${MonetaryDecimal.format_usd(Config.MIN_WITHDRAWAL_AMOUNT)}"
            )
        if not stripe_service.is_configured:
            raise PaymentNotConfiguredError("Payment processing is not configured")

        payout_method = WithdrawalMethod(method)
        user = session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        destination = user.stripe_customer_id
        if not destination:
            raise ValidationError("Please add a payment method first")

        instant_fee = Decimal("0.00")
        if payout_method == WithdrawalMethod.DEBIT_CARD:
            instant_fee = FeeCalculator.calculate_instant_transfer_fee(amount)
        payout_amount = amount - instant_fee

        description = f"Withdrawal via {payout_method.display_name}"
        if instant_fee > 0:
            description += f" (${money(instant_fee)} instant transfer fee)"

        # Reserve the funds before talking to the provider
        with atomic_transaction(session):
            wallet_service.debit(
                session, user_id, amount,
                insufficient_message=f"Insufficient balance. Need ${money(amount)} to withdraw",
            )
            withdrawal = ledger.record_transaction(
                session,
                user_id=user_id,
                transaction_type=TransactionType.WITHDRAWAL,
                amount=amount,
                description=description,
                status=TransactionStatus.PENDING,
                fee=instant_fee,
            )
            ledger.record_activity(
                session,
                user_id=user_id,
                activity_type=ActivityType.WITHDRAWAL,
                description=f"Withdrew ${money(amount)} via {payout_method.display_name}",
                metadata={"transactionId": withdrawal.id, "amount": money(amount),
                          "fee": money(instant_fee), "method": payout_method.value},
            )

        try:
            transfer = self._create_transfer(stripe_service, withdrawal, payout_amount, destination)
        except stripe.StripeError as e:
            technical, error_code = PaymentErrorClassifier.is_technical_error(e)
            if not technical:
                self.mark_withdrawal_failed(session, withdrawal.id, reason=str(e))
                raise PaymentErrorClassifier.classify_withdrawal_error(e)

            # The transfer may exist on the provider side; reconciliation
            # re-issues it under the same idempotency key
            logger.warning(
                f"⏳ WITHDRAWAL_OUTCOME_UNKNOWN: user={user_id} transaction=#{withdrawal.id} "
                f"code={error_code}: {e}"
            )
            return self._withdrawal_response(
                session, withdrawal, amount, instant_fee, payout_amount, payout_method,
                message="Your withdrawal is processing. We will confirm it shortly.",
            )

        with atomic_transaction(session):
            withdrawal.reference = transfer.id

        logger.info(
            f"🏦 WITHDRAWAL_INITIATED: user={user_id} amount=${amount} payout=${payout_amount} "
            f"method={payout_method.value} transfer={transfer.id}"
        )
        return self._withdrawal_response(session, withdrawal, amount, instant_fee, payout_amount, payout_method)

    @staticmethod
    def _withdrawal_response(session: Session, withdrawal: Transaction, amount: Decimal, instant_fee: Decimal,
                             payout_amount: Decimal, payout_method: WithdrawalMethod,
                             message: Optional[str] = None) -> Dict[str, Any]:
        response = {
            "success": True,
            "transactionId": withdrawal.id,
            "status": withdrawal.status,
            "amount": money(amount),
            "fee": money(instant_fee),
            "payoutAmount": money(payout_amount),
            "method": payout_method.value,
            "newBalance": money(session.get(User, withdrawal.user_id).balance),
        }
        if message:
            response["message"] = message
        return response

    @staticmethod
    def _create_transfer(stripe_service: StripeService, withdrawal: Transaction,
                         payout_amount: Decimal, destination: str):
        # Same key on every attempt so a retried transfer is never duplicated
        return stripe_service.create_transfer(
            payout_amount,
            destination=destination,
            description=withdrawal.description,
            metadata={"userId": withdrawal.user_id, "transactionId": str(withdrawal.id)},
            idempotency_key=f"withdrawal-{withdrawal.id}",
        )

    def mark_withdrawal_completed(self, session: Session, transaction_id: int) -> bool:
        with atomic_transaction(session):
            result = session.execute(
                update(Transaction)
                .where(
                    Transaction.id == transaction_id,
                    Transaction.type == TransactionType.WITHDRAWAL.value,
                    Transaction.status == TransactionStatus.PENDING.value,
                )
                .values(status=TransactionStatus.COMPLETED.value, updated_at=get_naive_utc_now())
                .execution_options(synchronize_session=False)
            )
        completed = result.rowcount == 1
        if completed:
            logger.info(f"✅ WITHDRAWAL_COMPLETED: transaction #{transaction_id}")
        return completed

    def mark_withdrawal_failed(self, session: Session, transaction_id: int, reason: str) -> bool:
        """Reverse a pending withdrawal's debit exactly once"""
        with atomic_transaction(session):
            claim = session.execute(
                update(Transaction)
                .where(
                    Transaction.id == transaction_id,
                    Transaction.type == TransactionType.WITHDRAWAL.value,
                    Transaction.status == TransactionStatus.PENDING.value,
                )
                .values(status=TransactionStatus.FAILED.value, updated_at=get_naive_utc_now())
                .execution_options(synchronize_session=False)
            )
            if claim.rowcount != 1:
                return False

            withdrawal = session.get(Transaction, transaction_id, populate_existing=True)
            wallet_service.credit(session, withdrawal.user_id, withdrawal.amount)
            ledger.record_transaction(
                session,
                user_id=withdrawal.user_id,
                transaction_type=TransactionType.REFUND,
                amount=withdrawal.amount,
                description=f"Withdrawal reversed: {withdrawal.description}",
                reference=withdrawal.reference,
            )
            ledger.record_activity(
                session,
                user_id=withdrawal.user_id,
                activity_type=ActivityType.WITHDRAWAL_FAILED,
                description=f"Withdrawal of ${money(withdrawal.amount)} failed and was returned to your balance",
                metadata={"transactionId": withdrawal.id, "reason": reason[:500]},
            )

        logger.warning(f"↩️ WITHDRAWAL_REVERSED: transaction #{transaction_id} user={withdrawal.user_id}: {reason}")
        return True

    def reconcile_pending_withdrawals(self, session: Session, stripe_service: StripeService,
                                      older_than_minutes: int = 10,
                                      now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Settle withdrawals left pending.

        Rows with a transfer id are completed, or reversed when the provider
        reversed the transfer. Rows without one (process died before the
        transfer call returned) re-issue the transfer under the same
        idempotency key.
        """
        results = {"completed": 0, "reversed": 0, "errors": 0}
        if not stripe_service.is_configured:
            return results

        cutoff = (now or get_naive_utc_now()) - timedelta(minutes=older_than_minutes)
        pending = session.execute(
            select(Transaction)
            .where(
                Transaction.type == TransactionType.WITHDRAWAL.value,
                Transaction.status == TransactionStatus.PENDING.value,
                Transaction.created_at < cutoff,
            )
            .order_by(Transaction.created_at.asc())
            .limit(100)
        ).scalars().all()

        for withdrawal in pending:
            try:
                if withdrawal.reference:
                    transfer = stripe_service.retrieve_transfer(withdrawal.reference)
                    if transfer.reversed:
                        if self.mark_withdrawal_failed(session, withdrawal.id, "Transfer reversed by provider"):
                            results["reversed"] += 1
                    elif self.mark_withdrawal_completed(session, withdrawal.id):
                        results["completed"] += 1
                    continue

                user = session.get(User, withdrawal.user_id)
                if not user.stripe_customer_id:
                    if self.mark_withdrawal_failed(session, withdrawal.id, "No payout destination"):
                        results["reversed"] += 1
                    continue
                transfer = self._create_transfer(
                    stripe_service, withdrawal, withdrawal.amount - withdrawal.fee, user.stripe_customer_id
                )
                with atomic_transaction(session):
                    withdrawal.reference = transfer.id
            except stripe.InvalidRequestError as e:
                if self.mark_withdrawal_failed(session, withdrawal.id, str(e)):
                    results["reversed"] += 1
            except Exception as e:
                results["errors"] += 1
                logger.error(f"❌ WITHDRAWAL_RECONCILE_ERROR: transaction #{withdrawal.id}: {e}")

        if any(results.values()):
            logger.info(f"🔄 WITHDRAWAL_RECONCILE: {results}")
        return results


payment_service = PaymentService()
