"""
Stripe Service - thin wrapper around the hosted payments API
Amounts cross this boundary in dollars (Decimal) and are sent in cents
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import stripe

from config import Config
from utils.decimal_precision import MonetaryDecimal
from utils.exception_handler import PaymentNotConfiguredError

logger = logging.getLogger(__name__)


class StripeService:

    def __init__(self, api_key: Optional[str] = None, currency: Optional[str] = None):
        self.api_key = api_key if api_key is not None else Config.STRIPE_SECRET_KEY
        self.currency = currency or Config.STRIPE_CURRENCY

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _require_configured(self):
        if not self.is_configured:
            raise PaymentNotConfiguredError("Payment processing is not configured")
        stripe.api_key = self.api_key

    def create_customer(self, email: Optional[str], name: Optional[str], user_id: str) -> str:
        self._require_configured()
        customer = stripe.Customer.create(email=email, name=name, metadata={"userId": user_id})
        logger.info(f"👤 STRIPE_CUSTOMER_CREATED: {customer.id} for user {user_id}")
        return customer.id

    def create_setup_intent(self, customer_id: str) -> Dict[str, Any]:
        self._require_configured()
        intent = stripe.SetupIntent.create(
            customer=customer_id,
            payment_method_types=["card"],
            usage="off_session",
        )
        return {"id": intent.id, "clientSecret": intent.client_secret}

    def retrieve_payment_method(self, payment_method_id: str):
        self._require_configured()
        return stripe.PaymentMethod.retrieve(payment_method_id)

    def attach_payment_method(self, payment_method_id: str, customer_id: str):
        self._require_configured()
        return stripe.PaymentMethod.attach(payment_method_id, customer=customer_id)

    def detach_payment_method(self, payment_method_id: str) -> None:
        self._require_configured()
        stripe.PaymentMethod.detach(payment_method_id)

    def create_payment_intent(self, amount: Decimal, customer_id: Optional[str] = None,
                              payment_method_id: Optional[str] = None, confirm: bool = False,
                              description: Optional[str] = None,
                              metadata: Optional[Dict[str, str]] = None,
                              idempotency_key: Optional[str] = None):
        self._require_configured()
        params: Dict[str, Any] = {
            "amount": MonetaryDecimal.to_cents(amount),
            "currency": self.currency,
            "description": description,
            "metadata": metadata or {},
        }
        if customer_id:
            params["customer"] = customer_id
        if payment_method_id:
            params["payment_method"] = payment_method_id
        if confirm:
            params["confirm"] = True
            params["off_session"] = True
        else:
            params["automatic_payment_methods"] = {"enabled": True}
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        return stripe.PaymentIntent.create(**params)

    def retrieve_payment_intent(self, payment_intent_id: str):
        self._require_configured()
        return stripe.PaymentIntent.retrieve(payment_intent_id)

    def create_transfer(self, amount: Decimal, destination: str, description: str,
                        metadata: Optional[Dict[str, str]] = None,
                        idempotency_key: Optional[str] = None):
        self._require_configured()
        params: Dict[str, Any] = {
            "amount": MonetaryDecimal.to_cents(amount),
            "currency": self.currency,
            "destination": destination,
            "description": description,
            "metadata": metadata or {},
        }
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        return stripe.Transfer.create(**params)

    def retrieve_transfer(self, transfer_id: str):
        self._require_configured()
        return stripe.Transfer.retrieve(transfer_id)


def get_stripe_service() -> StripeService:
    """FastAPI dependency; tests override it with a mock"""
    return StripeService()
