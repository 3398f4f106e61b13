"""
Payment Routes
Saved cards, deposits, withdrawals and development test deposits.
All money-moving endpoints carry the stricter payments rate limit.
"""

import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from database import get_db
from middleware.rate_limiter import rate_limit
from models import User
from schemas import (
    ConfirmPaymentRequest, DepositRequest, DevDepositRequest, SavePaymentMethod,
    SetDefaultPaymentMethod, WithdrawRequest,
)
from services.payment_service import payment_service
from services.stripe_service import StripeService, get_stripe_service
from utils.auth import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"], dependencies=[Depends(rate_limit("api"))])
dev_router = APIRouter(prefix="/api/test", tags=["payments"], dependencies=[Depends(rate_limit("payments"))])

payment_limit = [Depends(rate_limit("payments"))]


@router.get("/methods")
def list_payment_methods(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return payment_service.list_methods(db, user.id)


@router.post("/setup-intent")
def create_setup_intent(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    return payment_service.create_setup_intent(db, user.id, stripe_service)


@router.post("/save-method", status_code=201)
def save_payment_method(
    data: SavePaymentMethod,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    return payment_service.save_method(db, user.id, data.payment_method_id, stripe_service)


@router.post("/set-default")
def set_default_payment_method(
    data: SetDefaultPaymentMethod,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return payment_service.set_default_method(db, user.id, data.payment_method_id)


@router.delete("/methods/{method_id}", status_code=204)
def delete_payment_method(
    method_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    payment_service.delete_method(db, user.id, method_id, stripe_service)
    return Response(status_code=204)


@router.post("/deposit", dependencies=payment_limit)
def deposit(
    data: DepositRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    return payment_service.deposit(db, user.id, data.amount, data.payment_method_id, stripe_service)


@router.post("/confirm-deposit", dependencies=payment_limit)
def confirm_deposit(
    data: ConfirmPaymentRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    return payment_service.confirm_deposit(db, user.id, data.payment_intent_id, stripe_service)


@router.get("/history")
def payment_history(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return payment_service.payment_history(db, user.id)


@router.post("/withdraw", dependencies=payment_limit)
def withdraw(
    data: WithdrawRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    return payment_service.withdraw(db, user.id, data.amount, data.method, stripe_service)


@dev_router.post("/deposit")
def dev_deposit(data: DevDepositRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Free funds for development; refused when TEST_DEPOSIT_ENABLED is off"""
    return payment_service.dev_deposit(db, user.id, data.amount)
