"""
Points Routes
Point packages, purchases and referral codes
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from middleware.rate_limiter import rate_limit
from models import User
from schemas import ConfirmPaymentRequest, PointsPurchaseRequest, ReferralSignupRequest
from services.points_service import points_service
from services.stripe_service import StripeService, get_stripe_service
from utils.auth import get_current_user

router = APIRouter(prefix="/api", tags=["points"], dependencies=[Depends(rate_limit("api"))])

payment_limit = [Depends(rate_limit("payments"))]


@router.get("/points/packages")
def list_packages():
    return points_service.list_packages()


@router.post("/points/purchase", dependencies=payment_limit)
def purchase_points(
    data: PointsPurchaseRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    return points_service.create_purchase(db, user.id, data.package_id, stripe_service)


@router.post("/points/confirm-purchase", dependencies=payment_limit)
def confirm_points_purchase(
    data: ConfirmPaymentRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    return points_service.confirm_purchase(db, user.id, data.payment_intent_id, stripe_service)


@router.get("/referral/code")
def referral_code(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    code = points_service.get_or_create_referral_code(db, user.id)
    return {"referralCode": code, "shareUrl": points_service.referral_share_url(code)}


@router.get("/referral/stats")
def referral_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return points_service.referral_stats(db, user.id)


@router.post("/referral/signup")
def referral_signup(
    data: ReferralSignupRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return points_service.apply_referral(db, user.id, data.referral_code)
