"""
User Routes
Current user, profile, ledger, activity feed and search
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from middleware.rate_limiter import rate_limit
from models import User
from schemas import PointsAward, ProfileUpdate
from services.bounty_service import bounty_service
from services.points_service import points_service
from services.user_service import user_service
from utils.auth import get_current_user
from utils.serializers import private_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["users"], dependencies=[Depends(rate_limit("api"))])


@router.get("/auth/user")
def current_user(user: User = Depends(get_current_user)):
    return private_user(user)


@router.get("/user/bounties")
def my_bounties(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return bounty_service.list_user_bounties(db, user.id)


@router.get("/user/transactions")
def my_transactions(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return user_service.list_transactions(db, user.id)


@router.post("/user/points")
def award_points(data: PointsAward, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Mini-game reward, capped per call"""
    return points_service.award_game_points(db, user.id, data.points, game=data.game)


@router.get("/user/activities")
def my_activities(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return user_service.list_activities(db, user.id)


@router.get("/user/reviews")
def my_reviews(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return user_service.list_reviews(db, user.id)


@router.patch("/user/profile")
def update_profile(data: ProfileUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return private_user(user_service.update_profile(db, user.id, data))


@router.get("/users/search")
def search_users(
    q: str = Query("", max_length=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return user_service.search_users(db, q, exclude_user_id=user.id)
