"""
Social Routes
Friend requests and bounty reviews
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from middleware.rate_limiter import rate_limit
from models import User
from schemas import FriendRequestCreate, FriendRequestUpdate, ReviewCreate
from services.friendship_service import friendship_service
from services.review_service import review_service
from utils.auth import get_current_user

router = APIRouter(prefix="/api", tags=["social"], dependencies=[Depends(rate_limit("api"))])


@router.get("/friends")
def list_friends(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return friendship_service.list_friends(db, user.id)


@router.get("/friends/requests")
def list_friend_requests(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return friendship_service.list_pending_requests(db, user.id)


@router.post("/friends/request", status_code=201)
def send_friend_request(
    data: FriendRequestCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return friendship_service.send_request(db, user.id, data.addressee_id)


@router.patch("/friends/{friendship_id}")
def respond_to_friend_request(
    friendship_id: int,
    data: FriendRequestUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return friendship_service.respond(db, friendship_id, user.id, data.status)


@router.post("/reviews", status_code=201)
def create_review(data: ReviewCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return review_service.create_review(
        db,
        reviewer_id=user.id,
        bounty_id=data.bounty_id,
        reviewee_id=data.reviewee_id,
        rating=data.rating,
        comment=data.comment,
    )
