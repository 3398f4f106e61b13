"""
Bounty Routes
Listing, posting, applications and completion
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from middleware.rate_limiter import rate_limit
from models import User
from schemas import BountyApply, BountyCreate
from services.bounty_service import bounty_service
from utils.auth import get_current_user
from utils.serializers import bounty_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bounties", tags=["bounties"], dependencies=[Depends(rate_limit("api"))])


@router.get("")
def list_bounties(
    category: Optional[str] = Query(None, max_length=100),
    search: Optional[str] = Query(None, max_length=200),
    db: Session = Depends(get_db),
):
    """Active bounties, newest first (public)"""
    return bounty_service.list_active_bounties(db, category=category, search=search)


@router.post("", status_code=201)
def create_bounty(
    data: BountyCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return bounty_service.post_bounty(db, user.id, data)


@router.get("/{bounty_id}")
def get_bounty(bounty_id: int, db: Session = Depends(get_db)):
    return bounty_dict(bounty_service.get_bounty(db, bounty_id))


@router.post("/{bounty_id}/apply", status_code=201)
def apply_to_bounty(
    bounty_id: int,
    data: Optional[BountyApply] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return bounty_service.apply(db, bounty_id, user.id, message=data.message if data else None)


@router.get("/{bounty_id}/applications")
def list_applications(
    bounty_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return bounty_service.list_applications(db, bounty_id, user.id)


@router.post("/{bounty_id}/applications/{application_id}/accept")
def accept_application(
    bounty_id: int,
    application_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return bounty_service.accept_application(db, bounty_id, application_id, user.id)


@router.post("/{bounty_id}/complete")
def complete_bounty(
    bounty_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return bounty_service.complete_bounty(db, bounty_id, user.id)
