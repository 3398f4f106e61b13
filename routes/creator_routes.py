"""
Creator Routes
Platform dashboard for configured creators and admins
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from middleware.rate_limiter import rate_limit
from models import User
from services.creator_stats_service import creator_stats_service
from utils.auth import get_current_user

router = APIRouter(prefix="/api/creator", tags=["creator"], dependencies=[Depends(rate_limit("api"))])


@router.get("/stats")
def creator_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return creator_stats_service.get_stats(db, user)
