"""
Messaging Routes
Threads, messages and read receipts; new messages are pushed to the
participants' open WebSockets
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from database import get_db
from middleware.rate_limiter import rate_limit
from models import User
from schemas import MessageCreate
from services.connection_manager import connection_manager
from services.messaging_service import messaging_service
from utils.auth import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["messages"], dependencies=[Depends(rate_limit("api"))])


@router.get("/threads")
def list_threads(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return messaging_service.list_threads(db, user.id)


@router.get("/threads/{thread_id}")
def list_messages(thread_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return messaging_service.list_messages(db, thread_id, user.id)


@router.post("", status_code=201)
async def send_message(data: MessageCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    message, recipient_id = await run_in_threadpool(
        messaging_service.send_message,
        db,
        user.id,
        data.content,
        data.thread_id,
        data.recipient_id,
    )
    await connection_manager.send_to_users([recipient_id, user.id], {"type": "message", "message": message})
    return message


@router.post("/{message_id}/read")
def mark_read(message_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return messaging_service.mark_read(db, message_id, user.id)
