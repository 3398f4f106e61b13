"""
WebSocket Route
Authenticated real-time channel. Frames are JSON objects with a "type":

    {"type": "ping"}                                   -> {"type": "pong"}
    {"type": "message", "content": ..., "threadId"|"recipientId": ...}
                                                       -> {"type": "message", "message": {...}}
                                                          to both participants

Anything else gets {"type": "error", "message": ...}.
"""

import logging
from typing import Any, Dict

import orjson
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import sessionmaker
from starlette.concurrency import run_in_threadpool

from database import get_session_factory, managed_session
from schemas import MessageCreate
from services.connection_manager import connection_manager
from services.messaging_service import messaging_service
from services.user_service import user_service
from utils.auth import token_verifier
from utils.exception_handler import AuthenticationError, PocketBountyError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

WS_UNAUTHORIZED = 4401


def _register_user(session_factory: sessionmaker, claims: Dict[str, Any]) -> str:
    with managed_session(session_factory) as session:
        return user_service.upsert_from_claims(session, claims).id


def _store_message(session_factory: sessionmaker, sender_id: str, data: MessageCreate):
    with managed_session(session_factory) as session:
        return messaging_service.send_message(
            session, sender_id, data.content, thread_id=data.thread_id, recipient_id=data.recipient_id
        )


async def _send_error(websocket: WebSocket, message: str) -> None:
    await websocket.send_text(orjson.dumps({"type": "error", "message": message}).decode())


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(""),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    try:
        claims = await run_in_threadpool(token_verifier.decode, token)
    except AuthenticationError as e:
        logger.warning(f"⚠️ WS_REJECTED: {e.message}")
        await websocket.close(code=WS_UNAUTHORIZED)
        return

    user_id = await run_in_threadpool(_register_user, session_factory, claims)
    await connection_manager.connect(user_id, websocket, session_factory)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = orjson.loads(raw)
            except orjson.JSONDecodeError:
                await _send_error(websocket, "Invalid JSON")
                continue
            if not isinstance(frame, dict):
                await _send_error(websocket, "Frames must be JSON objects")
                continue

            frame_type = frame.get("type")
            if frame_type == "ping":
                await websocket.send_text(orjson.dumps({"type": "pong"}).decode())
            elif frame_type == "message":
                try:
                    data = MessageCreate.model_validate(frame)
                    message, recipient_id = await run_in_threadpool(_store_message, session_factory, user_id, data)
                except PydanticValidationError as e:
                    await _send_error(websocket, e.errors()[0].get("msg", "Invalid message"))
                    continue
                except PocketBountyError as e:
                    await _send_error(websocket, e.message)
                    continue
                await connection_manager.send_to_users([recipient_id, user_id], {"type": "message", "message": message})
            else:
                await _send_error(websocket, f"Unsupported frame type: {frame_type}")
    except WebSocketDisconnect:
        pass
    finally:
        await connection_manager.disconnect(user_id, websocket, session_factory)
