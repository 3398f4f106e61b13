"""
WebSocket connection registry
Maps each user id to their open sockets so events reach only their recipients
"""

import logging
from typing import Any, Dict, Iterable, Optional, Set

import orjson
from fastapi import WebSocket
from sqlalchemy import update
from sqlalchemy.orm import sessionmaker
from starlette.concurrency import run_in_threadpool

from database import managed_session
from models import User
from utils.datetime_helpers import get_naive_utc_now

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Per-user socket registry; all access happens on the event loop"""

    def __init__(self):
        self._connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, user_id: str, websocket: WebSocket,
                      session_factory: Optional[sessionmaker] = None) -> None:
        await websocket.accept()
        sockets = self._connections.setdefault(user_id, set())
        first_connection = not sockets
        sockets.add(websocket)
        logger.info(f"🔌 WS_CONNECTED: {user_id} ({len(sockets)} open)")
        if first_connection:
            await self._set_presence(user_id, True, session_factory)

    async def disconnect(self, user_id: str, websocket: WebSocket,
                         session_factory: Optional[sessionmaker] = None) -> None:
        sockets = self._connections.get(user_id)
        if not sockets or websocket not in sockets:
            return
        sockets.discard(websocket)
        logger.info(f"🔌 WS_DISCONNECTED: {user_id} ({len(sockets)} open)")
        if not sockets:
            del self._connections[user_id]
            await self._set_presence(user_id, False, session_factory)

    def is_online(self, user_id: str) -> bool:
        return bool(self._connections.get(user_id))

    def connection_count(self) -> int:
        return sum(len(sockets) for sockets in self._connections.values())

    async def send_to_user(self, user_id: str, payload: Dict[str, Any]) -> int:
        """Deliver a JSON event to every socket of one user; returns sockets reached"""
        sockets = list(self._connections.get(user_id, ()))
        if not sockets:
            return 0

        text = orjson.dumps(payload).decode()
        delivered = 0
        for websocket in sockets:
            try:
                await websocket.send_text(text)
                delivered += 1
            except Exception as e:
                logger.debug(f"WebSocket send to {user_id} failed: {e}")
                self._connections.get(user_id, set()).discard(websocket)

        if user_id in self._connections and not self._connections[user_id]:
            del self._connections[user_id]
        return delivered

    async def send_to_users(self, user_ids: Iterable[str], payload: Dict[str, Any]) -> int:
        delivered = 0
        for user_id in set(user_ids):
            delivered += await self.send_to_user(user_id, payload)
        return delivered

    def clear(self) -> None:
        self._connections.clear()

    @staticmethod
    async def _set_presence(user_id: str, online: bool, session_factory: Optional[sessionmaker]) -> None:
        def write():
            with managed_session(session_factory) as session:
                session.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(is_online=online, last_seen=get_naive_utc_now())
                    .execution_options(synchronize_session=False)
                )

        try:
            await run_in_threadpool(write)
        except Exception as e:
            # Presence is advisory; the socket stays usable
            logger.warning(f"⚠️ PRESENCE_UPDATE_FAILED: {user_id} online={online}: {e}")


connection_manager = ConnectionManager()
