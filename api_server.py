"""
Pocket Bounty API server

FastAPI application: routers, exception handlers, request timing and the
background scheduler lifecycle.

    uvicorn api_server:app --port 5000
"""

import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.concurrency import run_in_threadpool

import database
from config import Config
from jobs.consolidated_scheduler import get_consolidated_scheduler_instance
from routes import (
    bounty_routes, creator_routes, messaging_routes, payment_routes, points_routes,
    social_routes, user_routes, websocket_routes,
)
from services.connection_manager import connection_manager
from utils.exception_handler import register_exception_handlers
from utils.logging_setup import setup_logging

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 1000


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info(f"🔧 API worker {os.getpid()} starting...")
    Config.log_environment_config()
    Config.validate_fee_configuration()
    Config.validate_production_config()
    database.create_tables()

    scheduler = None
    if Config.SCHEDULER_ENABLED:
        scheduler = get_consolidated_scheduler_instance()
        scheduler.start()
    else:
        logger.info("🚫 SCHEDULER_DISABLED: expiry sweep and withdrawal reconciliation will not run")

    yield

    if scheduler:
        scheduler.stop()
    logger.info(f"🔄 API worker {os.getpid()} shutting down...")


app = FastAPI(
    title="Pocket Bounty API",
    description="Micro-task marketplace with escrowed rewards",
    version="1.0.0",
    default_response_class=ORJSONResponse,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_request_timing(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000
    message = f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms:.1f}ms)"
    if duration_ms > SLOW_REQUEST_MS:
        logger.warning(f"🐢 SLOW_REQUEST: {message}")
    else:
        logger.debug(message)
    return response


register_exception_handlers(app)

for module in (bounty_routes, user_routes, messaging_routes, social_routes, payment_routes,
               points_routes, creator_routes, websocket_routes):
    app.include_router(module.router)
app.include_router(payment_routes.dev_router)


@app.get("/health")
async def health_check():
    """Liveness plus a database round trip"""
    database_ok = await run_in_threadpool(database.test_connection)
    content = {
        "status": "healthy" if database_ok else "degraded",
        "database": database_ok,
        "websocketConnections": connection_manager.connection_count(),
    }
    return ORJSONResponse(content=content, status_code=200 if database_ok else 503)
