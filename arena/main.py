import os
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from arena.business.services.scheduler import get_scheduler
from arena.config import Config, logger
from arena.data.repositories import init_db, redis_client
from arena.errors import register_exception_handlers
from arena.presentation.routes import engine_router, match_router, queue_router


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        client = request.client.host if request.client else "unknown"
        logger.info(
            f"Request started: {request.method} {request.url.path} - "
            f"ID: {request_id} - Client: {client}"
        )
        start_time = time.time()
        try:
            response = await call_next(request)
            process_time = time.time() - start_time
            logger.info(
                f"Request completed: {request.method} {request.url.path} - "
                f"ID: {request_id} - Status: {response.status_code} - "
                f"Time: {process_time:.4f}s"
            )
            return response
        except Exception as e:
            process_time = time.time() - start_time
            logger.error(
                f"Request failed: {request.method} {request.url.path} - "
                f"ID: {request_id} - Error: {e} - "
                f"Time: {process_time:.4f}s"
            )
            raise


@asynccontextmanager
async def life_span(app: FastAPI):
    logger.info("Server is starting...")
    scheduler = None
    if os.environ.get("TESTING") != "True":
        try:
            await init_db()
            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise
        if Config.SCHEDULER_ENABLED:
            scheduler = get_scheduler()
            scheduler.start()
            logger.info("Arena scheduler started")
    else:
        logger.info("Skipping database initialization and scheduler for tests")
    yield
    if scheduler is not None:
        await scheduler.stop()
    await redis_client.close()
    logger.info("Server has been stopped")


version = "v1"

app = FastAPI(
    title="Arena Engine API",
    description="Matchmaking, match lifecycle and Elo ratings for competitive programming duels",
    version=version,
    lifespan=life_span,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(LoggingMiddleware)

register_exception_handlers(app)

app.include_router(engine_router, prefix=f"/api/{version}", tags=["engine"])
app.include_router(queue_router, prefix=f"/api/{version}", tags=["queue"])
app.include_router(match_router, prefix=f"/api/{version}", tags=["match"])

logger.info(f"Application startup complete - API version: {version}")
