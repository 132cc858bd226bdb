"""friendsync API: FastAPI application entry point.

Invariants:
    - Routes registered explicitly (no auto-discovery)
    - Global error handlers map FriendSyncError -> structured JSON responses
    - CORS configured from settings (not hardcoded)
    - Database and change feed initialized on startup via lifespan context manager

Design Decisions:
    - Lifespan over @app.on_event: FastAPI recommended pattern, cleaner cleanup
    - relationship_stream registered before relationship_queries: GET /stream
      must match before GET /{other_id}
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from friendsync.api.error_handlers import register_error_handlers
from friendsync.infrastructure import change_feed, database
from friendsync.infrastructure.observability import setup_logging
from friendsync.config import get_settings
from friendsync.api.routes import (
    health, presence, relationship_queries, relationship_stream, relationships,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    database.init_db(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    change_feed.init_change_feed(settings.sync_queue_maxsize)
    logger.info("friendsync API started")
    yield
    logger.info("friendsync API shutting down")
    change_feed.get_change_feed().close()
    await database.get_db_manager().dispose()


app = FastAPI(
    title="friendsync API", version="1.0.0", lifespan=lifespan,
)

# CORS: configured from settings, not hardcoded
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes: explicit registration
app.include_router(health.router)
app.include_router(relationships.router)
app.include_router(relationship_stream.router)
app.include_router(relationship_queries.router)
app.include_router(presence.router)

register_error_handlers(app)
