"""specmap FastAPI backend: main application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from specmap import config
from specmap.routers.ai import ai_router
from specmap.routers.mapping import mapping_router
from specmap.routers.workspaces import workspaces_router

from specmap.db import connection, sqlite_migrations
from specmap.observability import initialize as initialize_observability, shutdown as shutdown_observability
from specmap.workspace_manager import workspace_manager

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("specmap")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("specmap backend starting up")
    initialize_observability(app)

    # 1. Initialize DB connection
    db = await connection.get_connection()

    # 2. Run migrations
    await sqlite_migrations.run_migrations(db)

    active_workspace = workspace_manager.get_active_workspace()
    if active_workspace:
        logger.info(f"Active workspace: {active_workspace.name} ({active_workspace.path})")
    else:
        logger.info("No workspace registered yet")

    yield

    logger.info("specmap backend shutting down")
    shutdown_observability(app)
    await connection.close_connection()


app = FastAPI(
    title="specmap API",
    description="Backend API for feature-to-code mapping scans",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for the dev frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(workspaces_router)
app.include_router(mapping_router)
app.include_router(ai_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    active = workspace_manager.get_active_workspace()
    return {
        "status": "ok",
        "db": "connected" if connection._connection else "disconnected",
        "workspace": active.id if active else None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("specmap.main:app", host=config.HOST, port=config.PORT)
