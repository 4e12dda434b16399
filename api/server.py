"""
Operations assistant API server.
"""
# ruff: noqa: S104
# S104: Server binding (guarded by __name__ check)

import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.assistant_router import router as assistant_router
from lib import config
from lib import db as db_module
from lib.background_tasks import shutdown_task_manager
from lib.observability import CorrelationIdMiddleware, configure_logging

logger = logging.getLogger(__name__)

# FastAPI app initialization
app = FastAPI(
    title="Operations Assistant API",
    description="Conversational command interpretation for tasks, programmes and teams",
    version="0.1.0",
)

# CORS middleware - configurable via CORS_ORIGINS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials="*" not in config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

app.include_router(assistant_router, prefix="/api")


# ==== DB Startup & Migrations ====
@app.on_event("startup")
async def run_db_migrations_on_startup():
    """Converge the DB schema and log DB info at startup."""
    try:
        db_module.run_startup_migrations()
    except Exception as e:
        logger.warning(f"DB startup check failed: {e}")


@app.on_event("shutdown")
async def stop_background_work():
    shutdown_task_manager()


# ==== Main ====


def main(host: str = "0.0.0.0", port: int | None = None):
    """Run the server."""
    configure_logging(config.LOG_LEVEL, config.LOG_JSON)
    uvicorn.run(app, host=host, port=port or config.PORT)


if __name__ == "__main__":
    main()
