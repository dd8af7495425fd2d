# ================================================================
# RELAY Chat - Application Entry
# ================================================================
# Wires store, presence, transport and router into one FastAPI app.
# Run:  python main.py        or   uvicorn main:app
# ================================================================

import logging
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.messaging.chat_engine import MessagingRouter
from app.messaging.chat_routes import register_chat_routes
from app.messaging.config import get_config
from app.messaging.models import ChatStore, create_document_store
from app.messaging.presence import PresenceRegistry
from app.messaging.scheduler_jobs import init_cleanup_scheduler, shutdown_cleanup_scheduler
from app.messaging.session import SessionOrchestrator
from app.messaging.websocket import ConnectionManager

# ================================================================
# PATHS
# ================================================================

BASE_DIR = Path(__file__).resolve().parent

logger = logging.getLogger("relay")


def _db_path() -> Path:
    path = Path(get_config("db_path"))
    return path if path.is_absolute() else BASE_DIR / path


def create_app() -> FastAPI:
    """Build the app from current configuration."""
    logging.basicConfig(
        level=str(get_config("log_level")).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    relay_app = FastAPI(title="RELAY Chat")

    origins = [o.strip() for o in str(get_config("cors_origins")).split(",") if o.strip()]
    relay_app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    store = ChatStore(
        create_document_store(get_config("storage_backend"), _db_path()),
        max_history=int(get_config("max_history")),
    )
    presence = PresenceRegistry()
    manager = ConnectionManager()
    session = SessionOrchestrator(store, presence, manager)
    router = MessagingRouter(store, presence, manager, session=session)

    relay_app.state.store = store
    relay_app.state.router = router
    relay_app.state.manager = manager

    register_chat_routes(relay_app, store, router, manager)

    @relay_app.on_event("startup")
    async def _startup():
        store.init_schema()
        init_cleanup_scheduler(store)
        logger.info(f"[SYSTEM] RELAY Chat started ({store.backend.name} backend)")

    @relay_app.on_event("shutdown")
    async def _shutdown():
        shutdown_cleanup_scheduler()
        logger.info("[SYSTEM] RELAY Chat stopped")

    return relay_app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=get_config("host"), port=int(get_config("port")))
