# ============================================================================
# RELAY Chat Core
# ============================================================================
# Realtime chat over one WebSocket endpoint:
# - General broadcast channel, direct channels, member-only groups
# - Friend requests, reactions, read receipts, typing indicators
# - Presence tracking and per-login state snapshot
# - Document store with sqlite / JSON file / in-memory backends
# ============================================================================

from .chat_engine import MessagingRouter
from .chat_routes import register_chat_routes
from .models import ChatStore, create_document_store
from .presence import PresenceRegistry
from .scheduler_jobs import init_cleanup_scheduler, shutdown_cleanup_scheduler
from .session import SessionOrchestrator
from .websocket import ConnectionManager, Transport

__all__ = [
    "ChatStore",
    "create_document_store",
    "PresenceRegistry",
    "Transport",
    "ConnectionManager",
    "SessionOrchestrator",
    "MessagingRouter",
    "register_chat_routes",
    "init_cleanup_scheduler",
    "shutdown_cleanup_scheduler",
]
