# ============================================================================
# RELAY Chat - HTTP + WebSocket Routes
# ============================================================================
# REST side-channel (register, login, profile, groups, health) and the
# /ws/chat socket that feeds the messaging router.
# ============================================================================

import json
import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect

from .auth import hash_password, is_hashed, verify_password
from .chat_engine import MessagingRouter
from .errors import ChatError
from .events import GroupCreateRequest, LoginRequest, RegisterRequest, UserUpdateRequest, parse_body
from .models import ChatStore, public_user
from .websocket import ConnectionManager

logger = logging.getLogger(__name__)


def _http_error(e: ChatError) -> HTTPException:
    return HTTPException(e.status_code, e.message)


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise HTTPException(400, "Request body must be JSON")


async def _parse(request: Request, model):
    try:
        return parse_body(model, await _json_body(request))
    except ChatError as e:
        raise _http_error(e)


def register_chat_routes(app: FastAPI, store: ChatStore, router: MessagingRouter, manager: ConnectionManager):
    """Register the /api/* routes and the /ws/chat endpoint."""

    # ================================================================
    # ACCOUNTS
    # ================================================================

    @app.post("/api/register")
    async def register(request: Request):
        body = await _parse(request, RegisterRequest)
        username = body.username.strip()
        if not username:
            raise HTTPException(400, "Username and password are required")

        try:
            user = store.add_user({
                "username": username,
                "password": hash_password(body.password),
                "email": (body.email or "").strip(),
                "avatar": body.avatar or "",
            })
        except ChatError as e:
            raise _http_error(e)

        return {"success": True, "user": public_user(user)}

    @app.post("/api/login")
    async def login(request: Request):
        body = await _parse(request, LoginRequest)
        username = body.username.strip()
        user = store.find_user(username) if username else None
        if user is None or not verify_password(body.password, user.get("password")):
            logger.info(f"[CHAT] Failed login for '{username}'")
            raise HTTPException(401, "Invalid username or password")
        return {"success": True, "user": public_user(user)}

    @app.post("/api/user/update")
    async def update_user(request: Request):
        body = await _parse(request, UserUpdateRequest)
        updates = body.updates.model_dump(exclude_none=True)
        password = updates.get("password")
        if password and not is_hashed(password):
            updates["password"] = hash_password(password)

        try:
            user = await router.update_profile(body.username, updates)
        except ChatError as e:
            raise _http_error(e)
        return {"success": True, "user": user}

    # ================================================================
    # GROUPS
    # ================================================================

    @app.post("/api/groups/create")
    async def create_group(request: Request):
        body = await _parse(request, GroupCreateRequest)
        try:
            group = await router.create_group(body.name, body.createdBy, body.members)
        except ChatError as e:
            raise _http_error(e)
        return {"success": True, "group": group}

    # ================================================================
    # HEALTH
    # ================================================================

    @app.get("/api/health")
    async def health():
        return {"ok": True, "online": len(router.presence), "connections": len(manager)}

    # ================================================================
    # CHAT WEBSOCKET ENDPOINT
    # ================================================================

    @app.websocket("/ws/chat")
    async def chat_websocket(websocket: WebSocket):
        connection_id = await manager.connect(websocket)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    logger.warning(f"[WS] Ignoring binary frame from {connection_id}")
                    continue
                try:
                    frame = json.loads(raw)
                except ValueError:
                    logger.warning(f"[WS] Ignoring non-JSON frame from {connection_id}")
                    continue
                if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
                    logger.warning(f"[WS] Ignoring malformed frame from {connection_id}")
                    continue

                try:
                    await router.dispatch(connection_id, frame["event"], frame.get("data"))
                except Exception as e:
                    logger.error(f"[WS] Handler error for {connection_id}: {e}", exc_info=True)
        except WebSocketDisconnect:
            pass
        finally:
            await manager.disconnect(connection_id)
            await router.handle_disconnect(connection_id)

    logger.info("[CHAT] Chat routes registered")
