# ============================================================================
# RELAY Chat - Session / Login Orchestrator
# ============================================================================
# Runs once per login: registers presence, pushes the initial snapshot to the
# new connection and tells everyone the online list changed.
# ============================================================================

import logging
from typing import Dict, List

from .channels import GENERAL
from .errors import NotFound
from .events import GROUPS_LIST, MESSAGES_HISTORY, USER_DATA, USERS_LIST, USERS_ONLINE
from .models import ChatStore, public_user
from .presence import PresenceRegistry
from .websocket import Transport

logger = logging.getLogger(__name__)


class SessionOrchestrator:

    def __init__(self, store: ChatStore, presence: PresenceRegistry, transport: Transport):
        self._store = store
        self._presence = presence
        self._transport = transport

    def user_directory(self) -> List[Dict]:
        """Every registered user, annotated with live status."""
        online = self._presence.online_usernames()
        directory = []
        for user in self._store.get_all_users():
            entry = public_user(user)
            username = user.get("username")
            entry["status"] = "online" if username in online else "offline"
            entry["lastSeen"] = self._presence.last_seen(username) or user.get("createdAt")
            directory.append(entry)
        return directory

    def online_users(self) -> List[Dict]:
        """Profiles of everyone currently connected, in login order."""
        users = {u.get("username"): u for u in self._store.get_all_users()}
        online = []
        for username in self._presence.online_in_login_order():
            user = users.get(username)
            if user is None:
                continue
            entry = public_user(user)
            entry["connectionId"] = self._presence.connection_for(username)
            entry["status"] = "online"
            online.append(entry)
        return online

    async def broadcast_online(self) -> int:
        return await self._transport.broadcast(USERS_ONLINE, self.online_users())

    async def login(self, connection_id: str, username: str) -> Dict:
        """
        Register `username` on `connection_id` and push the initial state.

        Order of pushes:
            1. users:list       -> new connection
            2. users:online     -> every connection (after registration)
            3. messages:history -> new connection (general channel)
            4. user:data        -> new connection (own profile, pending requests)
            5. groups:list      -> new connection
        """
        user = self._store.find_user(username)
        if user is None:
            raise NotFound(f"User {username} not found")

        self._presence.set_online(connection_id, username)
        logger.info(f"[SESSION] {username} logged in on {connection_id}")

        send = self._transport.send
        await send(connection_id, USERS_LIST, self.user_directory())
        await self.broadcast_online()
        await send(connection_id, MESSAGES_HISTORY, {
            "chatId": GENERAL,
            "messages": self._store.get_messages(GENERAL),
        })
        await send(connection_id, USER_DATA, public_user(user))
        await send(connection_id, GROUPS_LIST, self._store.get_groups_for_user(username))
        return user
