# ============================================================================
# RELAY Chat - Messaging Router
# ============================================================================
# Turns one inbound event into store changes plus pushes, across the three
# channel topologies: general (broadcast), direct (two users), group.
# Events are processed one at a time, pushes included, so a channel's
# messages reach every socket in send order.
# ============================================================================

import asyncio
import logging
from functools import partial
from typing import Any, Dict, Iterable, List, Optional

from .channels import GENERAL, Channel, direct_participants, resolve_channel, to_viewer_channel_id
from .errors import AccessDenied, ChatError, NotFound, Unauthenticated
from .events import (
    ALERT_NEW,
    CHAT_HISTORY_FETCH,
    FRIEND_ADDED,
    FRIEND_REQUEST_ACCEPTED,
    FRIEND_REQUEST_RECEIVED,
    FRIEND_REQUEST_RESPOND,
    FRIEND_REQUEST_SEND,
    FRIEND_REQUEST_SENT,
    GROUP_CREATED,
    MESSAGE_NEW,
    MESSAGE_READ,
    MESSAGE_REACT,
    MESSAGE_SEND,
    MESSAGE_UPDATED,
    MESSAGES_HISTORY,
    TYPING_START,
    TYPING_STOP,
    TYPING_USER,
    USER_DATA,
    USER_LOGIN,
    USER_UPDATED,
    parse_inbound,
)
from .models import ChatStore, build_message, public_user
from .presence import PresenceRegistry
from .session import SessionOrchestrator
from .websocket import Transport

logger = logging.getLogger(__name__)


def message_preview(content: str, msg_type: str) -> str:
    if msg_type == "image":
        return "[image]"
    if msg_type == "gif":
        return "[gif]"
    return content


class MessagingRouter:
    """
    Core chat engine handling inbound events and their delivery.

    Usage:
        router = MessagingRouter(store, PresenceRegistry(), ConnectionManager())
        await router.dispatch(connection_id, "message:send", {"content": "hi", "to": "bob"})
        await router.handle_disconnect(connection_id)
    """

    def __init__(
        self,
        store: ChatStore,
        presence: PresenceRegistry,
        transport: Transport,
        session: Optional[SessionOrchestrator] = None,
    ):
        self._store = store
        self._presence = presence
        self._transport = transport
        self._session = session or SessionOrchestrator(store, presence, transport)
        self._lock = asyncio.Lock()
        self._handlers = {
            USER_LOGIN: self._on_login,
            FRIEND_REQUEST_SEND: self._on_friend_request_send,
            FRIEND_REQUEST_RESPOND: self._on_friend_request_respond,
            CHAT_HISTORY_FETCH: self._on_history_fetch,
            MESSAGE_SEND: self._on_message_send,
            MESSAGE_REACT: self._on_message_react,
            MESSAGE_READ: self._on_message_read,
            TYPING_START: partial(self._on_typing, is_typing=True),
            TYPING_STOP: partial(self._on_typing, is_typing=False),
        }

    @property
    def presence(self) -> PresenceRegistry:
        return self._presence

    @property
    def session(self) -> SessionOrchestrator:
        return self._session

    @property
    def store(self) -> ChatStore:
        return self._store

    # ---- Entry points ----

    async def dispatch(self, connection_id: str, event: str, data: Any) -> bool:
        """
        Process one inbound event from `connection_id`.

        Returns False when the event was dropped (bad payload, no login,
        access denied, unknown target). Dropping never raises.
        """
        async with self._lock:
            try:
                payload = parse_inbound(event, data)
                username = self._presence.username_for(connection_id)
                if username is None and event != USER_LOGIN:
                    raise Unauthenticated(f"{event} before login")
                await self._handlers[event](connection_id, username, payload)
                return True
            except ChatError as e:
                logger.warning(f"[CHAT] Dropped {event} from {connection_id}: {e.message}")
                return False

    async def handle_disconnect(self, connection_id: str) -> Optional[str]:
        """Forget the connection and refresh everyone's online list."""
        async with self._lock:
            username = self._presence.remove(connection_id)
            if username is None:
                return None
            logger.info(f"[CHAT] {username} went offline ({connection_id})")
            await self._session.broadcast_online()
            return username

    # ---- Side-channel operations with push side effects ----

    async def create_group(self, name: str, created_by: str, members: Iterable[str]) -> Dict:
        async with self._lock:
            group = self._store.create_group(name, created_by, members)
            for member in group["members"]:
                connection_id = self._presence.connection_for(member)
                if connection_id:
                    await self._transport.send(connection_id, GROUP_CREATED, group)
            return group

    async def update_profile(self, username: str, updates: Dict) -> Dict:
        async with self._lock:
            user = public_user(self._store.update_user(username, updates))
            if user["username"] != username:
                self._presence.rename(username, user["username"])
            await self._transport.broadcast(USER_UPDATED, user)
            return user

    # ---- Helpers ----

    def _members_of(self, group_id: str) -> Optional[List[str]]:
        return self._store.group_members(group_id)

    def _resolve(self, username: str, target: str) -> Channel:
        return resolve_channel(username, target, self._members_of)

    def _participants(self, channel: Channel) -> List[str]:
        """Usernames that belong to a direct or group channel."""
        if channel.is_direct:
            return list(direct_participants(channel.storage_key))
        if channel.is_group:
            return self._members_of(channel.storage_key) or []
        return []

    async def _send_user(self, username: str, event: str, data: Any) -> bool:
        connection_id = self._presence.connection_for(username)
        if connection_id is None:
            return False
        return await self._transport.send(connection_id, event, data)

    async def _push_update(self, channel: Channel, message: Dict):
        """message:updated to every online member, each with their own channel id."""
        if channel.is_general:
            await self._transport.broadcast(MESSAGE_UPDATED, {"chatId": GENERAL, "message": message})
            return
        for member in self._participants(channel):
            await self._send_user(member, MESSAGE_UPDATED, {
                "chatId": to_viewer_channel_id(channel.storage_key, member),
                "message": message,
            })

    # ---- Handlers ----

    async def _on_login(self, connection_id: str, username: Optional[str], payload):
        if username is not None and username != payload.username:
            raise AccessDenied(f"Connection is already logged in as {username}")
        await self._session.login(connection_id, payload.username)

    async def _on_friend_request_send(self, connection_id: str, username: str, payload):
        to_username = payload.toUser
        try:
            self._store.send_friend_request(username, to_username)
        except ChatError as e:
            logger.info(f"[CHAT] Friend request {username} -> {to_username} refused: {e.message}")
            await self._transport.send(connection_id, FRIEND_REQUEST_SENT, {
                "success": False,
                "message": e.message,
            })
            return

        await self._transport.send(connection_id, FRIEND_REQUEST_SENT, {"success": True, "to": to_username})

        if self._presence.is_online(to_username):
            await self._send_user(to_username, FRIEND_REQUEST_RECEIVED, {
                "from": username,
                "message": f"You received a friend request from {username}",
            })
            await self._send_user(to_username, USER_DATA, public_user(self._store.find_user(to_username)))

    async def _on_friend_request_respond(self, connection_id: str, username: str, payload):
        from_username = payload.fromUser
        self._store.resolve_friend_request(username, from_username, payload.action)

        me = public_user(self._store.find_user(username))
        await self._transport.send(connection_id, USER_DATA, me)

        if payload.action != "accept":
            return

        friend = public_user(self._store.find_user(from_username))
        if friend is not None:
            await self._transport.send(connection_id, FRIEND_ADDED, {"friend": friend})

        if self._presence.is_online(from_username):
            await self._send_user(from_username, FRIEND_REQUEST_ACCEPTED, {
                "by": username,
                "message": f"{username} accepted your friend request!",
            })
            await self._send_user(from_username, FRIEND_ADDED, {"friend": me})
            await self._send_user(from_username, USER_DATA, friend)

    async def _on_history_fetch(self, connection_id: str, username: str, payload):
        channel = self._resolve(username, payload.chatId)
        # Echo the id the client used, not the storage key
        await self._transport.send(connection_id, MESSAGES_HISTORY, {
            "chatId": payload.chatId,
            "messages": self._store.get_messages(channel.storage_key),
        })

    async def _on_message_send(self, connection_id: str, username: str, payload):
        target = payload.to or GENERAL
        sender = self._store.find_user(username)
        if sender is None:
            raise NotFound(f"User {username} not found")

        channel = self._resolve(username, target)
        group = None
        if channel.is_direct and self._store.find_user(channel.peer) is None:
            raise NotFound(f"User {channel.peer} not found")
        if channel.is_group:
            group = self._store.get_group(channel.storage_key)

        reply_to = payload.replyTo
        if reply_to and self._store.find_message(channel.storage_key, reply_to) is None:
            logger.info(f"[CHAT] replyTo {reply_to} is not in {channel.storage_key}, cleared")
            reply_to = None

        message = build_message(sender, payload.content, payload.type, reply_to)
        self._store.append_message(channel.storage_key, message)

        if channel.is_general:
            await self._transport.broadcast(MESSAGE_NEW, {"chatId": GENERAL, "message": message})
            return

        await self._transport.send(connection_id, MESSAGE_NEW, {"chatId": target, "message": message})

        preview = message_preview(payload.content, payload.type)
        if channel.is_direct:
            alert = {
                "title": f"New message from {username}",
                "message": preview,
                "type": "message",
                "from": username,
            }
        else:
            alert = {
                "title": f"New message in group {group['name']}",
                "message": f"{username}: {preview}",
                "type": "message",
                "from": channel.storage_key,
            }

        for recipient in self._participants(channel):
            if recipient == username:
                continue
            delivered = await self._send_user(recipient, MESSAGE_NEW, {
                "chatId": to_viewer_channel_id(channel.storage_key, recipient),
                "message": message,
            })
            if delivered:
                await self._send_user(recipient, ALERT_NEW, alert)

    async def _on_message_react(self, connection_id: str, username: str, payload):
        channel = self._resolve(username, payload.chatId)
        message = self._store.toggle_reaction(channel.storage_key, payload.messageId, payload.emoji, username)
        await self._push_update(channel, message)

    async def _on_message_read(self, connection_id: str, username: str, payload):
        channel = self._resolve(username, payload.chatId)
        message = self._store.mark_read(channel.storage_key, payload.messageId, username)
        if message is not None:
            await self._push_update(channel, message)

    async def _on_typing(self, connection_id: str, username: str, payload, is_typing: bool = True):
        channel = self._resolve(username, payload.to)

        if channel.is_general:
            await self._transport.broadcast(TYPING_USER, {
                "username": username,
                "isTyping": is_typing,
                "chatId": GENERAL,
            }, exclude=[connection_id])
            return

        for recipient in self._participants(channel):
            if recipient == username:
                continue
            await self._send_user(recipient, TYPING_USER, {
                "username": username,
                "isTyping": is_typing,
                "chatId": to_viewer_channel_id(channel.storage_key, recipient),
            })
