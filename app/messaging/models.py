# ============================================================================
# RELAY Chat - Persistent Store
# ============================================================================
# The whole chat state is one document:
#   {"users": [...], "messages": {storage_key: [...]}, "groups": [...]}
# Backends only know how to load and save that document. ChatStore runs
# every mutation as load -> mutate -> save under one lock, so a failed
# operation never leaves a half-written document behind.
# ============================================================================

import copy
import json
import logging
import os
import sqlite3
import threading
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .channels import (
    GENERAL,
    direct_participants,
    direct_storage_key,
    new_group_id,
    validate_username,
)
from .errors import (
    AlreadyFriends,
    AlreadyRequested,
    Conflict,
    EmailTaken,
    InvalidPayload,
    NotFound,
    RequestNotFound,
    UsernameTaken,
)

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
MAX_HISTORY = 1000
UPDATABLE_USER_FIELDS = ("username", "password", "avatar", "email")
MESSAGE_TYPES = ("text", "image", "gif")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _ts() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_ts_ms(value: Any) -> Optional[int]:
    """ISO-8601 timestamp -> epoch milliseconds (naive values are UTC)."""
    if not isinstance(value, str) or not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def empty_document() -> Dict[str, Any]:
    return {"users": [], "messages": {GENERAL: []}, "groups": []}


def public_user(user: Optional[Dict]) -> Optional[Dict]:
    """Copy of a user record without credential material."""
    if user is None:
        return None
    return {k: copy.deepcopy(v) for k, v in user.items() if k != "password"}


def build_message(
    sender: Dict,
    content: str,
    msg_type: str = "text",
    reply_to: Optional[str] = None,
) -> Dict:
    """New message with a snapshot of the sender taken at send time."""
    if msg_type not in MESSAGE_TYPES:
        raise InvalidPayload(f"Unsupported message type '{msg_type}'")
    return {
        "id": f"{_now_ms()}-{uuid.uuid4().hex[:8]}",
        "content": content,
        "sender": {
            "id": sender.get("id"),
            "username": sender.get("username"),
            "avatar": sender.get("avatar", ""),
        },
        "timestamp": _ts(),
        "type": msg_type,
        "replyTo": reply_to,
        "reactions": {},
        "readBy": [sender.get("username")],
    }


# ============================================================================
# DOCUMENT BACKENDS
# ============================================================================

class DocumentStore(ABC):
    """Load/save contract for the chat document."""

    name: str = "base"

    @abstractmethod
    def load(self) -> Optional[Dict[str, Any]]:
        """Return the persisted document, or None if nothing was saved yet."""

    @abstractmethod
    def save(self, document: Dict[str, Any]) -> None:
        """Persist the whole document before returning."""


class SqliteDocumentStore(DocumentStore):
    """One row per top-level document key, written in a single transaction."""

    name = "sqlite"

    def __init__(self, db_path):
        self.db_path = str(db_path)
        self._table_ready = False

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_table(self, conn: sqlite3.Connection):
        if self._table_ready:
            return
        conn.execute("""
            CREATE TABLE IF NOT EXISTS chat_documents (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.commit()
        self._table_ready = True

    def load(self) -> Optional[Dict[str, Any]]:
        conn = self._conn()
        try:
            self._ensure_table(conn)
            rows = conn.execute("SELECT key, value FROM chat_documents").fetchall()
        finally:
            conn.close()
        if not rows:
            return None
        return {row["key"]: json.loads(row["value"]) for row in rows}

    def save(self, document: Dict[str, Any]) -> None:
        now = _ts()
        conn = self._conn()
        try:
            self._ensure_table(conn)
            with conn:
                for key, value in document.items():
                    conn.execute("""
                        INSERT INTO chat_documents (key, value, updated_at)
                        VALUES (?, ?, ?)
                        ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                                       updated_at = excluded.updated_at
                    """, (key, json.dumps(value, ensure_ascii=False), now))
        finally:
            conn.close()


class JsonFileDocumentStore(DocumentStore):
    """Pretty-printed JSON file, replaced atomically on every save."""

    name = "json"

    def __init__(self, path):
        self.path = Path(path)

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError:
            logger.error(f"[STORE] Document file {self.path} is corrupt")
            raise

    def save(self, document: Dict[str, Any]) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self.path)


class MemoryDocumentStore(DocumentStore):
    """Process-local document, mostly for tests."""

    name = "memory"

    def __init__(self, document: Optional[Dict[str, Any]] = None):
        self._document = copy.deepcopy(document)

    def load(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self._document)

    def save(self, document: Dict[str, Any]) -> None:
        self._document = copy.deepcopy(document)


def create_document_store(backend: str, db_path) -> DocumentStore:
    if backend == "sqlite":
        return SqliteDocumentStore(db_path)
    if backend == "json":
        return JsonFileDocumentStore(db_path)
    if backend == "memory":
        return MemoryDocumentStore()
    raise ValueError(f"Unknown storage backend '{backend}'")


# ============================================================================
# CHAT STORE
# ============================================================================

def _find_user(users: List[Dict], username: str) -> Optional[Dict]:
    return next((u for u in users if u.get("username") == username), None)


def _find_group(groups: List[Dict], group_id: str) -> Optional[Dict]:
    return next((g for g in groups if g.get("id") == group_id), None)


def _find_message(messages: List[Dict], message_id: str) -> Optional[Dict]:
    return next((m for m in messages if m.get("id") == message_id), None)


def _replace(values: Iterable[str], old: str, new: str) -> List[str]:
    result = []
    for value in values:
        value = new if value == old else value
        if value not in result:
            result.append(value)
    return result


class ChatStore:
    """
    Users, friend graph, per-channel message lists and groups.

    Usage:
        store = ChatStore(SqliteDocumentStore("relay.db"))
        store.init_schema()
        store.append_message("alice-bob", build_message(alice, "hi"))
    """

    def __init__(self, backend: DocumentStore, max_history: int = MAX_HISTORY):
        self._backend = backend
        self.max_history = max_history
        # Single writer: the cleanup job runs on a scheduler thread.
        self._lock = threading.RLock()

    @property
    def backend(self) -> DocumentStore:
        return self._backend

    # ---- Document plumbing ----

    def _normalize(self, doc: Optional[Dict[str, Any]]) -> Tuple[Dict[str, Any], bool]:
        changed = False
        if doc is None:
            return empty_document(), True
        if not isinstance(doc.get("users"), list):
            doc["users"] = []
            changed = True
        if not isinstance(doc.get("messages"), dict):
            doc["messages"] = {}
            changed = True
        if GENERAL not in doc["messages"]:
            doc["messages"][GENERAL] = []
            changed = True
        if not isinstance(doc.get("groups"), list):
            doc["groups"] = []
            changed = True
        for user in doc["users"]:
            for field in ("friends", "friendRequests"):
                if not isinstance(user.get(field), list):
                    user[field] = []
                    changed = True
        return doc, changed

    def _read(self) -> Dict[str, Any]:
        with self._lock:
            doc, _ = self._normalize(self._backend.load())
            return doc

    @contextmanager
    def _transaction(self):
        """Load, hand the document to the caller, save if the block succeeds."""
        with self._lock:
            doc = self._read()
            yield doc
            self._backend.save(doc)

    def init_schema(self):
        """Create the document on first run and migrate older documents."""
        with self._lock:
            doc, changed = self._normalize(self._backend.load())
            if changed:
                self._backend.save(doc)
                logger.info(f"[STORE] Document initialized ({self._backend.name} backend)")

    # ---- Users ----

    def find_user(self, username: str) -> Optional[Dict]:
        return _find_user(self._read()["users"], username)

    def find_user_by_email(self, email: str) -> Optional[Dict]:
        if not email:
            return None
        return next((u for u in self._read()["users"] if u.get("email") == email), None)

    def get_all_users(self) -> List[Dict]:
        return self._read()["users"]

    def add_user(self, data: Dict) -> Dict:
        """Register a user. Raises UsernameTaken / EmailTaken."""
        username = data.get("username")
        reason = validate_username(username)
        if reason:
            raise InvalidPayload(reason)
        email = data.get("email") or ""

        with self._transaction() as doc:
            users = doc["users"]
            if _find_user(users, username):
                raise UsernameTaken(f"Username '{username}' is already taken")
            if email and any(u.get("email") == email for u in users):
                raise EmailTaken(f"Email '{email}' is already registered")

            user_id = _now_ms()
            existing_ids = {u.get("id") for u in users}
            while str(user_id) in existing_ids:
                user_id += 1

            user = {
                "id": str(user_id),
                "username": username,
                "email": email,
                "password": data.get("password"),
                "avatar": data.get("avatar") or "",
                "friends": [],
                "friendRequests": [],
                "createdAt": _ts(),
            }
            users.append(user)

        logger.info(f"[STORE] User {username} registered")
        return dict(user)

    def update_user(self, username: str, updates: Dict) -> Dict:
        """
        Apply profile updates. A username change is cascaded to friend sets,
        pending requests, group memberships, reactions, read receipts and
        direct-channel storage keys.
        """
        changes = {
            k: v for k, v in (updates or {}).items()
            if k in UPDATABLE_USER_FIELDS and v is not None
        }
        wrong_type = sorted(k for k, v in changes.items() if not isinstance(v, str))
        if wrong_type:
            raise InvalidPayload(f"Profile fields must be strings: {', '.join(wrong_type)}")
        if changes.get("password") == "":
            raise InvalidPayload("Password cannot be empty")

        with self._transaction() as doc:
            users = doc["users"]
            user = _find_user(users, username)
            if user is None:
                raise NotFound(f"User {username} not found")

            new_username = changes.get("username")
            renamed = new_username is not None and new_username != username
            if renamed:
                reason = validate_username(new_username)
                if reason:
                    raise InvalidPayload(reason)
                if _find_user(users, new_username):
                    raise UsernameTaken(f"Username '{new_username}' is already taken")

            email = changes.get("email")
            if email and any(u is not user and u.get("email") == email for u in users):
                raise EmailTaken(f"Email '{email}' is already registered")

            user.update(changes)
            if renamed:
                self._cascade_rename(doc, username, new_username)

        if renamed:
            logger.info(f"[STORE] User {username} renamed to {new_username}")
        return dict(user)

    def _cascade_rename(self, doc: Dict, old: str, new: str):
        for user in doc["users"]:
            user["friends"] = _replace(user.get("friends", []), old, new)
            for request in user.get("friendRequests", []):
                if request.get("from") == old:
                    request["from"] = new

        for group in doc["groups"]:
            group["members"] = _replace(group.get("members", []), old, new)
            if group.get("createdBy") == old:
                group["createdBy"] = new

        messages = doc["messages"]
        # Sender snapshots keep the name used at send time
        for channel in messages.values():
            for message in channel:
                message["readBy"] = _replace(message.get("readBy", []), old, new)
                reactions = message.get("reactions") or {}
                for emoji, users in reactions.items():
                    reactions[emoji] = _replace(users, old, new)

        for key in list(messages):
            participants = direct_participants(key)
            if not participants or old not in participants:
                continue
            other = participants[1] if participants[0] == old else participants[0]
            moved = messages.pop(key)
            new_key = direct_storage_key(new, other)
            merged = messages.get(new_key, []) + moved
            merged.sort(key=lambda m: m.get("timestamp") or "")
            messages[new_key] = merged[-self.max_history:]

    # ---- Friends ----

    def send_friend_request(self, from_username: str, to_username: str) -> Dict:
        """Record a pending request on the recipient's user record."""
        if from_username == to_username:
            raise Conflict("You cannot send a friend request to yourself")

        with self._transaction() as doc:
            from_user = _find_user(doc["users"], from_username)
            to_user = _find_user(doc["users"], to_username)
            if from_user is None or to_user is None:
                raise NotFound("User not found")
            if from_username in to_user["friends"]:
                raise AlreadyFriends(f"{to_username} is already your friend")
            if any(r.get("from") == from_username for r in to_user["friendRequests"]):
                raise AlreadyRequested(f"Friend request to {to_username} was already sent")

            request = {"from": from_username, "timestamp": _ts()}
            to_user["friendRequests"].append(request)

        logger.info(f"[STORE] Friend request {from_username} -> {to_username}")
        return dict(request)

    def resolve_friend_request(self, username: str, from_username: str, action: str):
        """Accept or reject the pending request `from_username -> username`."""
        if action not in ("accept", "reject"):
            raise InvalidPayload(f"Unknown friend request action '{action}'")

        with self._transaction() as doc:
            user = _find_user(doc["users"], username)
            if user is None:
                raise NotFound(f"User {username} not found")

            requests = user["friendRequests"]
            index = next((i for i, r in enumerate(requests) if r.get("from") == from_username), None)
            if index is None:
                raise RequestNotFound(f"No friend request from {from_username}")

            if action == "accept":
                friend = _find_user(doc["users"], from_username)
                if friend is None:
                    raise NotFound(f"User {from_username} not found")
                if from_username not in user["friends"]:
                    user["friends"].append(from_username)
                if username not in friend["friends"]:
                    friend["friends"].append(username)
                # A crossed request in the other direction is settled too
                friend["friendRequests"] = [
                    r for r in friend["friendRequests"] if r.get("from") != username
                ]

            del requests[index]

        logger.info(f"[STORE] Friend request {from_username} -> {username}: {action}")

    # ---- Messages ----

    def append_message(self, storage_key: str, message: Dict) -> Dict:
        """Append and keep only the newest `max_history` messages of the channel."""
        with self._transaction() as doc:
            channel = doc["messages"].setdefault(storage_key, [])
            channel.append(message)
            if len(channel) > self.max_history:
                doc["messages"][storage_key] = channel[-self.max_history:]
        return message

    def get_messages(self, storage_key: str) -> List[Dict]:
        return self._read()["messages"].get(storage_key, [])

    def find_message(self, storage_key: str, message_id: str) -> Optional[Dict]:
        return _find_message(self.get_messages(storage_key), message_id)

    def toggle_reaction(self, storage_key: str, message_id: str, emoji: str, username: str) -> Dict:
        """Add the reaction, or remove it if this user already reacted with this emoji."""
        with self._transaction() as doc:
            message = _find_message(doc["messages"].get(storage_key, []), message_id)
            if message is None:
                raise NotFound(f"Message {message_id} not found in {storage_key}")

            reactions = message.setdefault("reactions", {})
            users = reactions.get(emoji, [])
            if username in users:
                users = [u for u in users if u != username]
            else:
                users = users + [username]
            if users:
                reactions[emoji] = users
            else:
                reactions.pop(emoji, None)

        return copy.deepcopy(message)

    def mark_read(self, storage_key: str, message_id: str, username: str) -> Optional[Dict]:
        """Add `username` to readBy. Returns the message, or None if it was already read."""
        with self._lock:
            doc = self._read()
            message = _find_message(doc["messages"].get(storage_key, []), message_id)
            if message is None:
                raise NotFound(f"Message {message_id} not found in {storage_key}")
            read_by = message.setdefault("readBy", [])
            if username in read_by:
                return None
            read_by.append(username)
            self._backend.save(doc)
            return copy.deepcopy(message)

    def expire_old_messages(self, max_age_ms: int = DAY_MS, now_ms: Optional[int] = None) -> int:
        """Drop every message older than `max_age_ms`. Returns how many were removed."""
        now_ms = _now_ms() if now_ms is None else now_ms
        removed = 0
        with self._lock:
            doc = self._read()
            for key, channel in doc["messages"].items():
                kept = []
                for message in channel:
                    sent_ms = _parse_ts_ms(message.get("timestamp"))
                    if sent_ms is not None and now_ms - sent_ms >= max_age_ms:
                        continue
                    kept.append(message)
                removed += len(channel) - len(kept)
                doc["messages"][key] = kept
            if removed:
                self._backend.save(doc)
        return removed

    # ---- Groups ----

    def create_group(self, name: str, creator: str, member_usernames: Iterable[str]) -> Dict:
        """Create a group whose members are the creator plus the given users."""
        if not isinstance(name, str) or not name.strip():
            raise InvalidPayload("Group name is required")

        members = [creator]
        for member in member_usernames or []:
            if member not in members:
                members.append(member)

        with self._transaction() as doc:
            for member in members:
                if _find_user(doc["users"], member) is None:
                    raise NotFound(f"User {member} not found")

            now_ms = _now_ms()
            while _find_group(doc["groups"], new_group_id(now_ms)):
                now_ms += 1

            group = {
                "id": new_group_id(now_ms),
                "name": name.strip(),
                "members": members,
                "createdBy": creator,
                "createdAt": _ts(),
                "avatar": "",
            }
            doc["groups"].append(group)
            doc["messages"].setdefault(group["id"], [])

        logger.info(f"[STORE] Group {group['id']} ({group['name']}) created by {creator}")
        return copy.deepcopy(group)

    def get_group(self, group_id: str) -> Optional[Dict]:
        return _find_group(self._read()["groups"], group_id)

    def get_groups_for_user(self, username: str) -> List[Dict]:
        return [g for g in self._read()["groups"] if username in g.get("members", [])]

    def group_members(self, group_id: str) -> Optional[List[str]]:
        """Member usernames of a group, or None if the group does not exist."""
        group = self.get_group(group_id)
        return None if group is None else list(group.get("members", []))
