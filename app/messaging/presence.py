# ============================================================================
# RELAY Chat - Presence Registry
# ============================================================================
# Live connection_id <-> username table. Derived state: it lives for the
# process and starts empty on restart.
# ============================================================================

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """
    Who is online and how to reach them.

    A connection carries at most one username and a username is reachable
    through at most one connection. A second login for the same username
    takes over; the older connection is left open but no longer maps to it.
    """

    def __init__(self):
        self._by_connection: Dict[str, str] = {}
        self._by_username: Dict[str, str] = {}
        self._last_seen: Dict[str, str] = {}

    def set_online(self, connection_id: str, username: str):
        previous_user = self._by_connection.get(connection_id)
        if previous_user is not None and previous_user != username:
            if self._by_username.get(previous_user) == connection_id:
                del self._by_username[previous_user]

        # Re-insert so login order reflects the latest login
        previous_connection = self._by_username.pop(username, None)
        if previous_connection is not None and previous_connection != connection_id:
            self._by_connection.pop(previous_connection, None)
            logger.info(f"[PRESENCE] {username} moved from {previous_connection} to {connection_id}")

        self._by_connection[connection_id] = username
        self._by_username[username] = connection_id

    def remove(self, connection_id: str) -> Optional[str]:
        """Forget a connection. Returns the username it carried, if any."""
        username = self._by_connection.pop(connection_id, None)
        if username is None:
            return None
        if self._by_username.get(username) == connection_id:
            del self._by_username[username]
            self._last_seen[username] = datetime.now(timezone.utc).isoformat()
        return username

    def rename(self, old_username: str, new_username: str):
        connection_id = self._by_username.pop(old_username, None)
        if connection_id is None:
            return
        self._by_username[new_username] = connection_id
        self._by_connection[connection_id] = new_username

    def connection_for(self, username: str) -> Optional[str]:
        return self._by_username.get(username)

    def username_for(self, connection_id: str) -> Optional[str]:
        return self._by_connection.get(connection_id)

    def is_online(self, username: str) -> bool:
        return username in self._by_username

    def online_usernames(self) -> Set[str]:
        return set(self._by_username)

    def online_in_login_order(self) -> List[str]:
        return list(self._by_username)

    def last_seen(self, username: str) -> Optional[str]:
        return self._last_seen.get(username)

    def __len__(self) -> int:
        return len(self._by_username)
