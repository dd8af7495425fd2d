# ============================================================================
# RELAY Chat - Channel Identity Resolver
# ============================================================================
# Two views of one channel:
#   storage key  - where the messages live ("general", "alice-bob", "group_..")
#   viewer id    - what a given client calls it ("general", the other party's
#                  username, or the group id)
# Sender and recipient compute the storage key independently, so it must be
# a pure function of the two usernames.
# ============================================================================

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Collection, Optional

from .errors import AccessDenied, NotFound

GENERAL = "general"
GROUP_PREFIX = "group_"
DIRECT_SEPARATOR = "-"
MAX_USERNAME_LENGTH = 32

MembersLookup = Callable[[str], Optional[Collection[str]]]


class ChannelKind(str, Enum):
    GENERAL = "general"
    DIRECT = "direct"
    GROUP = "group"


@dataclass(frozen=True)
class Channel:
    """A resolved chat target."""
    kind: ChannelKind
    storage_key: str
    peer: Optional[str] = None  # direct channels only

    @property
    def is_general(self) -> bool:
        return self.kind == ChannelKind.GENERAL

    @property
    def is_direct(self) -> bool:
        return self.kind == ChannelKind.DIRECT

    @property
    def is_group(self) -> bool:
        return self.kind == ChannelKind.GROUP


def is_group_id(target: str) -> bool:
    return bool(target) and target.startswith(GROUP_PREFIX)


def new_group_id(now_ms: int) -> str:
    return f"{GROUP_PREFIX}{now_ms}"


def validate_username(username: str) -> Optional[str]:
    """Return a reason the username is unusable, or None if it is fine."""
    if not isinstance(username, str) or not username.strip():
        return "Username is required"
    if username != username.strip():
        return "Username cannot start or end with whitespace"
    if len(username) > MAX_USERNAME_LENGTH:
        return f"Username cannot be longer than {MAX_USERNAME_LENGTH} characters"
    if username == GENERAL:
        return f"'{GENERAL}' is reserved"
    if username.startswith(GROUP_PREFIX):
        return f"Username cannot start with '{GROUP_PREFIX}'"
    if DIRECT_SEPARATOR in username:
        return f"Username cannot contain '{DIRECT_SEPARATOR}'"
    return None


def direct_storage_key(user_a: str, user_b: str) -> str:
    """Storage key for the direct channel between two distinct users."""
    if user_a == user_b:
        raise AccessDenied(f"{user_a} cannot open a direct channel with themselves")
    first, second = sorted([user_a, user_b])
    return f"{first}{DIRECT_SEPARATOR}{second}"


def resolve_channel(viewer: str, target: str, members_of: MembersLookup = None) -> Channel:
    """
    Resolve what `viewer` calls `target` into a Channel.

    Group targets are checked against `members_of(group_id)`; an unknown group
    or a viewer outside the member list raises AccessDenied.
    """
    if not target or target == GENERAL:
        return Channel(ChannelKind.GENERAL, GENERAL)

    if is_group_id(target):
        members = members_of(target) if members_of is not None else None
        if members is None or viewer not in members:
            raise AccessDenied(f"{viewer} is not a member of {target}")
        return Channel(ChannelKind.GROUP, target)

    return Channel(ChannelKind.DIRECT, direct_storage_key(viewer, target), peer=target)


def to_storage_key(viewer: str, target: str, members_of: MembersLookup = None) -> str:
    return resolve_channel(viewer, target, members_of).storage_key


def to_viewer_channel_id(storage_key: str, viewer: str) -> str:
    """The channel id `viewer` uses locally for the channel stored at `storage_key`."""
    if storage_key == GENERAL or is_group_id(storage_key):
        return storage_key

    first, sep, second = storage_key.partition(DIRECT_SEPARATOR)
    if not sep:
        raise NotFound(f"'{storage_key}' is not a direct channel key")
    if viewer == first:
        return second
    if viewer == second:
        return first
    raise NotFound(f"{viewer} is not a participant of {storage_key}")


def direct_participants(storage_key: str):
    """Both usernames of a direct storage key."""
    first, sep, second = storage_key.partition(DIRECT_SEPARATOR)
    if not sep or storage_key == GENERAL or is_group_id(storage_key):
        return None
    return first, second
