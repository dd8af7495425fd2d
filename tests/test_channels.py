"""
RELAY Chat - Channel identity tests
Storage key symmetry, per-viewer inversion, group access, username rules.
"""

import itertools

import pytest

from app.messaging.channels import (
    GENERAL,
    ChannelKind,
    direct_participants,
    direct_storage_key,
    is_group_id,
    new_group_id,
    resolve_channel,
    to_storage_key,
    to_viewer_channel_id,
    validate_username,
)
from app.messaging.errors import AccessDenied, NotFound

USERNAMES = ["alice", "bob", "carol", "Zed", "a_b", "user42", "Ünïcode"]
GROUPS = {"group_1": ["alice", "bob", "carol"], "group_2": ["bob"]}


def members_of(group_id):
    return GROUPS.get(group_id)


class TestStorageKey:

    def test_direct_key_is_symmetric(self):
        for a, b in itertools.permutations(USERNAMES, 2):
            assert to_storage_key(a, b) == to_storage_key(b, a)

    def test_direct_keys_are_distinct_per_pair(self):
        keys = {to_storage_key(a, b) for a, b in itertools.combinations(USERNAMES, 2)}
        assert len(keys) == len(list(itertools.combinations(USERNAMES, 2)))

    def test_direct_key_is_sorted_and_joined(self):
        assert direct_storage_key("bob", "alice") == "alice-bob"

    def test_general_target(self):
        assert to_storage_key("alice", GENERAL) == GENERAL
        assert to_storage_key("alice", "") == GENERAL
        assert resolve_channel("alice", GENERAL).kind == ChannelKind.GENERAL

    def test_self_direct_is_denied(self):
        with pytest.raises(AccessDenied):
            to_storage_key("alice", "alice")

    def test_group_member_resolves_to_group_id(self):
        channel = resolve_channel("alice", "group_1", members_of)
        assert channel.is_group
        assert channel.storage_key == "group_1"

    def test_group_non_member_is_denied(self):
        with pytest.raises(AccessDenied):
            to_storage_key("alice", "group_2", members_of)

    def test_unknown_group_is_denied(self):
        with pytest.raises(AccessDenied):
            to_storage_key("alice", "group_999", members_of)

    def test_group_without_lookup_is_denied(self):
        with pytest.raises(AccessDenied):
            to_storage_key("alice", "group_1")

    def test_direct_channel_carries_peer(self):
        channel = resolve_channel("bob", "alice")
        assert channel.is_direct
        assert channel.peer == "alice"
        assert channel.storage_key == "alice-bob"


class TestViewerChannelId:

    def test_direct_inverts_to_other_party(self):
        for a, b in itertools.permutations(USERNAMES, 2):
            key = to_storage_key(a, b)
            assert to_viewer_channel_id(key, a) == b
            assert to_viewer_channel_id(key, b) == a

    def test_general_and_group_are_shared(self):
        assert to_viewer_channel_id(GENERAL, "alice") == GENERAL
        assert to_viewer_channel_id("group_1", "bob") == "group_1"

    def test_non_participant(self):
        with pytest.raises(NotFound):
            to_viewer_channel_id("alice-bob", "carol")

    def test_direct_participants(self):
        assert direct_participants("alice-bob") == ("alice", "bob")
        assert direct_participants(GENERAL) is None
        assert direct_participants("group_1") is None


class TestGroupIds:

    def test_new_group_id(self):
        gid = new_group_id(1700000000000)
        assert gid == "group_1700000000000"
        assert is_group_id(gid)

    def test_plain_usernames_are_not_group_ids(self):
        assert not is_group_id("alice")
        assert not is_group_id("")


class TestValidateUsername:

    @pytest.mark.parametrize("name", ["alice", "a_b", "Zed", "user42", "x" * 32])
    def test_valid(self, name):
        assert validate_username(name) is None

    @pytest.mark.parametrize("name", ["", "   ", " alice", "general", "group_x", "a-b", "x" * 33, None, 123])
    def test_invalid(self, name):
        assert validate_username(name) is not None
