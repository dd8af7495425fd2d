"""
RELAY Chat - Presence registry tests
"""

from app.messaging.presence import PresenceRegistry


class TestPresence:

    def test_set_online(self):
        presence = PresenceRegistry()
        presence.set_online("c1", "alice")
        assert presence.connection_for("alice") == "c1"
        assert presence.username_for("c1") == "alice"
        assert presence.is_online("alice")
        assert len(presence) == 1

    def test_second_login_supersedes_first(self):
        presence = PresenceRegistry()
        presence.set_online("c1", "alice")
        presence.set_online("c2", "alice")
        assert presence.connection_for("alice") == "c2"
        assert presence.username_for("c1") is None
        assert presence.online_usernames() == {"alice"}

    def test_superseded_disconnect_keeps_user_online(self):
        presence = PresenceRegistry()
        presence.set_online("c1", "alice")
        presence.set_online("c2", "alice")
        assert presence.remove("c1") is None
        assert presence.connection_for("alice") == "c2"

    def test_remove_is_idempotent(self):
        presence = PresenceRegistry()
        presence.set_online("c1", "alice")
        assert presence.remove("c1") == "alice"
        assert presence.remove("c1") is None
        assert not presence.is_online("alice")
        assert presence.last_seen("alice") is not None

    def test_connection_switching_user(self):
        presence = PresenceRegistry()
        presence.set_online("c1", "alice")
        presence.set_online("c1", "bob")
        assert presence.connection_for("alice") is None
        assert presence.connection_for("bob") == "c1"

    def test_login_order(self):
        presence = PresenceRegistry()
        for i, name in enumerate(["carol", "alice", "bob"]):
            presence.set_online(f"c{i}", name)
        assert presence.online_in_login_order() == ["carol", "alice", "bob"]

    def test_relogin_moves_to_end_of_login_order(self):
        presence = PresenceRegistry()
        presence.set_online("c1", "alice")
        presence.set_online("c2", "bob")
        presence.set_online("c3", "alice")
        assert presence.online_in_login_order() == ["bob", "alice"]
        assert presence.connection_for("alice") == "c3"

    def test_rename(self):
        presence = PresenceRegistry()
        presence.set_online("c1", "alice")
        presence.rename("alice", "alicia")
        assert presence.connection_for("alicia") == "c1"
        assert presence.username_for("c1") == "alicia"
        assert not presence.is_online("alice")

    def test_rename_offline_user_is_noop(self):
        presence = PresenceRegistry()
        presence.rename("alice", "alicia")
        assert len(presence) == 0
