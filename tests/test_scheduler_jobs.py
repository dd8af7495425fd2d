"""
RELAY Chat - Cleanup scheduler tests
"""

import pytest

from app.messaging import scheduler_jobs
from app.messaging.config import reset_config, set_config
from app.messaging.models import build_message


@pytest.fixture(autouse=True)
def _clean_scheduler():
    yield
    scheduler_jobs.shutdown_cleanup_scheduler()
    reset_config()


def _old_message(store):
    message = build_message(store.find_user("alice"), "old")
    message["timestamp"] = "2020-01-01T00:00:00.000Z"
    return message


class TestCleanupJobs:

    def test_run_message_cleanup(self, store):
        store.append_message("general", _old_message(store))
        store.append_message("general", build_message(store.find_user("bob"), "new"))
        assert scheduler_jobs.run_message_cleanup(store) == 1
        assert [m["content"] for m in store.get_messages("general")] == ["new"]

    def test_cleanup_uses_configured_age(self, store):
        set_config("message_max_age_hours", 24 * 365 * 100)
        store.append_message("general", _old_message(store))
        assert scheduler_jobs.run_message_cleanup(store) == 0

    def test_disabled_scheduler(self, store):
        set_config("cleanup_enabled", False)
        store.append_message("general", _old_message(store))
        assert scheduler_jobs.init_cleanup_scheduler(store) is None
        assert len(store.get_messages("general")) == 1

    def test_scheduler_sweeps_and_registers_job(self, store):
        set_config("cleanup_enabled", True)
        set_config("cleanup_interval_minutes", 5)
        store.append_message("general", _old_message(store))

        scheduler = scheduler_jobs.init_cleanup_scheduler(store)

        assert scheduler.running
        assert store.get_messages("general") == []
        job = scheduler.get_job(scheduler_jobs.CLEANUP_JOB_ID)
        assert job is not None
        assert job.trigger.interval.total_seconds() == 300

    def test_shutdown_is_idempotent(self):
        scheduler_jobs.shutdown_cleanup_scheduler()
        scheduler_jobs.shutdown_cleanup_scheduler()
        assert scheduler_jobs._scheduler is None
