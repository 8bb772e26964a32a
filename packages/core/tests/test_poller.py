"""Tests for the background poll driver."""

import threading
from unittest.mock import MagicMock

from prpal_core.models import ReviewableItem
from prpal_core.orchestrator import Orchestrator
from prpal_core.poller import Poller
from prpal_core.service import ReviewEngine


def _item(number, reviewers=(), author="alice"):
    return ReviewableItem(
        id=f"acme/api#{number}",
        number=number,
        title=f"PR {number}",
        repo_owner="acme",
        repo_name="api",
        author=author,
        requested_reviewers=tuple(reviewers),
    )


class FakeSource:
    def __init__(self, *snapshots):
        self.snapshots = list(snapshots)
        self.calls = 0

    def fetch_open_items(self):
        self.calls += 1
        snapshot = self.snapshots.pop(0) if len(self.snapshots) > 1 else self.snapshots[0]
        if isinstance(snapshot, Exception):
            raise snapshot
        return snapshot

    def fetch_files(self, item):
        return []


def _engine(source):
    return ReviewEngine(source, orchestrator=Orchestrator(executor=MagicMock(), detector=lambda p: "opencode"))


class TestPollNow:
    def test_syncs_filtered_items(self):
        source = FakeSource([_item(1, reviewers=["me"]), _item(2), _item(3, author="me")])
        engine = _engine(source)
        poller = Poller(source, engine, "me")

        visible = poller.poll_now()

        assert [i.number for i in visible] == [1, 2]
        assert engine.items.count() == 2
        assert [s.item_id for s in engine.items.needing_attention()] == ["acme/api#1"]
        assert poller.poll_count == 1
        assert poller.last_poll_time is not None

    def test_requested_only(self):
        source = FakeSource([_item(1, reviewers=["me"]), _item(2)])
        poller = Poller(source, _engine(source), "me", show_all=False)
        assert [i.number for i in poller.poll_now()] == [1]

    def test_callback_receives_only_new_items(self):
        source = FakeSource([_item(1)], [_item(1), _item(2)])
        callback = MagicMock()
        poller = Poller(source, _engine(source), "me", callback=callback)

        poller.poll_now()
        poller.poll_now()

        first_added, _ = callback.call_args_list[0].args
        second_added, second_all = callback.call_args_list[1].args
        assert [i.number for i in first_added] == [1]
        assert [i.number for i in second_added] == [2]
        assert [i.number for i in second_all] == [1, 2]

    def test_closed_items_removed(self):
        source = FakeSource([_item(1), _item(2)], [_item(2)])
        engine = _engine(source)
        poller = Poller(source, engine, "me")
        poller.poll_now()
        poller.poll_now()
        assert "acme/api#1" not in engine.items

    def test_fetch_failure_is_logged_not_raised(self, caplog):
        source = FakeSource(ConnectionError("GitHub down"))
        engine = _engine(source)
        poller = Poller(source, engine, "me")

        with caplog.at_level("WARNING"):
            assert poller.poll_now() == []
        assert "Poll failed" in caplog.text
        assert poller.poll_count == 0

    def test_failing_callback_does_not_break_poll(self):
        source = FakeSource([_item(1)])
        poller = Poller(source, _engine(source), "me", callback=MagicMock(side_effect=RuntimeError("ui gone")))
        assert len(poller.poll_now()) == 1


class TestBackgroundPolling:
    def test_start_polls_immediately_and_stops(self):
        source = FakeSource([_item(1)])
        polled = threading.Event()
        poller = Poller(source, _engine(source), "me")

        poller.start(60, callback=lambda added, visible: polled.set())
        assert polled.wait(5)
        assert poller.is_running is True

        poller.stop(timeout=5)
        assert poller.is_running is False
        assert source.calls == 1

    def test_start_twice_is_ignored(self, caplog):
        source = FakeSource([_item(1)])
        poller = Poller(source, _engine(source), "me")
        poller.start(60)
        try:
            with caplog.at_level("WARNING"):
                poller.start(60)
            assert "already running" in caplog.text
        finally:
            poller.stop(timeout=5)

    def test_stop_without_start(self):
        source = FakeSource([])
        Poller(source, _engine(source), "me").stop()
