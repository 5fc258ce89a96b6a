"""Tests for the reconciliation scheduler."""

import asyncio

from conftest import LOCAL_ADDRESS, make_node
from membership.reconcile import ReconciliationScheduler
from protocol.codec import decode
from protocol.models import MessageKind


class TestTick:

    def test_nothing_missing_sends_nothing(self, directory, broadcast):
        directory.on_peer_reachable(make_node(LOCAL_ADDRESS))
        scheduler = ReconciliationScheduler(directory, broadcast)

        assert scheduler.tick() is None
        assert broadcast.sent == []

    def test_empty_directory_sends_nothing(self, directory, broadcast):
        scheduler = ReconciliationScheduler(directory, broadcast)

        assert scheduler.tick() is None
        assert broadcast.sent == []

    def test_requests_missing_name(self, directory, broadcast):
        directory.on_peer_reachable(make_node("10.0.0.1:7000"))
        scheduler = ReconciliationScheduler(directory, broadcast)

        assert scheduler.tick() == "10.0.0.1:7000"

        assert len(broadcast.sent) == 1
        envelope = decode(broadcast.sent[0])
        assert envelope.kind == MessageKind.IDENTITY_REQUEST
        assert envelope.body == "10.0.0.1:7000"

    def test_one_request_per_tick(self, directory, broadcast):
        for address in ("10.0.0.1:7000", "10.0.0.2:7000", "10.0.0.3:7000"):
            directory.on_peer_reachable(make_node(address))
        scheduler = ReconciliationScheduler(directory, broadcast)

        scheduler.tick()

        assert len(broadcast.sent) == 1

    def test_broadcast_failure_is_logged_not_raised(self, directory, failing_broadcast, caplog):
        directory.on_peer_reachable(make_node("10.0.0.1:7000"))
        scheduler = ReconciliationScheduler(directory, failing_broadcast)

        assert scheduler.tick() is None
        assert "Error requesting missing usernames" in caplog.text

    def test_retries_on_next_tick(self, directory, failing_broadcast):
        directory.on_peer_reachable(make_node("10.0.0.1:7000"))
        scheduler = ReconciliationScheduler(directory, failing_broadcast)
        scheduler.tick()

        failing_broadcast.fail = False
        assert scheduler.tick() == "10.0.0.1:7000"
        assert len(failing_broadcast.sent) == 1


class TestLifecycle:

    def test_runs_periodically_until_stopped(self, directory, broadcast):
        directory.on_peer_reachable(make_node("10.0.0.1:7000"))
        scheduler = ReconciliationScheduler(directory, broadcast, interval=0.01)

        async def exercise():
            scheduler.start()
            await asyncio.sleep(0.1)
            await scheduler.stop()
            sent = len(broadcast.sent)
            await asyncio.sleep(0.05)
            return sent

        sent_at_stop = asyncio.run(exercise())

        assert sent_at_stop >= 2
        assert len(broadcast.sent) == sent_at_stop

    def test_stop_without_start(self, directory, broadcast):
        scheduler = ReconciliationScheduler(directory, broadcast)
        asyncio.run(scheduler.stop())
