"""
Unit tests for the Replay Coordinator.
Tests ordered replay, failure handling, drain idempotence and tag dedup.
"""
import asyncio
import json
import pytest

from src.outbox.replay import ReplayCoordinator, ReplayStats


@pytest.fixture
def coordinator(queue, fetcher):
    """Coordinator with a low stuck-record threshold."""
    return ReplayCoordinator(queue, fetcher, sync_tag="background-sync", stuck_record_threshold=2)


class TestReplayStats:
    """Test ReplayStats functionality."""

    def test_initial_state(self):
        stats = ReplayStats()

        assert stats.drains_started == 0
        assert stats.records_replayed == 0
        assert stats.to_dict()['stuck_records'] == {}

    def test_consecutive_failures_reset_on_success(self):
        """A delivered record stops counting as stuck."""
        stats = ReplayStats()

        assert stats.record_failure(3) == 1
        assert stats.record_failure(3) == 2
        stats.record_success(3)

        assert 3 not in stats.consecutive_failures
        assert stats.records_failed == 2
        assert stats.records_replayed == 1


class TestReplayCoordinator:
    """Test ReplayCoordinator functionality."""

    @pytest.mark.asyncio
    async def test_replays_in_id_order(self, coordinator, queue, fetcher):
        """Records are replayed oldest first."""
        for n in range(3):
            fetcher.route(f"/api/items/{n}", 200, method="PUT")
            await queue.append({"url": f"/api/items/{n}", "method": "PUT"})

        report = await coordinator.drain()

        assert [r.url for r in fetcher.requests] == ["/api/items/0", "/api/items/1", "/api/items/2"]
        assert report.attempted == 3
        assert len(report.replayed_ids) == 3
        assert await queue.count() == 0

    @pytest.mark.asyncio
    async def test_failed_record_kept_and_drain_continues(self, coordinator, queue, fetcher):
        """One failure does not abort the rest of the drain."""
        fetcher.route("/api/a", 200, method="POST")
        fetcher.route("/api/c", 200, method="POST")
        fetcher.fail("/api/b")
        ids = [await queue.append({"url": f"/api/{name}"}) for name in "abc"]

        report = await coordinator.drain()

        assert report.failed_ids == [ids[1]]
        assert report.replayed_ids == [ids[0], ids[2]]
        assert [r.id for r in await queue.list_all()] == [ids[1]]

    @pytest.mark.asyncio
    async def test_server_error_is_failure(self, coordinator, queue, fetcher):
        """5xx answers leave the record queued."""
        fetcher.route("/api/orders", 503, method="POST")
        record_id = await queue.append({"url": "/api/orders"})

        report = await coordinator.drain()

        assert report.failed_ids == [record_id]
        assert await queue.count() == 1

    @pytest.mark.asyncio
    async def test_client_error_counts_as_delivered(self, coordinator, queue, fetcher):
        """A 4xx answer means the server received the mutation."""
        fetcher.route("/api/orders", 409, method="POST")
        await queue.append({"url": "/api/orders"})

        report = await coordinator.drain()

        assert len(report.replayed_ids) == 1
        assert await queue.count() == 0

    @pytest.mark.asyncio
    async def test_drain_is_idempotent_when_empty(self, coordinator, queue, fetcher):
        """Draining twice with nothing queued makes no requests."""
        await coordinator.drain()
        report = await coordinator.drain()

        assert report.attempted == 0
        assert fetcher.call_count == 0

    @pytest.mark.asyncio
    async def test_second_drain_does_not_resend(self, coordinator, queue, fetcher):
        """Delivered records are not replayed again."""
        fetcher.route("/api/orders", 201, method="POST")
        await queue.append({"url": "/api/orders"})

        await coordinator.drain()
        await coordinator.drain()

        assert fetcher.calls_to("/api/orders", method="POST") == 1

    @pytest.mark.asyncio
    async def test_scenario_success_then_failure(self, coordinator, queue, fetcher):
        """A delivered record leaves the queue; a failed identical one keeps its id."""
        fetcher.route("/api/orders", 201, method="POST")
        await queue.append({"url": "/api/orders", "method": "POST", "body": {"qty": 5}})

        await coordinator.drain()

        assert await queue.count() == 0
        [sent] = fetcher.requests
        assert sent.method == "POST"
        assert json.loads(sent.body) == {"qty": 5}

        fetcher.offline = True
        record_id = await queue.append({"url": "/api/orders", "method": "POST", "body": {"qty": 5}})

        await coordinator.drain()

        records = await queue.list_all()
        assert [r.id for r in records] == [record_id]

    @pytest.mark.asyncio
    async def test_stuck_record_tracked(self, coordinator, queue, fetcher):
        """Consecutive failures are counted per record."""
        fetcher.offline = True
        record_id = await queue.append({"url": "/api/orders"})

        await coordinator.drain()
        await coordinator.drain()

        assert coordinator.stats.consecutive_failures[record_id] == 2
        assert coordinator.pending_failures() == [record_id]

    @pytest.mark.asyncio
    async def test_foreign_tag_ignored(self, coordinator, queue, fetcher):
        """Only the configured tag drains."""
        await queue.append({"url": "/api/orders"})

        assert await coordinator.handle_sync("other-tag") is None
        assert fetcher.call_count == 0

    @pytest.mark.asyncio
    async def test_concurrent_signals_collapse(self, coordinator, queue, fetcher):
        """Repeated signals while a drain runs share that drain."""
        fetcher.route("/api/orders", 201, method="POST")
        await queue.append({"url": "/api/orders"})
        fetcher.gate = asyncio.Event()

        first = asyncio.create_task(coordinator.handle_sync("background-sync"))
        await asyncio.sleep(0.05)
        assert coordinator.drain_in_progress is True

        second = asyncio.create_task(coordinator.handle_sync("background-sync"))
        await asyncio.sleep(0)
        fetcher.gate.set()
        reports = await asyncio.gather(first, second)

        assert reports[0] is reports[1]
        assert fetcher.call_count == 1
        assert coordinator.stats.drains_started == 1
        assert coordinator.stats.drains_collapsed == 1
        assert coordinator.drain_in_progress is False

    @pytest.mark.asyncio
    async def test_new_signal_after_completion_drains_again(self, coordinator, queue, fetcher):
        """Finished drains do not swallow later signals."""
        fetcher.route("/api/orders", 201, method="POST")

        await coordinator.handle_sync("background-sync")
        await queue.append({"url": "/api/orders"})
        report = await coordinator.handle_sync("background-sync")

        assert report.attempted == 1
        assert coordinator.stats.drains_started == 2

    @pytest.mark.asyncio
    async def test_removed_record_stops_counting(self, coordinator, queue, fetcher):
        """Records removed outside a drain drop their failure counter."""
        fetcher.offline = True
        record_id = await queue.append({"url": "/api/orders"})
        await coordinator.drain()

        await queue.remove(record_id)
        await coordinator.drain()

        assert coordinator.pending_failures() == []
        assert record_id not in coordinator.stats.consecutive_failures
