"""
Unit tests for the durable mutation queue.
Tests ordering, removal, durability across restarts and store failures.
"""
import json
import pytest

from src.outbox.database import QueueDatabase
from src.outbox.mutation_queue import DurableMutationQueue
from src.shared.exceptions import StorageUnavailable
from src.shared.schemas import QueuedMutationCreate
from src.transport.http_client import Request


class TestDurableMutationQueue:
    """Test DurableMutationQueue functionality."""

    @pytest.mark.asyncio
    async def test_append_assigns_increasing_ids(self, queue):
        """Ids are assigned by the store in append order."""
        first = await queue.append({"url": "/api/orders", "method": "POST", "body": {"qty": 5}})
        second = await queue.append({"url": "/api/orders/1", "method": "put"})

        assert second > first
        records = await queue.list_all()
        assert [r.id for r in records] == [first, second]
        assert records[1].method == "PUT"

    @pytest.mark.asyncio
    async def test_body_encoded_as_json(self, queue):
        """Structured bodies are stored as JSON bytes."""
        await queue.append(QueuedMutationCreate(url="/api/orders", body={"qty": 5}))

        [record] = await queue.list_all()

        assert json.loads(record.body) == {"qty": 5}
        assert record.enqueued_at is not None

    @pytest.mark.asyncio
    async def test_list_all_is_fifo(self, queue):
        """Listing follows insertion order."""
        for n in range(5):
            await queue.append({"url": f"/api/items/{n}", "method": "DELETE"})

        records = await queue.list_all()

        assert [r.url for r in records] == [f"/api/items/{n}" for n in range(5)]

    @pytest.mark.asyncio
    async def test_remove(self, queue):
        """Removing deletes exactly one record."""
        keep = await queue.append({"url": "/api/a"})
        drop = await queue.append({"url": "/api/b"})

        assert await queue.remove(drop) is True
        assert await queue.remove(drop) is False
        assert [r.id for r in await queue.list_all()] == [keep]
        assert await queue.count() == 1

    @pytest.mark.asyncio
    async def test_ids_not_reused_after_removal(self, queue):
        """A removed id is never handed out again."""
        first = await queue.append({"url": "/api/a"})
        await queue.remove(first)

        second = await queue.append({"url": "/api/a"})

        assert second > first

    @pytest.mark.asyncio
    async def test_enqueue_request(self, queue):
        """Host requests are queued as issued."""
        request = Request(url="/api/orders", method="POST",
                          headers={"Content-Type": "application/json"}, body=b'{"qty": 2}')

        record_id = await queue.enqueue_request(request)

        [record] = await queue.list_all()
        assert record.id == record_id
        assert record.headers == {"Content-Type": "application/json"}
        assert record.body == b'{"qty": 2}'

    @pytest.mark.asyncio
    async def test_survives_restart(self, queue_db_url):
        """Records persist across a close and reopen of the store."""
        database = QueueDatabase(queue_db_url)
        await database.initialize()
        queue = DurableMutationQueue(database)
        ids = [await queue.append({"url": f"/api/items/{n}"}) for n in range(3)]
        await database.close()

        reopened = QueueDatabase(queue_db_url)
        await reopened.initialize()
        try:
            records = await DurableMutationQueue(reopened).list_all()
        finally:
            await reopened.close()

        assert [r.id for r in records] == ids

    @pytest.mark.asyncio
    async def test_unopenable_store_raises_storage_unavailable(self, tmp_path):
        """A store that cannot be opened surfaces StorageUnavailable."""
        database = QueueDatabase(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'dir' / 'queue.db'}")

        with pytest.raises(StorageUnavailable):
            await DurableMutationQueue(database).list_all()
        assert database.is_connected is False


class TestQueueDatabase:
    """Test QueueDatabase lifecycle."""

    @pytest.mark.asyncio
    async def test_health_check(self, queue_db):
        assert await queue_db.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_before_initialize(self, queue_db_url):
        assert await QueueDatabase(queue_db_url).health_check() is False

    def test_safe_url_hides_credentials(self):
        database = QueueDatabase("postgresql+asyncpg://user:secret@db:5432/queue")

        assert "secret" not in database._safe_url()
