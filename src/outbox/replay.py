"""
Outbox - Replay Coordinator

Drains the durable mutation queue when connectivity returns. Records are
replayed one at a time in id order; a delivered record is removed, a failed
one is logged and left for the next drain. Repeated signals carrying the same
tag collapse onto the drain already in progress.
"""
import asyncio
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional, List

import structlog

from ..shared.exceptions import NetworkUnavailable, ReplayFailure
from ..shared.schemas import QueuedMutation, ReplayReport
from ..transport.http_client import Fetcher, Request, Response
from .mutation_queue import DurableMutationQueue

logger = structlog.get_logger(__name__)


class ReplayStats:
    """Statistics for replay operations."""

    def __init__(self):
        self.drains_started = 0
        self.drains_collapsed = 0
        self.records_replayed = 0
        self.records_failed = 0
        self.last_drain_started: Optional[datetime] = None
        self.last_drain_completed: Optional[datetime] = None
        self.consecutive_failures: Dict[int, int] = defaultdict(int)

    def record_success(self, record_id: int) -> None:
        self.records_replayed += 1
        self.consecutive_failures.pop(record_id, None)

    def record_failure(self, record_id: int) -> int:
        self.records_failed += 1
        self.consecutive_failures[record_id] += 1
        return self.consecutive_failures[record_id]

    def forget_missing(self, queued_ids) -> None:
        """Drop counters for records no longer queued."""
        for record_id in set(self.consecutive_failures) - set(queued_ids):
            del self.consecutive_failures[record_id]

    def to_dict(self) -> Dict[str, Any]:
        """Convert stats to dictionary for serialization."""
        return {
            "drains_started": self.drains_started,
            "drains_collapsed": self.drains_collapsed,
            "records_replayed": self.records_replayed,
            "records_failed": self.records_failed,
            "last_drain_started": self.last_drain_started.isoformat() if self.last_drain_started else None,
            "last_drain_completed": self.last_drain_completed.isoformat() if self.last_drain_completed else None,
            "stuck_records": {str(k): v for k, v in self.consecutive_failures.items()},
        }


class ReplayCoordinator:
    """
    Replays queued mutations against the network.

    A replay counts as delivered when the endpoint answers with a status
    below 500; transport failures and server errors leave the record queued.
    """

    def __init__(
        self,
        queue: DurableMutationQueue,
        fetcher: Fetcher,
        sync_tag: str = "background-sync",
        stuck_record_threshold: int = 5
    ):
        self.queue = queue
        self.fetcher = fetcher
        self.sync_tag = sync_tag
        self.stuck_record_threshold = stuck_record_threshold

        self.stats = ReplayStats()
        self._drains: Dict[str, asyncio.Task] = {}
        self.last_report: Optional[ReplayReport] = None

    async def handle_sync(self, tag: str) -> Optional[ReplayReport]:
        """
        Handle a connectivity-restoration signal.

        Only the configured tag triggers a drain. A signal arriving while a
        drain for the same tag is running awaits that drain instead of
        starting another.
        """
        if tag != self.sync_tag:
            logger.debug("Ignoring sync tag", tag=tag, expected=self.sync_tag)
            return None

        running = self._drains.get(tag)
        if running is not None and not running.done():
            self.stats.drains_collapsed += 1
            logger.info("Drain already in progress, collapsing signal", tag=tag)
            return await asyncio.shield(running)

        task = asyncio.create_task(self.drain(tag=tag))
        self._drains[tag] = task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._drains.get(tag) is task:
                del self._drains[tag]

    @property
    def drain_in_progress(self) -> bool:
        return any(not task.done() for task in self._drains.values())

    async def drain(self, tag: Optional[str] = None) -> ReplayReport:
        """One full pass over the queued mutations, in id order."""
        report = ReplayReport(tag=tag, started_at=datetime.now(timezone.utc))
        self.stats.drains_started += 1
        self.stats.last_drain_started = report.started_at

        records = await self.queue.list_all()
        self.stats.forget_missing(record.id for record in records)
        logger.info("Starting mutation replay", queued=len(records), tag=tag)

        for record in records:
            report.attempted += 1
            try:
                await self._replay(record)
            except ReplayFailure as e:
                failures = self.stats.record_failure(record.id)
                report.failed_ids.append(record.id)
                logger.warning("Replay failed, keeping record queued",
                               record_id=record.id, reason=e.reason, consecutive_failures=failures)
                if failures == self.stuck_record_threshold:
                    logger.error("Queued mutation keeps failing to replay",
                                 record_id=record.id, url=record.url, method=record.method,
                                 consecutive_failures=failures)
                continue

            await self.queue.remove(record.id)
            self.stats.record_success(record.id)
            report.replayed_ids.append(record.id)
            logger.info("Replayed queued mutation", record_id=record.id)

        report.completed_at = datetime.now(timezone.utc)
        self.stats.last_drain_completed = report.completed_at
        self.last_report = report

        logger.info("Mutation replay completed",
                    replayed=len(report.replayed_ids),
                    failed=len(report.failed_ids),
                    tag=tag)
        return report

    async def _replay(self, record: QueuedMutation) -> Response:
        request = Request(
            url=record.url,
            method=record.method,
            headers=dict(record.headers),
            body=record.body,
        )
        try:
            response = await self.fetcher.fetch(request)
        except NetworkUnavailable as e:
            raise ReplayFailure(record.id, e.reason or "network unavailable") from e

        if response.status >= 500:
            raise ReplayFailure(record.id, f"server error {response.status}")
        return response

    def pending_failures(self) -> List[int]:
        """Ids that failed their most recent replay attempt."""
        return sorted(self.stats.consecutive_failures)
