import hmac
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from . import config
from .errors import StoreError, TransformError, UnauthorizedError
from .feed import PadletFeed, transform_record, within_window
from .store import SightingStore
from .timeutil import utcnow

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    fetched: int = 0
    kept: int = 0
    inserted: int = 0
    duplicates: int = 0
    skipped: int = 0
    batches: int = 0
    failed_batches: List[int] = field(default_factory=list)
    archived: int = 0
    deleted: int = 0
    duration_s: float = 0.0

    @property
    def message(self) -> str:
        return f"Synced {self.inserted} new sightings in {self.duration_s}s"


def is_duplicate_of(a: Dict[str, Any], b: Dict[str, Any], window_s: int) -> bool:
    return (
        a["lat"] == b["lat"]
        and a["lng"] == b["lng"]
        and abs((a["time_date"] - b["time_date"]).total_seconds()) <= window_s
    )


def dedupe_within(items: List[Dict[str, Any]], window_s: int) -> List[Dict[str, Any]]:
    """Drop items that duplicate an earlier item of the same list (first one wins)."""
    by_point: Dict[tuple, List[Dict[str, Any]]] = {}
    out = []
    for item in items:
        seen = by_point.setdefault((item["lat"], item["lng"]), [])
        if any(is_duplicate_of(item, s, window_s) for s in seen):
            continue
        seen.append(item)
        out.append(item)
    return out


def batched(items: List[Any], size: int) -> List[List[Any]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class SyncJob:
    """Reconcile the sightings table with the Padlet feed.

    Order is fixed: authorize, retention sweep, fetch every page, filter and
    transform, then dedupe and insert batch by batch. Fetch, payload and
    transform errors abort the run; store errors are logged and only skip
    the affected sweep, item or batch.
    """

    def __init__(
        self,
        store: SightingStore,
        feed: Optional[PadletFeed] = None,
        token: str = config.SYNC_TOKEN,
        days_to_keep: int = config.DAYS_TO_KEEP,
        batch_size: int = config.BATCH_SIZE,
        dedup_window_s: int = config.DEDUP_WINDOW_SECONDS,
        retention_mode: str = config.RETENTION_MODE,
        clock: Callable[[], datetime] = utcnow,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if retention_mode not in ("archive", "delete"):
            raise ValueError(f"unknown retention mode {retention_mode!r}")
        self.store = store
        self.feed = feed or PadletFeed()
        self.token = token
        self.retention = timedelta(days=days_to_keep)
        self.batch_size = batch_size
        self.dedup_window_s = dedup_window_s
        self.retention_mode = retention_mode
        self.clock = clock

    def authorize(self, authorization: Optional[str]) -> None:
        expected = f"Bearer {self.token}"
        if not hmac.compare_digest((authorization or "").encode(), expected.encode()):
            logger.warning("Sync auth failed")
            raise UnauthorizedError("Unauthorized")

    def run(self, authorization: Optional[str]) -> SyncResult:
        self.authorize(authorization)
        started = time.monotonic()
        logger.info("Starting sync process...")
        result = SyncResult()

        self.sweep(result)

        raw = self.feed.fetch_all()
        result.fetched = len(raw)
        logger.info("Fetched %d items from Padlet", result.fetched)

        items = self.filter_and_transform(raw)
        result.kept = len(items)
        logger.info("Processed %d items within the %d-day window", result.kept, self.retention.days)

        self.insert_batches(items, result)

        result.duration_s = round(time.monotonic() - started, 3)
        logger.info(
            "Sync completed in %ss: inserted=%d duplicates=%d skipped=%d failed_batches=%s",
            result.duration_s, result.inserted, result.duplicates, result.skipped, result.failed_batches,
        )
        return result

    def sweep(self, result: SyncResult) -> None:
        cutoff = self.clock() - self.retention
        if self.retention_mode == "archive":
            try:
                result.archived = self.store.archive_older_than(cutoff)
                logger.info("Archived %d sightings older than %s", result.archived, cutoff.isoformat())
            except StoreError as e:
                logger.error("Error archiving old records: %s", e)
        # cleanup delete also catches rows the archive step missed
        try:
            result.deleted = self.store.delete_older_than(cutoff)
            if result.deleted:
                logger.info("Deleted %d sightings older than %s", result.deleted, cutoff.isoformat())
        except StoreError as e:
            logger.error("Error cleaning up old records: %s", e)

    def filter_and_transform(self, raw: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        now = self.clock()
        cutoff = now - self.retention
        items = []
        for i, rec in enumerate(raw):
            try:
                if not within_window(rec, i, cutoff, now):
                    continue
                items.append(transform_record(rec, i))
            except TransformError:
                logger.exception("Transform failed for feed record #%d", i)
                raise
        return items

    def insert_batches(self, items: List[Dict[str, Any]], result: SyncResult) -> None:
        unique = dedupe_within(items, self.dedup_window_s)
        result.duplicates += len(items) - len(unique)

        batches = batched(unique, self.batch_size)
        result.batches = len(batches)
        logger.info("Processing %d batches of up to %d items", len(batches), self.batch_size)

        for n, batch in enumerate(batches, start=1):
            staged = []
            for item in batch:
                try:
                    existing = self.store.find_duplicate(
                        item["lat"], item["lng"], item["time_date"], self.dedup_window_s
                    )
                except StoreError as e:
                    logger.error("Error checking for duplicate: %s", e)
                    result.skipped += 1
                    continue
                if existing is None:
                    staged.append(item)
                else:
                    result.duplicates += 1

            if not staged:
                logger.info("Batch %d/%d: all items were duplicates or skipped", n, len(batches))
                continue
            try:
                result.inserted += self.store.insert_many(staged)
                logger.info("Batch %d/%d: inserted %d items", n, len(batches), len(staged))
            except StoreError as e:
                logger.error("Error inserting batch %d/%d: %s", n, len(batches), e)
                result.failed_batches.append(n)
