"""Reclaims receipt images that no receipt record points at."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from shared.exceptions import StorageError
from shared.s3 import RECEIPTS_PREFIX, ReceiptImageStore
from receipts.store import ReceiptStore

logger = logging.getLogger(__name__)


class OrphanSweeper:
    """
    Deletes stored images whose receipt record was never written.

    Ingestion uploads before it persists, so an image briefly exists with
    no record. Objects younger than the grace period are left alone so the
    sweep never races an upload in progress.
    """

    def __init__(self, image_store: ReceiptImageStore, receipt_store: ReceiptStore, grace_hours: int = 24):
        self.image_store = image_store
        self.receipt_store = receipt_store
        self.grace = timedelta(hours=grace_hours)

    def sweep(self, now: Optional[datetime] = None, dry_run: bool = False) -> Dict[str, int]:
        """
        Run one sweep.

        Args:
            now: Reference time (default: current UTC time)
            dry_run: Report orphans without deleting them

        Returns:
            Counts: scanned, skipped_recent, orphaned, deleted, failed
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - self.grace

        # Read the references after listing so records committed mid-sweep are seen
        objects = self.image_store.list_objects(RECEIPTS_PREFIX)
        referenced = self.receipt_store.all_storage_refs()

        stats = {'scanned': len(objects), 'skipped_recent': 0, 'orphaned': 0, 'deleted': 0, 'failed': 0}

        for obj in objects:
            if obj.key in referenced:
                continue

            last_modified = obj.last_modified
            if last_modified.tzinfo is None:
                last_modified = last_modified.replace(tzinfo=timezone.utc)
            if last_modified > cutoff:
                stats['skipped_recent'] += 1
                continue

            stats['orphaned'] += 1
            if dry_run:
                logger.info(f"Orphaned image (dry run): {obj.key}")
                continue

            try:
                self.image_store.delete(obj.key)
                stats['deleted'] += 1
            except StorageError as e:
                logger.error(f"Failed to delete orphaned image {obj.key}: {e.message}")
                stats['failed'] += 1

        logger.info(f"Orphan sweep finished: {stats}")
        return stats
