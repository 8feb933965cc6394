"""Scheduled Lambda handler for storage maintenance."""

import os
import logging
from typing import Dict, Any
import sys

# Add parent directory to path for imports
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from shared.config import Settings
from shared.dynamodb import DynamoDBClient
from shared.s3 import ReceiptImageStore
from receipts.store import ReceiptStore
from maintenance.sweeper import OrphanSweeper

# Configure logging
logger = logging.getLogger()
logger.setLevel(os.environ.get('LOG_LEVEL', 'INFO'))


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Run the orphaned-image sweep.

    Triggered by an EventBridge schedule. ``{"dry_run": true}`` in the event
    reports orphans without deleting them.

    Args:
        event: Scheduled event
        context: Lambda context

    Returns:
        Sweep counts
    """
    settings = Settings.from_env()
    dry_run = bool((event or {}).get('dry_run', False))

    logger.info(f"Starting orphan sweep (dry_run={dry_run}, grace={settings.orphan_grace_hours}h)")

    sweeper = OrphanSweeper(
        image_store=ReceiptImageStore(settings.receipts_bucket),
        receipt_store=ReceiptStore(DynamoDBClient(settings.receipts_table)),
        grace_hours=settings.orphan_grace_hours
    )
    stats = sweeper.sweep(dry_run=dry_run)

    return {'dry_run': dry_run, **stats}
