"""Owner-facing receipt operations: read, edit, delete."""

import logging
from typing import Any, Dict, List, Optional

from shared.exceptions import StorageError
from shared.s3 import ReceiptImageStore
from shared.validators import validate_owner_id
from receipts.models import Receipt, ReceiptCorrection, ReceiptFilters, ReceiptPatch
from receipts.store import ReceiptStore

logger = logging.getLogger(__name__)


def ensure_category(categories: Any, owner_id: str, category_id: Optional[str]) -> None:
    """Reject a category id the owner does not have; no-op without a category service."""
    if categories is not None and category_id is not None:
        categories.ensure_exists(owner_id, category_id)


class ReceiptService:
    """Service for reading, correcting and deleting a user's receipts."""

    def __init__(
        self,
        store: ReceiptStore,
        image_store: ReceiptImageStore,
        categories: Any = None,
        image_url_ttl: int = 3600
    ):
        self.store = store
        self.image_store = image_store
        self.categories = categories
        self.image_url_ttl = image_url_ttl

    def get_receipt(self, owner_id: str, receipt_id: str) -> Dict[str, Any]:
        """
        Get a receipt with a temporary link to its image.

        Raises:
            NotFoundOrForbiddenError: If the owner has no such receipt
        """
        receipt = self.store.get(owner_id, receipt_id)
        data = receipt.to_api()

        try:
            data['image_url'] = self.image_store.signed_url(receipt.storage_ref, ttl_seconds=self.image_url_ttl)
        except StorageError as e:
            logger.warning(f"No image URL for receipt {receipt_id}: {e.message}")
            data['image_url'] = None

        return data

    def list_receipts(self, owner_id: str, filters: Optional[ReceiptFilters] = None) -> List[Receipt]:
        return self.store.list(owner_id, filters)

    def update_receipt(self, owner_id: str, receipt_id: str, data: Optional[Dict[str, Any]]) -> Receipt:
        """
        Apply a manual correction.

        Status is not editable here; use verification to confirm a receipt.

        Raises:
            ValidationError: If a field is invalid or the category is unknown
            NotFoundOrForbiddenError: If the owner has no such receipt
        """
        owner_id = validate_owner_id(owner_id)
        correction = ReceiptCorrection.parse(data)
        changes = correction.changes()

        ensure_category(self.categories, owner_id, changes.get('category_id'))

        return self.store.update(owner_id, receipt_id, ReceiptPatch(**changes))

    def delete_receipt(self, owner_id: str, receipt_id: str, force: bool = False) -> Dict[str, Any]:
        """
        Delete a receipt and its image.

        The image goes first. If that fails the record is kept and
        StorageError is raised so the caller can retry, unless ``force`` is
        set, in which case the record is removed anyway and the storage
        error is reported in the result.

        Returns:
            ``{"receipt_id", "image_deleted", "storage_error"}``

        Raises:
            NotFoundOrForbiddenError: If the owner has no such receipt
            StorageError: If the image could not be deleted and ``force`` is off
        """
        receipt = self.store.get(owner_id, receipt_id)

        storage_error = None
        try:
            self.image_store.delete(receipt.storage_ref)
        except StorageError as e:
            if not force:
                logger.error(f"Image delete failed for receipt {receipt_id}; record kept: {e.message}")
                raise
            logger.warning(f"Image delete failed for receipt {receipt_id}; removing record anyway: {e.message}")
            storage_error = e.message

        self.store.delete(owner_id, receipt_id)

        return {
            'receipt_id': receipt_id,
            'image_deleted': storage_error is None,
            'storage_error': storage_error
        }
