"""Review and confirmation of extracted receipts."""

import logging
from typing import Any, Dict, List, Optional

from shared.validators import validate_owner_id
from receipts.models import Receipt, ReceiptCorrection, ReceiptFilters, ReceiptPatch, ReceiptStatus
from receipts.service import ensure_category
from receipts.store import ReceiptStore

logger = logging.getLogger(__name__)


class VerificationService:
    """Confirms receipts once their owner has checked the extracted fields."""

    def __init__(self, store: ReceiptStore, categories: Any = None):
        self.store = store
        self.categories = categories

    def list_unverified(self, owner_id: str) -> List[Receipt]:
        """Receipts awaiting review, newest upload first."""
        filters = ReceiptFilters(status=ReceiptStatus.UNVERIFIED, sort_by='created_at')
        return self.store.list(owner_id, filters)

    def confirm(self, owner_id: str, receipt_id: str, corrected: Optional[Dict[str, Any]] = None) -> Receipt:
        """
        Apply the owner's corrections and mark the receipt verified.

        Any status in ``corrected`` is ignored; the result is always
        verified. Confirming an already verified receipt re-applies the
        fields and leaves it verified.

        Args:
            owner_id: Authenticated caller
            receipt_id: Receipt to confirm
            corrected: Corrected merchant, transaction_date, amount, currency, category_id

        Returns:
            The verified receipt

        Raises:
            AuthError: If the owner is missing
            ValidationError: If a corrected field is invalid
            NotFoundOrForbiddenError: If the caller does not own the receipt
        """
        owner_id = validate_owner_id(owner_id)
        correction = ReceiptCorrection.parse(corrected)

        current = self.store.get(owner_id, receipt_id)
        changes = correction.changes()
        ensure_category(self.categories, owner_id, changes.get('category_id'))

        receipt = self.store.update(
            owner_id,
            receipt_id,
            ReceiptPatch(**changes, status=ReceiptStatus.VERIFIED)
        )

        if current.status == ReceiptStatus.VERIFIED:
            logger.info(f"Receipt {receipt_id} re-confirmed")
        else:
            logger.info(f"Receipt {receipt_id} verified")
        return receipt
