"""DynamoDB-backed receipt records, always scoped to their owner."""

import logging
import uuid
from functools import reduce
from typing import Any, Dict, List, Optional, Set

from boto3.dynamodb.conditions import Attr, Key

from shared.dynamodb import DynamoDBClient
from shared.exceptions import NotFoundOrForbiddenError
from shared.validators import validate_owner_id
from receipts.models import (
    Receipt,
    ReceiptCreate,
    ReceiptFilters,
    ReceiptPatch,
    utc_now
)

logger = logging.getLogger(__name__)

# The row must already exist; with user_id in the key this also pins ownership.
_ROW_EXISTS = 'attribute_exists(receipt_id)'


class ReceiptStore:
    """
    Typed CRUD over the receipts table.

    The table is keyed by (user_id, receipt_id), so every read and write
    names the owner. Updates and deletes are conditional on the row
    existing, which means an id belonging to someone else behaves exactly
    like an id that does not exist.
    """

    def __init__(self, table: DynamoDBClient, default_currency: str = 'USD'):
        self.table = table
        self.default_currency = default_currency

    def create(self, data: ReceiptCreate) -> Receipt:
        """
        Insert a new receipt.

        Args:
            data: Owner, storage reference and whatever fields are known

        Returns:
            The stored receipt

        Raises:
            AuthError: If the owner is missing
            PersistError: If the write fails
        """
        owner_id = validate_owner_id(data.user_id)
        now = utc_now()

        receipt = Receipt(
            user_id=owner_id,
            receipt_id=str(uuid.uuid4()),
            storage_ref=data.storage_ref,
            merchant=data.merchant,
            transaction_date=data.transaction_date,
            amount=data.amount,
            currency=data.currency or self.default_currency,
            category_id=data.category_id,
            status=data.status,
            created_at=now,
            updated_at=now
        )

        self.table.put_item(
            receipt.to_item(),
            condition_expression='attribute_not_exists(receipt_id)'
        )

        logger.info(f"Created receipt {receipt.receipt_id} ({receipt.status.value})")
        return receipt

    def get(self, owner_id: str, receipt_id: str) -> Receipt:
        """
        Get one of the owner's receipts.

        Raises:
            AuthError: If the owner is missing
            NotFoundOrForbiddenError: If the owner has no such receipt
            PersistError: If the read fails
        """
        owner_id = validate_owner_id(owner_id)
        if not receipt_id:
            raise NotFoundOrForbiddenError()

        item = self.table.get_item({'user_id': owner_id, 'receipt_id': receipt_id})
        if not item:
            raise NotFoundOrForbiddenError()

        return Receipt.from_item(item)

    def list(self, owner_id: str, filters: Optional[ReceiptFilters] = None) -> List[Receipt]:
        """
        List the owner's receipts matching every supplied filter.

        Args:
            owner_id: Owner
            filters: Optional filters; absent filters impose no constraint

        Returns:
            Receipts ordered per ``filters.sort_by`` (newest first by default)
        """
        owner_id = validate_owner_id(owner_id)
        filters = filters or ReceiptFilters()

        items = self.table.query_all(
            key_condition_expression=Key('user_id').eq(owner_id),
            filter_expression=self._filter_expression(filters)
        )
        receipts = [Receipt.from_item(item) for item in items]

        # Attribute filters in DynamoDB are case-sensitive, so substring match runs here
        if filters.merchant:
            needle = filters.merchant.lower()
            receipts = [r for r in receipts if r.merchant and needle in r.merchant.lower()]

        return self._sort(receipts, filters)

    def update(self, owner_id: str, receipt_id: str, patch: ReceiptPatch) -> Receipt:
        """
        Apply a partial update.

        Only fields set on the patch are touched; an explicit None clears
        the field. ``updated_at`` is always refreshed.

        Raises:
            AuthError: If the owner is missing
            NotFoundOrForbiddenError: If the owner has no such receipt
            PersistError: If the write fails
        """
        owner_id = validate_owner_id(owner_id)
        if not receipt_id:
            raise NotFoundOrForbiddenError()

        set_parts = ['#updated_at = :updated_at']
        remove_parts = []
        names = {'#updated_at': 'updated_at'}
        values: Dict[str, Any] = {':updated_at': utc_now()}

        for field, value in patch.model_dump(exclude_unset=True).items():
            if field == 'currency' and value is None:
                value = self.default_currency
            if field == 'status' and value is not None:
                value = value.value

            names[f'#{field}'] = field
            if value is None:
                remove_parts.append(f'#{field}')
            else:
                set_parts.append(f'#{field} = :{field}')
                values[f':{field}'] = value

        expression = 'SET ' + ', '.join(set_parts)
        if remove_parts:
            expression += ' REMOVE ' + ', '.join(remove_parts)

        item = self.table.update_item(
            key={'user_id': owner_id, 'receipt_id': receipt_id},
            update_expression=expression,
            expression_values=values,
            expression_names=names,
            condition_expression=_ROW_EXISTS
        )
        if item is None:
            raise NotFoundOrForbiddenError()

        logger.info(f"Updated receipt {receipt_id}")
        return Receipt.from_item(item)

    def delete(self, owner_id: str, receipt_id: str) -> None:
        """
        Delete one of the owner's receipts.

        Raises:
            AuthError: If the owner is missing
            NotFoundOrForbiddenError: If the owner has no such receipt
            PersistError: If the delete fails
        """
        owner_id = validate_owner_id(owner_id)
        if not receipt_id:
            raise NotFoundOrForbiddenError()

        deleted = self.table.delete_item(
            {'user_id': owner_id, 'receipt_id': receipt_id},
            condition_expression=_ROW_EXISTS
        )
        if not deleted:
            raise NotFoundOrForbiddenError()

        logger.info(f"Deleted receipt {receipt_id}")

    def clear_category(self, owner_id: str, category_id: str) -> int:
        """
        Uncategorize every receipt of the owner that points at a category.

        Returns:
            Number of receipts changed
        """
        owner_id = validate_owner_id(owner_id)
        items = self.table.query_all(
            key_condition_expression=Key('user_id').eq(owner_id),
            filter_expression=Attr('category_id').eq(category_id)
        )

        cleared = 0
        for item in items:
            updated = self.table.update_item(
                key={'user_id': owner_id, 'receipt_id': item['receipt_id']},
                update_expression='SET #updated_at = :updated_at REMOVE #category_id',
                expression_values={':updated_at': utc_now(), ':category_id': category_id},
                expression_names={'#updated_at': 'updated_at', '#category_id': 'category_id'},
                # Skip rows re-categorized or deleted since the query
                condition_expression='attribute_exists(receipt_id) AND #category_id = :category_id'
            )
            if updated is not None:
                cleared += 1

        logger.info(f"Cleared category {category_id} from {cleared} receipts")
        return cleared

    def all_storage_refs(self) -> Set[str]:
        """Every storage reference recorded across all owners."""
        items = self.table.scan_all(projection=['storage_ref'])
        return {item['storage_ref'] for item in items if item.get('storage_ref')}

    @staticmethod
    def _filter_expression(filters: ReceiptFilters) -> Optional[Any]:
        conditions = []

        if filters.category_id:
            conditions.append(Attr('category_id').eq(filters.category_id))

        if filters.status:
            conditions.append(Attr('status').eq(filters.status.value))

        if filters.start_date and filters.end_date:
            conditions.append(Attr('transaction_date').between(filters.start_date, filters.end_date))
        elif filters.start_date:
            conditions.append(Attr('transaction_date').gte(filters.start_date))
        elif filters.end_date:
            conditions.append(Attr('transaction_date').lte(filters.end_date))

        if not conditions:
            return None
        return reduce(lambda left, right: left & right, conditions)

    @staticmethod
    def _sort(receipts: List[Receipt], filters: ReceiptFilters) -> List[Receipt]:
        if filters.sort_by == 'created_at':
            return sorted(receipts, key=lambda r: r.created_at, reverse=filters.descending)

        # Undated receipts go last in either direction, ties broken by creation time
        dated = [r for r in receipts if r.transaction_date]
        undated = [r for r in receipts if not r.transaction_date]
        dated.sort(key=lambda r: (r.transaction_date, r.created_at), reverse=filters.descending)
        undated.sort(key=lambda r: r.created_at, reverse=filters.descending)
        return dated + undated
