"""Per-owner receipt categories."""

import logging
import uuid
from typing import Any, Dict, List, Optional

from boto3.dynamodb.conditions import Key
from pydantic import ValidationError as PydanticValidationError

from shared.config import Settings
from shared.dynamodb import DynamoDBClient
from shared.exceptions import NotFoundOrForbiddenError, ValidationError
from shared.validators import validate_owner_id
from categories.models import Category, CategoryName
from receipts.models import utc_now
from receipts.store import ReceiptStore

logger = logging.getLogger(__name__)

CATEGORY_NOT_FOUND = "Category not found"


class CategoryService:
    """Service for managing a user's categories."""

    def __init__(self, table: DynamoDBClient, receipt_store: ReceiptStore):
        self.table = table
        self.receipt_store = receipt_store

    @classmethod
    def from_settings(cls, settings: Settings) -> 'CategoryService':
        return cls(
            DynamoDBClient(settings.require_categories_table()),
            ReceiptStore(DynamoDBClient(settings.receipts_table), default_currency=settings.default_currency)
        )

    def create(self, owner_id: str, data: Optional[Dict[str, Any]]) -> Category:
        """
        Create a category.

        Args:
            owner_id: Owner
            data: ``{"name": ...}``

        Returns:
            Created category

        Raises:
            ValidationError: If the name is invalid or already used by the owner
        """
        owner_id = validate_owner_id(owner_id)
        name = self._parse_name(data)
        self._ensure_unique(owner_id, name)

        now = utc_now()
        category = Category(
            user_id=owner_id,
            category_id=str(uuid.uuid4()),
            name=name,
            created_at=now,
            updated_at=now
        )
        self.table.put_item(category.to_item(), condition_expression='attribute_not_exists(category_id)')

        logger.info(f"Created category {category.category_id}")
        return category

    def list(self, owner_id: str) -> List[Category]:
        """All of the owner's categories, by name."""
        owner_id = validate_owner_id(owner_id)
        items = self.table.query_all(key_condition_expression=Key('user_id').eq(owner_id))
        categories = [Category.from_item(item) for item in items]
        return sorted(categories, key=lambda c: c.name.lower())

    def get(self, owner_id: str, category_id: str) -> Category:
        owner_id = validate_owner_id(owner_id)
        if not category_id:
            raise NotFoundOrForbiddenError(CATEGORY_NOT_FOUND)

        item = self.table.get_item({'user_id': owner_id, 'category_id': category_id})
        if not item:
            raise NotFoundOrForbiddenError(CATEGORY_NOT_FOUND)
        return Category.from_item(item)

    def names(self, owner_id: str) -> Dict[str, str]:
        """Map of category id to name for the owner."""
        return {c.category_id: c.name for c in self.list(owner_id)}

    def ensure_exists(self, owner_id: str, category_id: Optional[str]) -> None:
        """
        Check that a receipt may point at this category.

        Raises:
            ValidationError: If the id is not one of the owner's categories
        """
        if category_id is None:
            return
        try:
            self.get(owner_id, category_id)
        except NotFoundOrForbiddenError:
            raise ValidationError("Unknown category")

    def rename(self, owner_id: str, category_id: str, data: Optional[Dict[str, Any]]) -> Category:
        """
        Rename a category.

        Raises:
            ValidationError: If the new name is invalid or taken
            NotFoundOrForbiddenError: If the owner has no such category
        """
        owner_id = validate_owner_id(owner_id)
        name = self._parse_name(data)
        self.get(owner_id, category_id)
        self._ensure_unique(owner_id, name, exclude_id=category_id)

        item = self.table.update_item(
            key={'user_id': owner_id, 'category_id': category_id},
            update_expression='SET #name = :name, #updated_at = :updated_at',
            expression_values={':name': name, ':updated_at': utc_now()},
            expression_names={'#name': 'name', '#updated_at': 'updated_at'},
            condition_expression='attribute_exists(category_id)'
        )
        if item is None:
            raise NotFoundOrForbiddenError(CATEGORY_NOT_FOUND)

        logger.info(f"Renamed category {category_id}")
        return Category.from_item(item)

    def delete(self, owner_id: str, category_id: str) -> int:
        """
        Delete a category, uncategorizing its receipts first.

        Returns:
            Number of receipts that were uncategorized

        Raises:
            NotFoundOrForbiddenError: If the owner has no such category
        """
        owner_id = validate_owner_id(owner_id)
        self.get(owner_id, category_id)

        cleared = self.receipt_store.clear_category(owner_id, category_id)

        deleted = self.table.delete_item(
            {'user_id': owner_id, 'category_id': category_id},
            condition_expression='attribute_exists(category_id)'
        )
        if not deleted:
            raise NotFoundOrForbiddenError(CATEGORY_NOT_FOUND)

        logger.info(f"Deleted category {category_id}; {cleared} receipts uncategorized")
        return cleared

    def _ensure_unique(self, owner_id: str, name: str, exclude_id: Optional[str] = None) -> None:
        wanted = name.lower()
        for category in self.list(owner_id):
            if category.category_id != exclude_id and category.name.lower() == wanted:
                raise ValidationError(f"Category '{name}' already exists")

    @staticmethod
    def _parse_name(data: Optional[Dict[str, Any]]) -> str:
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        try:
            return CategoryName.model_validate({'name': data.get('name')}).name
        except PydanticValidationError as e:
            message = e.errors()[0].get('msg', 'Invalid category name')
            raise ValidationError(message.replace('Value error, ', '', 1)) from e
