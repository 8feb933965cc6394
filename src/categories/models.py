"""Category data models."""

from typing import Any, Dict

from pydantic import BaseModel, field_validator

from shared.validators import sanitize_string

MAX_NAME_LENGTH = 100


class Category(BaseModel):
    """A user-defined receipt category."""

    user_id: str
    category_id: str
    name: str
    created_at: str
    updated_at: str

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'Category':
        return cls.model_validate(item)

    def to_item(self) -> Dict[str, Any]:
        return self.model_dump()

    def to_api(self) -> Dict[str, Any]:
        return self.model_dump(mode='json')


class CategoryName(BaseModel):
    """Validated category name input."""

    name: str

    @field_validator('name', mode='before')
    @classmethod
    def _check_name(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("Category name is required")

        name = sanitize_string(value)
        if not name:
            raise ValueError("Category name is required")
        if len(name) > MAX_NAME_LENGTH:
            raise ValueError(f"Category name must be at most {MAX_NAME_LENGTH} characters")
        return name
