"""Request helpers for API Gateway proxy events."""

import json
from typing import Any, Dict, Optional

from .exceptions import ValidationError


def get_user_id(event: Dict[str, Any]) -> Optional[str]:
    """
    Extract user ID from Cognito authorizer claims.

    Args:
        event: Lambda event

    Returns:
        User ID (sub claim), or None for anonymous requests
    """
    request_context = event.get('requestContext') or {}
    authorizer = request_context.get('authorizer') or {}
    claims = authorizer.get('claims') or {}
    return claims.get('sub')


def get_path_id(event: Dict[str, Any], label: str = 'Receipt') -> str:
    """
    Resource id from ``pathParameters``, falling back to the second path segment.

    Raises:
        ValidationError: If no id is present
    """
    path_params = event.get('pathParameters') or {}
    resource_id = path_params.get('id')

    if not resource_id:
        parts = [part for part in (event.get('path') or '').split('/') if part]
        resource_id = parts[1] if len(parts) >= 2 else None

    if not resource_id:
        raise ValidationError(f"{label} ID is required")
    return resource_id


def parse_body(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Decode a JSON request body; an absent body is an empty object.

    Raises:
        ValidationError: If the body is not a JSON object
    """
    raw = event.get('body')
    if not raw:
        return {}

    try:
        body = json.loads(raw)
    except json.JSONDecodeError:
        raise ValidationError("Request body must be valid JSON")

    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body
