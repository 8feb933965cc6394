"""Lambda handler for category operations."""

import os
import logging
from functools import lru_cache
from typing import Dict, Any
import sys

# Add parent directory to path for imports
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from shared.request import get_path_id, get_user_id, parse_body
from shared.config import Settings
from shared.response import success_response, error_response
from shared.exceptions import ReceiptTrackerError
from categories.service import CategoryService

# Configure logging
logger = logging.getLogger()
logger.setLevel(os.environ.get('LOG_LEVEL', 'INFO'))


@lru_cache(maxsize=1)
def get_category_service() -> CategoryService:
    return CategoryService.from_settings(Settings.from_env())


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for category operations.

    Handles:
    - GET /categories - List categories
    - POST /categories - Create category
    - PUT /categories/{id} - Rename category
    - DELETE /categories/{id} - Delete category and uncategorize its receipts

    Args:
        event: Lambda event
        context: Lambda context

    Returns:
        API Gateway response
    """
    try:
        logger.info(f"Request: {event.get('httpMethod')} {event.get('path')}")

        user_id = get_user_id(event)
        if not user_id:
            return error_response("You must be signed in", status_code=401, error_code="UNAUTHORIZED")

        http_method = event.get('httpMethod')
        path = (event.get('path') or '').rstrip('/')
        service = get_category_service()

        if path == '/categories' and http_method == 'GET':
            categories = service.list(user_id)
            return success_response(data={'categories': categories, 'count': len(categories)})
        elif path == '/categories' and http_method == 'POST':
            category = service.create(user_id, parse_body(event))
            return success_response(data=category, message="Category created", status_code=201)
        elif path.startswith('/categories/') and http_method == 'PUT':
            category = service.rename(user_id, get_path_id(event, label='Category'), parse_body(event))
            return success_response(data=category, message="Category renamed")
        elif path.startswith('/categories/') and http_method == 'DELETE':
            category_id = get_path_id(event, label='Category')
            cleared = service.delete(user_id, category_id)
            return success_response(
                data={'category_id': category_id, 'receipts_uncategorized': cleared},
                message="Category deleted"
            )
        else:
            return error_response("Route not found", status_code=404)

    except ReceiptTrackerError as e:
        logger.error(f"Application error: {e.message}")
        return error_response(e.message, status_code=e.status_code, error_code=type(e).__name__)
    except Exception as e:
        logger.error(f"Unexpected error: {str(e)}", exc_info=True)
        return error_response("Internal server error", status_code=500)

