"""Lambda handler for report operations."""

import os
import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Dict, Any
import sys

# Add parent directory to path for imports
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from shared.request import get_user_id
from shared.config import Settings
from shared.dynamodb import DynamoDBClient
from shared.response import success_response, error_response, csv_response
from shared.exceptions import ReceiptTrackerError
from categories.service import CategoryService
from receipts.models import ReceiptFilters
from receipts.store import ReceiptStore
from reports.generator import ReportGenerator

# Configure logging
logger = logging.getLogger()
logger.setLevel(os.environ.get('LOG_LEVEL', 'INFO'))


@lru_cache(maxsize=1)
def get_report_generator() -> ReportGenerator:
    settings = Settings.from_env()
    store = ReceiptStore(DynamoDBClient(settings.receipts_table), default_currency=settings.default_currency)
    categories = None
    if settings.categories_table:
        categories = CategoryService(DynamoDBClient(settings.categories_table), store)
    return ReportGenerator(store, categories)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for report operations.

    Handles:
    - GET /reports/export - Export receipts as CSV
    - GET /reports/summary - Verified spending summary

    Args:
        event: Lambda event
        context: Lambda context

    Returns:
        API Gateway response
    """
    try:
        # Log request
        logger.info(f"Request: {event.get('httpMethod')} {event.get('path')}")

        # Get user ID from Cognito authorizer
        user_id = get_user_id(event)
        if not user_id:
            return error_response("You must be signed in", status_code=401, error_code="UNAUTHORIZED")

        # Get HTTP method and path
        http_method = event.get('httpMethod')
        path = (event.get('path') or '').rstrip('/')

        # Route request
        if path == '/reports/export' and http_method == 'GET':
            return handle_export(event, user_id)
        elif path == '/reports/summary' and http_method == 'GET':
            return handle_summary(user_id)
        else:
            return error_response("Route not found", status_code=404)

    except ReceiptTrackerError as e:
        logger.error(f"Application error: {e.message}")
        return error_response(e.message, status_code=e.status_code, error_code=type(e).__name__)
    except Exception as e:
        logger.error(f"Unexpected error: {str(e)}", exc_info=True)
        return error_response("Internal server error", status_code=500)


def handle_export(event: Dict[str, Any], user_id: str) -> Dict[str, Any]:
    """
    Handle export request.

    Accepts the receipt list filters as query parameters.

    Returns:
        API Gateway response with CSV file
    """
    filters = ReceiptFilters.from_query(event.get('queryStringParameters'))
    csv_content = get_report_generator().export_to_csv(user_id, filters)

    stamp = datetime.now(timezone.utc).strftime('%Y-%m-%d')
    return csv_response(csv_content, filename=f"receipts_{stamp}.csv")


def handle_summary(user_id: str) -> Dict[str, Any]:
    """Handle spending summary request."""
    return success_response(data=get_report_generator().spending_summary(user_id))
