"""Lambda handler for receipt operations."""

import os
import logging
from functools import lru_cache
from typing import Dict, Any
import sys

# Add parent directory to path for imports
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from shared.request import get_path_id, get_user_id, parse_body
from shared.config import Settings
from shared.dynamodb import DynamoDBClient
from shared.response import success_response, error_response
from shared.s3 import ReceiptImageStore
from shared.validators import validate_required_fields
from shared.exceptions import ReceiptTrackerError, ValidationError
from extraction.client import ReceiptExtractor
from categories.service import CategoryService
from receipts.ingestion import ReceiptIngestionService
from receipts.models import FileError, FileStage, ReceiptFile, ReceiptFilters
from receipts.service import ReceiptService
from receipts.store import ReceiptStore
from receipts.verification import VerificationService

# Configure logging
logger = logging.getLogger()
logger.setLevel(os.environ.get('LOG_LEVEL', 'INFO'))


class Services:
    """The handler's wired services, built once per container."""

    def __init__(self, settings: Settings):
        image_store = ReceiptImageStore(settings.receipts_bucket)
        store = ReceiptStore(
            DynamoDBClient(settings.receipts_table),
            default_currency=settings.default_currency
        )
        categories = None
        if settings.categories_table:
            categories = CategoryService(DynamoDBClient(settings.categories_table), store)

        self.ingestion = ReceiptIngestionService(
            image_store=image_store,
            extractor=ReceiptExtractor.from_settings(settings),
            receipt_store=store,
            signed_url_ttl=settings.signed_url_ttl_seconds,
            max_extraction_attempts=settings.extraction_max_attempts,
            default_currency=settings.default_currency
        )
        self.receipts = ReceiptService(
            store,
            image_store,
            categories=categories,
            image_url_ttl=settings.image_url_ttl_seconds
        )
        self.verification = VerificationService(store, categories=categories)


@lru_cache(maxsize=1)
def get_services() -> Services:
    return Services(Settings.from_env())


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for receipt operations.

    Handles:
    - POST /receipts/upload - Upload a batch of receipt images
    - GET /receipts - List receipts
    - GET /receipts/unverified - List receipts awaiting review
    - GET /receipts/{id} - Get receipt details
    - PUT /receipts/{id} - Correct receipt fields
    - DELETE /receipts/{id} - Delete receipt and image
    - POST /receipts/{id}/confirm - Confirm a receipt

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
        services = get_services()

        # Route request
        if path == '/receipts/upload' and http_method == 'POST':
            return handle_upload(event, user_id, services)
        elif path == '/receipts/unverified' and http_method == 'GET':
            return handle_list_unverified(user_id, services)
        elif path == '/receipts' and http_method == 'GET':
            return handle_list(event, user_id, services)
        elif path.startswith('/receipts/') and path.endswith('/confirm') and http_method == 'POST':
            return handle_confirm(event, user_id, services)
        elif path.startswith('/receipts/') and http_method == 'GET':
            return handle_get(event, user_id, services)
        elif path.startswith('/receipts/') and http_method == 'PUT':
            return handle_update(event, user_id, services)
        elif path.startswith('/receipts/') and http_method == 'DELETE':
            return handle_delete(event, user_id, services)
        else:
            return error_response("Route not found", status_code=404)

    except ReceiptTrackerError as e:
        logger.error(f"Application error: {e.message}")
        return error_response(e.message, status_code=e.status_code, error_code=type(e).__name__)
    except Exception as e:
        logger.error(f"Unexpected error: {str(e)}", exc_info=True)
        return error_response("Internal server error", status_code=500)


def handle_upload(event: Dict[str, Any], user_id: str, services: Services) -> Dict[str, Any]:
    """
    Handle a batch upload.

    Body: ``{"files": [{"filename", "content_type", "image_data"}]}``. A
    single file object without the ``files`` wrapper is also accepted.
    """
    body = parse_body(event)
    if 'files' not in body and 'image_data' in body:
        body = {'files': [body]}

    validate_required_fields(body, ['files'])
    if not isinstance(body['files'], list):
        raise ValidationError("files must be a list")

    files = []
    for index, payload in enumerate(body['files']):
        filename = payload.get('filename') if isinstance(payload, dict) else None
        try:
            files.append(ReceiptFile.from_payload(payload))
        except ValidationError as e:
            files.append(FileError(
                filename=str(filename or f"file {index + 1}"),
                stage=FileStage.UPLOAD,
                reason=e.message,
                error_type=type(e).__name__
            ))

    result = services.ingestion.ingest(user_id, files)

    if not result.created:
        return error_response(
            result.summary(),
            status_code=400,
            error_code="UPLOAD_FAILED",
            details={'failures': result.failures}
        )

    status_code = 207 if result.failures else 201
    return success_response(
        data={'created': result.created, 'failures': result.failures},
        message=result.summary(),
        status_code=status_code
    )


def handle_list(event: Dict[str, Any], user_id: str, services: Services) -> Dict[str, Any]:
    """Handle list receipts with optional filters."""
    filters = ReceiptFilters.from_query(event.get('queryStringParameters'))
    receipts = services.receipts.list_receipts(user_id, filters)

    return success_response(data={
        'receipts': receipts,
        'count': len(receipts)
    })


def handle_list_unverified(user_id: str, services: Services) -> Dict[str, Any]:
    """Handle list of receipts awaiting verification."""
    receipts = services.verification.list_unverified(user_id)

    return success_response(data={
        'receipts': receipts,
        'count': len(receipts)
    })


def handle_get(event: Dict[str, Any], user_id: str, services: Services) -> Dict[str, Any]:
    """Handle get receipt details."""
    receipt_id = get_path_id(event)
    return success_response(data=services.receipts.get_receipt(user_id, receipt_id))


def handle_update(event: Dict[str, Any], user_id: str, services: Services) -> Dict[str, Any]:
    """Handle manual correction of a receipt."""
    receipt_id = get_path_id(event)
    receipt = services.receipts.update_receipt(user_id, receipt_id, parse_body(event))

    logger.info(f"Receipt updated successfully: {receipt_id}")
    return success_response(data=receipt, message="Receipt updated")


def handle_confirm(event: Dict[str, Any], user_id: str, services: Services) -> Dict[str, Any]:
    """Handle confirmation of a reviewed receipt."""
    receipt_id = get_path_id(event)
    receipt = services.verification.confirm(user_id, receipt_id, parse_body(event))

    return success_response(data=receipt, message="Receipt verified")


def handle_delete(event: Dict[str, Any], user_id: str, services: Services) -> Dict[str, Any]:
    """Handle delete receipt."""
    receipt_id = get_path_id(event)
    query_params = event.get('queryStringParameters') or {}
    force = str(query_params.get('force', '')).lower() == 'true'

    result = services.receipts.delete_receipt(user_id, receipt_id, force=force)

    message = "Receipt deleted successfully"
    if result['storage_error']:
        message = f"Receipt deleted; image could not be removed: {result['storage_error']}"

    logger.info(f"Receipt deleted successfully: {receipt_id}")
    return success_response(data=result, message=message)

