"""Unit tests for batch receipt ingestion."""

import pytest
import json
from decimal import Decimal
import httpx
from unittest.mock import Mock
import sys
import os

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from shared.exceptions import AuthError, PersistError, StorageError, ValidationError
from extraction.client import ReceiptExtractor
from extraction.models import ExtractedFields, ExtractionFailure
from receipts.ingestion import ReceiptIngestionService
from receipts.models import FileError, FileStage, Receipt, ReceiptFile, ReceiptStatus

PNG_BYTES = b'\x89PNG\r\n\x1a\n' + b'\x00' * 64


def stored_receipt(data):
    """What the store returns for a ReceiptCreate."""
    return Receipt(
        user_id=data.user_id,
        receipt_id=f"r-{data.storage_ref}",
        storage_ref=data.storage_ref,
        merchant=data.merchant,
        transaction_date=data.transaction_date,
        amount=data.amount,
        currency=data.currency,
        status=data.status,
        created_at='2024-03-01T00:00:00+00:00',
        updated_at='2024-03-01T00:00:00+00:00'
    )


class TestReceiptIngestionService:
    """Test cases for ReceiptIngestionService."""

    @pytest.fixture
    def image_store(self):
        store = Mock()
        store.upload.side_effect = lambda owner, f: f"receipts/{owner}/{f.filename}"
        store.signed_url.return_value = 'https://signed.example/receipt'
        return store

    @pytest.fixture
    def extractor(self):
        extractor = Mock()
        extractor.extract.return_value = ExtractedFields(
            merchant='Coffee Shop', date='2024-03-01', amount=4.5, currency='USD'
        )
        return extractor

    @pytest.fixture
    def receipt_store(self):
        store = Mock()
        store.create.side_effect = stored_receipt
        return store

    @pytest.fixture
    def service(self, image_store, extractor, receipt_store):
        return ReceiptIngestionService(image_store, extractor, receipt_store)

    def png(self, name='receipt.png'):
        return ReceiptFile(filename=name, content_type='image/png', content=PNG_BYTES)

    def test_single_file_creates_unverified_receipt(self, service, image_store, receipt_store):
        """Test the happy path stores, extracts and persists."""
        result = service.ingest('u1', [self.png()])

        assert result.failures == []
        assert len(result.created) == 1
        receipt = result.created[0]
        assert receipt.status == ReceiptStatus.UNVERIFIED
        assert receipt.merchant == 'Coffee Shop'
        assert receipt.amount == Decimal('4.50')
        assert receipt.storage_ref == 'receipts/u1/receipt.png'

        image_store.signed_url.assert_called_once_with('receipts/u1/receipt.png', ttl_seconds=600)
        created = receipt_store.create.call_args[0][0]
        assert created.user_id == 'u1'
        assert created.status == ReceiptStatus.UNVERIFIED

    def test_extraction_failure_degrades_to_empty_fields(self, service, extractor):
        """Test an extraction failure still yields a receipt for manual entry."""
        extractor.extract.return_value = ExtractionFailure('Extraction timed out')

        result = service.ingest('u1', [self.png()])

        assert result.failures == []
        receipt = result.created[0]
        assert receipt.merchant is None
        assert receipt.transaction_date is None
        assert receipt.amount is None
        assert receipt.currency == 'USD'
        assert receipt.status == ReceiptStatus.UNVERIFIED

    def test_signed_url_failure_degrades(self, service, image_store, extractor):
        """Test a URL that cannot be minted skips extraction but keeps the receipt."""
        image_store.signed_url.side_effect = StorageError('Object not found')

        result = service.ingest('u1', [self.png()])

        assert len(result.created) == 1
        assert result.created[0].merchant is None
        extractor.extract.assert_not_called()

    def test_upload_failure_does_not_stop_siblings(self, service, image_store):
        """Test one rejected file leaves the rest of the batch alone."""
        def upload(owner, f):
            if f.filename == 'big.png':
                raise ValidationError('File size exceeds 10MB limit')
            return f"receipts/{owner}/{f.filename}"

        image_store.upload.side_effect = upload

        result = service.ingest('u1', [self.png('big.png'), self.png('ok.png')])

        assert len(result.created) == 1
        assert result.created[0].storage_ref == 'receipts/u1/ok.png'
        assert len(result.failures) == 1
        failure = result.failures[0]
        assert failure.filename == 'big.png'
        assert failure.stage == FileStage.UPLOAD
        assert failure.error_type == 'ValidationError'
        assert '10MB' in failure.reason

    def test_persist_failure_is_recorded(self, service, receipt_store):
        """Test a database failure is reported against the persist stage."""
        receipt_store.create.side_effect = PersistError('Failed to put item')

        result = service.ingest('u1', [self.png()])

        assert result.created == []
        assert result.failures[0].stage == FileStage.PERSIST
        assert result.failures[0].error_type == 'PersistError'

    def test_unexpected_error_is_isolated(self, service, image_store):
        """Test an unexpected exception is captured for its file only."""
        image_store.upload.side_effect = [RuntimeError('boom'), 'receipts/u1/second.png']

        result = service.ingest('u1', [self.png('first.png'), self.png('second.png')])

        assert len(result.created) == 1
        assert result.failures[0].reason == 'boom'
        assert result.failures[0].error_type == 'RuntimeError'

    def test_predecoded_failures_pass_through(self, service, image_store):
        """Test entries that failed to decode are reported unchanged."""
        broken = FileError(filename='bad', stage=FileStage.UPLOAD, reason='Invalid base64 encoding',
                           error_type='ValidationError')

        result = service.ingest('u1', [broken, self.png()])

        assert result.failures == [broken]
        assert len(result.created) == 1
        assert image_store.upload.call_count == 1

    def test_missing_owner_fails_whole_batch(self, service, image_store):
        """Test no file is touched without an owner."""
        with pytest.raises(AuthError):
            service.ingest(None, [self.png()])
        with pytest.raises(AuthError):
            service.ingest('  ', [self.png()])

        image_store.upload.assert_not_called()

    def test_empty_batch_rejected(self, service):
        with pytest.raises(ValidationError, match="No files provided"):
            service.ingest('u1', [])

    def test_retries_extraction_when_configured(self, image_store, extractor, receipt_store):
        """Test extraction is retried up to the configured attempts."""
        extractor.extract.side_effect = [
            ExtractionFailure('Extraction timed out'),
            ExtractedFields(merchant='Deli', currency='EUR')
        ]
        service = ReceiptIngestionService(image_store, extractor, receipt_store, max_extraction_attempts=2)

        result = service.ingest('u1', [self.png()])

        assert extractor.extract.call_count == 2
        assert result.created[0].merchant == 'Deli'
        assert result.created[0].currency == 'EUR'

    def test_single_attempt_by_default(self, service, extractor):
        extractor.extract.return_value = ExtractionFailure('Model refused: no')

        service.ingest('u1', [self.png()])

        assert extractor.extract.call_count == 1

    def test_summary_message(self, service, image_store):
        image_store.upload.side_effect = [StorageError('Failed to upload file'), 'receipts/u1/b.png']

        result = service.ingest('u1', [self.png('a.png'), self.png('b.png')])

        assert result.summary() == "1 of 2 receipts uploaded; 1 failed (a.png: Failed to upload file)"

    def test_unusable_model_amount_keeps_batch_going(self, image_store, receipt_store):
        """Test a reply the decimal context cannot hold degrades every file."""
        def reply(request):
            content = json.dumps({'merchant': 'A', 'date': None, 'amount': 1e40, 'currency': 'USD'})
            return httpx.Response(200, json={'choices': [
                {'index': 0, 'message': {'role': 'assistant', 'content': content}, 'finish_reason': 'stop'}
            ]})

        extractor = ReceiptExtractor(
            api_key='sk-test', http_client=httpx.Client(transport=httpx.MockTransport(reply))
        )
        service = ReceiptIngestionService(image_store, extractor, receipt_store)

        result = service.ingest('u1', [self.png('a.png'), self.png('b.png')])

        assert result.failures == []
        assert len(result.created) == 2
        assert all(r.amount is None and r.merchant is None for r in result.created)
