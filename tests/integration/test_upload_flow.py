"""Integration tests for the receipt upload and verification flow."""

import pytest
import json
import base64
from decimal import Decimal
from unittest.mock import Mock
import sys
import os

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from conftest import BUCKET, CATEGORIES_TABLE, RECEIPTS_TABLE, png_bytes
from shared.exceptions import NotFoundOrForbiddenError, StorageError
from extraction.models import ExtractedFields, ExtractionFailure
from receipts.ingestion import ReceiptIngestionService
from receipts.models import FileStage, ReceiptCreate, ReceiptFile, ReceiptPatch, ReceiptStatus
from receipts.service import ReceiptService
from receipts.verification import VerificationService

MIB = 1024 * 1024


@pytest.fixture
def extractor():
    extractor = Mock()
    extractor.extract.return_value = ExtractedFields(
        merchant='Coffee Shop', date='2024-03-01', amount=4.5, currency='USD'
    )
    return extractor


@pytest.fixture
def ingestion(image_store, extractor, receipt_store):
    return ReceiptIngestionService(image_store, extractor, receipt_store)


def png_file(name='receipt.png', size=1024):
    return ReceiptFile(filename=name, content_type='image/png', content=png_bytes(size))


class TestIngestionFlow:
    """End-to-end ingestion against mocked S3 and DynamoDB."""

    def test_two_mib_png_becomes_unverified_receipt(self, aws, ingestion, receipt_store):
        """Test a 2 MiB PNG with a good extraction is stored and recorded."""
        result = ingestion.ingest('u1', [png_file(size=2 * MIB)])

        assert result.failures == []
        assert len(result.created) == 1
        receipt = result.created[0]
        assert receipt.status == ReceiptStatus.UNVERIFIED
        assert receipt.merchant == 'Coffee Shop'
        assert receipt.amount == Decimal('4.50')
        assert str(receipt.amount) == '4.50'

        obj = aws['s3'].head_object(Bucket=BUCKET, Key=receipt.storage_ref)
        assert obj['ContentLength'] == 2 * MIB
        assert obj['ContentType'] == 'image/png'
        assert receipt.storage_ref.startswith('receipts/u1/')

        stored = receipt_store.get('u1', receipt.receipt_id)
        assert stored == receipt

    def test_pdf_is_rejected_at_upload(self, aws, ingestion):
        """Test a PDF yields one upload failure and no receipt."""
        pdf = ReceiptFile(filename='scan.pdf', content_type='application/pdf', content=b'%PDF-1.4 ...')

        result = ingestion.ingest('u1', [pdf])

        assert result.created == []
        assert len(result.failures) == 1
        assert result.failures[0].stage == FileStage.UPLOAD
        assert result.failures[0].error_type == 'ValidationError'
        assert aws['s3'].list_objects_v2(Bucket=BUCKET).get('KeyCount', 0) == 0

    def test_oversized_sibling_does_not_block_batch(self, aws, ingestion):
        """Test a file over 10 MiB fails alone."""
        result = ingestion.ingest('u1', [png_file('ok.png'), png_file('huge.png', size=10 * MIB + 1)])

        assert len(result.created) == 1
        assert len(result.failures) == 1
        assert result.failures[0].filename == 'huge.png'

    def test_extraction_failure_still_records_receipt(self, aws, ingestion, extractor, receipt_store):
        extractor.extract.return_value = ExtractionFailure('Model refused: unreadable')

        result = ingestion.ingest('u1', [png_file()])

        receipt = receipt_store.get('u1', result.created[0].receipt_id)
        assert receipt.merchant is None
        assert receipt.transaction_date is None
        assert receipt.amount is None
        assert receipt.currency == 'USD'
        assert receipt.status == ReceiptStatus.UNVERIFIED

    def test_extractor_receives_signed_url(self, aws, ingestion, extractor):
        result = ingestion.ingest('u1', [png_file()])

        url = extractor.extract.call_args[0][0]
        assert result.created[0].storage_ref in url
        assert 'Expires=' in url or 'X-Amz-Expires=' in url

    def test_same_filename_twice_never_overwrites(self, aws, ingestion):
        result = ingestion.ingest('u1', [png_file('same.png'), png_file('same.png')])

        refs = {r.storage_ref for r in result.created}
        assert len(refs) == 2

    def test_persist_failure_leaves_orphan_object(self, aws, image_store, extractor):
        """Test a failed insert is reported and the image stays in the bucket."""
        from shared.dynamodb import DynamoDBClient
        from receipts.store import ReceiptStore

        broken_store = ReceiptStore(DynamoDBClient('missing-table', dynamodb=aws['dynamodb']))
        ingestion = ReceiptIngestionService(image_store, extractor, broken_store)

        result = ingestion.ingest('u1', [png_file()])

        assert result.created == []
        assert result.failures[0].stage == FileStage.PERSIST
        assert aws['s3'].list_objects_v2(Bucket=BUCKET)['KeyCount'] == 1


class TestReceiptRecords:
    """Record store behaviour against mocked DynamoDB."""

    def test_amount_round_trip(self, aws, receipt_store):
        created = receipt_store.create(ReceiptCreate(user_id='u1', storage_ref='receipts/u1/x.png', amount='19.99'))

        first = receipt_store.get('u1', created.receipt_id)
        second = receipt_store.get('u1', created.receipt_id)

        assert first.amount == Decimal('19.99')
        assert str(first.amount) == '19.99'
        assert first == second

    def test_partial_update_leaves_other_fields(self, aws, receipt_store):
        created = receipt_store.create(ReceiptCreate(
            user_id='u1', storage_ref='receipts/u1/x.png', merchant='Deli', amount='3.00'
        ))

        updated = receipt_store.update('u1', created.receipt_id, ReceiptPatch(amount='3.50'))

        assert updated.merchant == 'Deli'
        assert updated.amount == Decimal('3.50')
        assert updated.updated_at >= created.updated_at

    def test_explicit_null_clears_field(self, aws, receipt_store):
        created = receipt_store.create(ReceiptCreate(
            user_id='u1', storage_ref='receipts/u1/x.png', merchant='Deli'
        ))

        updated = receipt_store.update('u1', created.receipt_id, ReceiptPatch(merchant=None))

        assert updated.merchant is None

    def test_list_filters_and_order(self, aws, receipt_store):
        def add(merchant, day, status=ReceiptStatus.UNVERIFIED):
            return receipt_store.create(ReceiptCreate(
                user_id='u1', storage_ref=f'receipts/u1/{merchant}.png', merchant=merchant,
                transaction_date=day, status=status
            ))

        add('Corner Coffee', '2024-03-01')
        add('COFFEE HOUSE', '2024-03-05', ReceiptStatus.VERIFIED)
        add('Grocer', '2024-02-01')
        add('No Date Cafe', None)
        receipt_store.create(ReceiptCreate(user_id='u2', storage_ref='receipts/u2/c.png', merchant='Coffee'))

        from receipts.models import ReceiptFilters

        everything = receipt_store.list('u1')
        assert [r.merchant for r in everything] == ['COFFEE HOUSE', 'Corner Coffee', 'Grocer', 'No Date Cafe']

        coffee = receipt_store.list('u1', ReceiptFilters(merchant='coffee'))
        assert {r.merchant for r in coffee} == {'Corner Coffee', 'COFFEE HOUSE'}

        march_unverified = receipt_store.list('u1', ReceiptFilters(
            status=ReceiptStatus.UNVERIFIED, start_date='2024-03-01', end_date='2024-03-31'
        ))
        assert [r.merchant for r in march_unverified] == ['Corner Coffee']

        ascending = receipt_store.list('u1', ReceiptFilters(descending=False))
        assert [r.merchant for r in ascending] == ['Grocer', 'Corner Coffee', 'COFFEE HOUSE', 'No Date Cafe']


class TestOwnership:
    """Another user's receipt behaves exactly like a missing one."""

    @pytest.fixture
    def owned(self, aws, ingestion):
        return ingestion.ingest('u1', [png_file()]).created[0]

    @pytest.fixture
    def receipt_service(self, image_store, receipt_store):
        return ReceiptService(receipt_store, image_store)

    @pytest.fixture
    def verification(self, receipt_store):
        return VerificationService(receipt_store)

    def errors_for(self, action):
        """Collect (type, message) for a foreign id and a nonexistent id."""
        outcomes = []
        for receipt_id in self.ids:
            with pytest.raises(NotFoundOrForbiddenError) as exc_info:
                action(receipt_id)
            outcomes.append((type(exc_info.value), exc_info.value.message, exc_info.value.status_code))
        return outcomes

    @pytest.fixture(autouse=True)
    def _ids(self, owned):
        self.ids = [owned.receipt_id, 'does-not-exist']

    def test_update_by_other_owner(self, owned, receipt_service, receipt_store):
        outcomes = self.errors_for(lambda rid: receipt_service.update_receipt('u2', rid, {'merchant': 'Stolen'}))

        assert outcomes[0] == outcomes[1]
        assert receipt_store.get('u1', owned.receipt_id).merchant == 'Coffee Shop'

    def test_delete_by_other_owner(self, aws, owned, receipt_service, receipt_store):
        outcomes = self.errors_for(lambda rid: receipt_service.delete_receipt('u2', rid))

        assert outcomes[0] == outcomes[1]
        assert receipt_store.get('u1', owned.receipt_id)
        aws['s3'].head_object(Bucket=BUCKET, Key=owned.storage_ref)

    def test_confirm_by_other_owner(self, owned, verification, receipt_store):
        outcomes = self.errors_for(lambda rid: verification.confirm('u2', rid, {'merchant': 'Stolen'}))

        assert outcomes[0] == outcomes[1]
        unchanged = receipt_store.get('u1', owned.receipt_id)
        assert unchanged.status == ReceiptStatus.UNVERIFIED
        assert unchanged.merchant == 'Coffee Shop'

    def test_store_level_update_and_delete(self, owned, receipt_store):
        """Test the conditional writes never create or touch a foreign row."""
        self.errors_for(lambda rid: receipt_store.update('u2', rid, ReceiptPatch(merchant='x')))
        self.errors_for(lambda rid: receipt_store.delete('u2', rid))

        assert receipt_store.list('u2') == []


class TestVerificationAndDelete:
    """Confirming and deleting the owner's own receipts."""

    def test_confirm_forces_verified(self, aws, ingestion, receipt_store):
        receipt = ingestion.ingest('u1', [png_file()]).created[0]
        verification = VerificationService(receipt_store)

        assert [r.receipt_id for r in verification.list_unverified('u1')] == [receipt.receipt_id]

        confirmed = verification.confirm('u1', receipt.receipt_id, {
            'merchant': 'Coffee Shop Ltd', 'amount': '$4.75', 'status': 'unverified'
        })

        assert confirmed.status == ReceiptStatus.VERIFIED
        assert confirmed.merchant == 'Coffee Shop Ltd'
        assert confirmed.amount == Decimal('4.75')
        assert verification.list_unverified('u1') == []

        again = verification.confirm('u1', receipt.receipt_id, {})
        assert again.status == ReceiptStatus.VERIFIED

    def test_delete_removes_object_and_record(self, aws, ingestion, image_store, receipt_store):
        receipt = ingestion.ingest('u1', [png_file()]).created[0]
        service = ReceiptService(receipt_store, image_store)

        result = service.delete_receipt('u1', receipt.receipt_id)

        assert result['image_deleted'] is True
        assert not image_store.exists(receipt.storage_ref)
        with pytest.raises(NotFoundOrForbiddenError):
            receipt_store.get('u1', receipt.receipt_id)

    def test_delete_with_missing_object_keeps_record(self, aws, ingestion, image_store, receipt_store):
        receipt = ingestion.ingest('u1', [png_file()]).created[0]
        aws['s3'].delete_object(Bucket=BUCKET, Key=receipt.storage_ref)
        service = ReceiptService(receipt_store, image_store)

        with pytest.raises(StorageError):
            service.delete_receipt('u1', receipt.receipt_id)

        assert receipt_store.get('u1', receipt.receipt_id)

        service.delete_receipt('u1', receipt.receipt_id, force=True)
        with pytest.raises(NotFoundOrForbiddenError):
            receipt_store.get('u1', receipt.receipt_id)

    def test_get_receipt_includes_image_url(self, aws, ingestion, image_store, receipt_store):
        receipt = ingestion.ingest('u1', [png_file()]).created[0]
        service = ReceiptService(receipt_store, image_store)

        data = service.get_receipt('u1', receipt.receipt_id)

        assert receipt.storage_ref in data['image_url']
        assert data['amount'] == '4.50'


class TestReceiptsHandlerFlow:
    """The Lambda handler wired to mocked AWS through environment settings."""

    @pytest.fixture
    def handler(self, aws, monkeypatch):
        monkeypatch.setenv('RECEIPTS_BUCKET', BUCKET)
        monkeypatch.setenv('RECEIPTS_TABLE', RECEIPTS_TABLE)
        monkeypatch.setenv('CATEGORIES_TABLE', CATEGORIES_TABLE)
        monkeypatch.setenv('OPENAI_API_KEY', '')

        from receipts import handler
        handler.get_services.cache_clear()
        yield handler
        handler.get_services.cache_clear()

    def event(self, method, path, body=None, user_id='u1', path_id=None):
        return {
            'httpMethod': method,
            'path': path,
            'body': json.dumps(body) if body is not None else None,
            'pathParameters': {'id': path_id} if path_id else None,
            'queryStringParameters': None,
            'requestContext': {'authorizer': {'claims': {'sub': user_id}}}
        }

    def test_upload_degrades_without_extraction(self, handler):
        """Test an unconfigured extractor still produces a manual-entry receipt."""
        image_data = 'data:image/png;base64,' + base64.b64encode(png_bytes()).decode()
        response = handler.lambda_handler(self.event('POST', '/receipts/upload', {
            'files': [
                {'filename': 'r.png', 'image_data': image_data},
                {'filename': 'doc.pdf', 'content_type': 'application/pdf',
                 'image_data': base64.b64encode(b'%PDF-1.4').decode()}
            ]
        }), None)

        assert response['statusCode'] == 207
        body = json.loads(response['body'])
        assert body['message'].startswith('1 of 2 receipts uploaded')
        created = body['data']['created'][0]
        assert created['merchant'] is None
        assert created['currency'] == 'USD'
        assert created['status'] == 'unverified'
        assert body['data']['failures'][0]['filename'] == 'doc.pdf'

        listed = handler.lambda_handler(self.event('GET', '/receipts/unverified'), None)
        assert json.loads(listed['body'])['data']['count'] == 1

    def test_foreign_and_missing_ids_look_the_same(self, handler):
        image_data = base64.b64encode(png_bytes()).decode()
        upload = handler.lambda_handler(self.event('POST', '/receipts/upload', {
            'files': [{'filename': 'r.png', 'content_type': 'image/png', 'image_data': image_data}]
        }), None)
        receipt_id = json.loads(upload['body'])['data']['created'][0]['receipt_id']

        foreign = handler.lambda_handler(
            self.event('POST', f'/receipts/{receipt_id}/confirm', {}, user_id='u2', path_id=receipt_id), None
        )
        missing = handler.lambda_handler(
            self.event('POST', '/receipts/nope/confirm', {}, user_id='u2', path_id='nope'), None
        )

        assert foreign['statusCode'] == missing['statusCode'] == 404
        assert foreign['body'] == missing['body']
