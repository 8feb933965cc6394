"""Shared moto fixtures for integration tests."""

import pytest
import boto3
from moto import mock_aws
import sys
import os

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from shared.dynamodb import DynamoDBClient
from shared.s3 import ReceiptImageStore
from receipts.store import ReceiptStore

BUCKET = 'test-receipts-bucket'
RECEIPTS_TABLE = 'test-receipts'
CATEGORIES_TABLE = 'test-categories'

PNG_SIGNATURE = b'\x89PNG\r\n\x1a\n'


def png_bytes(size=1024):
    """PNG-signed content of the given size."""
    return PNG_SIGNATURE + b'\x00' * (size - len(PNG_SIGNATURE))


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mock AWS Credentials for moto."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')
    monkeypatch.delenv('USE_LOCALSTACK', raising=False)


@pytest.fixture
def aws(aws_credentials):
    """Mocked S3 bucket plus receipts and categories tables."""
    with mock_aws():
        s3 = boto3.client('s3', region_name='us-east-1')
        s3.create_bucket(Bucket=BUCKET)

        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')
        for table_name, sort_key in ((RECEIPTS_TABLE, 'receipt_id'), (CATEGORIES_TABLE, 'category_id')):
            dynamodb.create_table(
                TableName=table_name,
                KeySchema=[
                    {'AttributeName': 'user_id', 'KeyType': 'HASH'},
                    {'AttributeName': sort_key, 'KeyType': 'RANGE'}
                ],
                AttributeDefinitions=[
                    {'AttributeName': 'user_id', 'AttributeType': 'S'},
                    {'AttributeName': sort_key, 'AttributeType': 'S'}
                ],
                BillingMode='PAY_PER_REQUEST'
            )

        yield {'s3': s3, 'dynamodb': dynamodb}


@pytest.fixture
def image_store(aws):
    return ReceiptImageStore(BUCKET, s3=aws['s3'])


@pytest.fixture
def receipt_store(aws):
    return ReceiptStore(DynamoDBClient(RECEIPTS_TABLE, dynamodb=aws['dynamodb']))


@pytest.fixture
def categories_table(aws):
    return DynamoDBClient(CATEGORIES_TABLE, dynamodb=aws['dynamodb'])
