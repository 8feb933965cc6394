"""S3 gateway for receipt images."""

import os
import time
import uuid
import boto3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List
from botocore.exceptions import BotoCoreError, ClientError
import logging

from .exceptions import StorageError
from .validators import (
    sanitize_key_component,
    validate_content_type,
    validate_file_size,
    validate_image_signature,
    validate_owner_id
)

logger = logging.getLogger(__name__)

RECEIPTS_PREFIX = 'receipts/'

_MISSING_CODES = ('404', 'NoSuchKey', 'NotFound')
_EXISTS_CODES = ('PreconditionFailed', 'ConditionalRequestConflict')


@dataclass(frozen=True)
class StoredObject:
    """A listed object in the receipts bucket."""

    key: str
    last_modified: datetime
    size: int


class ReceiptImageStore:
    """
    Stores receipt images in a private S3 bucket.

    Objects are never overwritten: every upload gets a fresh key namespaced
    by owner, and the write is conditional on the key being unused.
    """

    def __init__(self, bucket_name: str, s3: Any = None):
        """
        Initialize S3 gateway.

        Args:
            bucket_name: Name of the S3 bucket
            s3: Optional pre-built boto3 S3 client
        """
        self.bucket_name = bucket_name

        if s3 is None:
            # Support for LocalStack
            endpoint_url = os.environ.get('LOCALSTACK_ENDPOINT')
            if endpoint_url and os.environ.get('USE_LOCALSTACK', 'false').lower() == 'true':
                s3 = boto3.client('s3', endpoint_url=endpoint_url)
            else:
                s3 = boto3.client('s3')

        self.s3 = s3

    @staticmethod
    def build_key(owner_id: str, filename: str) -> str:
        """Build a collision-resistant key: receipts/{owner}/{epoch_ms}_{token}_{name}."""
        safe_owner = sanitize_key_component(owner_id)
        safe_name = sanitize_key_component(filename or 'receipt')[-100:]
        token = uuid.uuid4().hex[:8]
        return f"{RECEIPTS_PREFIX}{safe_owner}/{int(time.time() * 1000)}_{token}_{safe_name}"

    def upload(self, owner_id: str, receipt_file: Any) -> str:
        """
        Validate and upload a receipt image.

        Args:
            owner_id: Owning user's identifier
            receipt_file: Object with filename, content_type and content

        Returns:
            Storage reference (object key)

        Raises:
            AuthError: If the owner id is missing
            ValidationError: If the file type or size is not accepted
            StorageError: If the key is taken or the upload fails
        """
        owner_id = validate_owner_id(owner_id)
        content_type = validate_content_type(receipt_file.content_type)
        validate_file_size(len(receipt_file.content))
        validate_image_signature(receipt_file.content, content_type)

        key = self.build_key(owner_id, receipt_file.filename)

        if self.exists(key):
            raise StorageError(f"Refusing to overwrite existing object: {key}")

        try:
            self.s3.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=receipt_file.content,
                ContentType=content_type,
                ServerSideEncryption='AES256',
                IfNoneMatch='*',
                Metadata={
                    'user_id': sanitize_key_component(owner_id),
                    'original_filename': sanitize_key_component(receipt_file.filename or '')
                }
            )
        except ClientError as e:
            if e.response['Error']['Code'] in _EXISTS_CODES:
                raise StorageError(f"Refusing to overwrite existing object: {key}")
            logger.error(f"Error uploading file to S3: {e}")
            raise StorageError(f"Failed to upload file: {str(e)}")
        except BotoCoreError as e:
            logger.error(f"Error uploading file to S3: {e}")
            raise StorageError(f"Failed to upload file: {str(e)}")

        logger.info(f"Uploaded receipt image to s3://{self.bucket_name}/{key}")
        return key

    def exists(self, key: str) -> bool:
        """
        Check if an object exists.

        Args:
            key: S3 object key

        Returns:
            True if the object exists, False otherwise

        Raises:
            StorageError: If the backend fails for another reason
        """
        try:
            self.s3.head_object(Bucket=self.bucket_name, Key=key)
            return True
        except ClientError as e:
            if e.response['Error']['Code'] in _MISSING_CODES:
                return False
            logger.error(f"Error checking object {key}: {e}")
            raise StorageError(f"Failed to check object: {str(e)}")
        except BotoCoreError as e:
            logger.error(f"Error checking object {key}: {e}")
            raise StorageError(f"Failed to check object: {str(e)}")

    def signed_url(self, key: str, ttl_seconds: int = 600) -> str:
        """
        Generate a time-limited GET URL for a private object.

        Args:
            key: S3 object key
            ttl_seconds: URL lifetime in seconds

        Returns:
            Presigned URL

        Raises:
            StorageError: If the object is missing or URL generation fails
        """
        if not self.exists(key):
            raise StorageError(f"Object not found: {key}")

        try:
            return self.s3.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket_name, 'Key': key},
                ExpiresIn=ttl_seconds
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error generating presigned URL: {e}")
            raise StorageError(f"Failed to generate presigned URL: {str(e)}")

    def delete(self, key: str) -> None:
        """
        Delete an object.

        S3 reports success for missing keys, so existence is checked first
        and a missing object is reported as an error.

        Args:
            key: S3 object key

        Raises:
            StorageError: If the object is missing or the deletion fails
        """
        if not self.exists(key):
            raise StorageError(f"Object not found: {key}")

        try:
            self.s3.delete_object(Bucket=self.bucket_name, Key=key)
            logger.info(f"Deleted s3://{self.bucket_name}/{key}")
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error deleting file from S3: {e}")
            raise StorageError(f"Failed to delete file: {str(e)}")

    def list_objects(self, prefix: str = RECEIPTS_PREFIX) -> List[StoredObject]:
        """
        List every object under a prefix.

        Args:
            prefix: Key prefix

        Returns:
            Listed objects

        Raises:
            StorageError: If listing fails
        """
        objects = []
        kwargs = {'Bucket': self.bucket_name, 'Prefix': prefix}

        try:
            while True:
                response = self.s3.list_objects_v2(**kwargs)
                for obj in response.get('Contents', []):
                    objects.append(StoredObject(
                        key=obj['Key'],
                        last_modified=obj['LastModified'],
                        size=obj.get('Size', 0)
                    ))

                if not response.get('IsTruncated'):
                    break
                kwargs['ContinuationToken'] = response['NextContinuationToken']
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error listing files: {e}")
            raise StorageError(f"Failed to list files: {str(e)}")

        return objects

