"""Batch ingestion of receipt images: upload, extract, persist."""

import logging
from typing import Iterable, Optional, Union

from shared.exceptions import ReceiptTrackerError, ValidationError
from shared.s3 import ReceiptImageStore
from shared.validators import validate_owner_id
from extraction.client import ReceiptExtractor
from extraction.models import ExtractedFields, ExtractionFailure
from receipts.models import (
    FileError,
    FileStage,
    IngestionResult,
    Receipt,
    ReceiptCreate,
    ReceiptFile,
    ReceiptStatus
)
from receipts.store import ReceiptStore

logger = logging.getLogger(__name__)


class ReceiptIngestionService:
    """
    Turns a batch of uploaded files into unverified receipts.

    Every file runs upload -> extract -> persist on its own. A failure is
    recorded against that file and the batch moves on, so one bad file never
    costs its siblings. Extraction problems do not fail a file at all: the
    receipt is created with empty fields for the owner to fill in.

    If persistence fails after the upload succeeded, the image stays in the
    bucket; the orphan sweep reclaims it later.
    """

    def __init__(
        self,
        image_store: ReceiptImageStore,
        extractor: ReceiptExtractor,
        receipt_store: ReceiptStore,
        signed_url_ttl: int = 600,
        max_extraction_attempts: int = 1,
        default_currency: str = 'USD'
    ):
        self.image_store = image_store
        self.extractor = extractor
        self.receipt_store = receipt_store
        self.signed_url_ttl = signed_url_ttl
        self.max_extraction_attempts = max(1, max_extraction_attempts)
        self.default_currency = default_currency

    def ingest(self, owner_id: Optional[str], files: Iterable[Union[ReceiptFile, FileError]]) -> IngestionResult:
        """
        Ingest a batch of receipt images for one owner.

        Args:
            owner_id: Authenticated caller
            files: Files to ingest. Entries that already failed to decode may
                be passed as FileError and are reported as-is.

        Returns:
            IngestionResult with the created receipts and per-file failures

        Raises:
            AuthError: If the owner is missing; nothing is processed
            ValidationError: If the batch is empty
        """
        owner_id = validate_owner_id(owner_id)
        files = list(files or [])
        if not files:
            raise ValidationError("No files provided")

        logger.info(f"Ingesting batch of {len(files)} files")
        result = IngestionResult()

        for receipt_file in files:
            if isinstance(receipt_file, FileError):
                result.failures.append(receipt_file)
                continue

            outcome = self._ingest_one(owner_id, receipt_file)
            if isinstance(outcome, FileError):
                result.failures.append(outcome)
            else:
                result.created.append(outcome)

        logger.info(result.summary())
        return result

    def _ingest_one(self, owner_id: str, receipt_file: ReceiptFile) -> Union[Receipt, FileError]:
        filename = receipt_file.filename

        # Received -> Stored
        try:
            storage_ref = self.image_store.upload(owner_id, receipt_file)
        except ReceiptTrackerError as e:
            logger.error(f"Upload failed for {filename}: {e.message}")
            return self._failure(filename, FileStage.UPLOAD, e)
        except Exception as e:
            logger.error(f"Unexpected upload error for {filename}: {e}", exc_info=True)
            return self._failure(filename, FileStage.UPLOAD, e)

        # Stored -> Extracted (or degraded)
        fields = self._extract(storage_ref, filename)

        # Extracted -> Persisted
        try:
            receipt = self.receipt_store.create(ReceiptCreate(
                user_id=owner_id,
                storage_ref=storage_ref,
                merchant=fields.merchant,
                transaction_date=fields.date,
                amount=fields.amount,
                currency=fields.currency,
                status=ReceiptStatus.UNVERIFIED
            ))
        except ReceiptTrackerError as e:
            logger.error(f"Persist failed for {filename}, image left at {storage_ref}: {e.message}")
            return self._failure(filename, FileStage.PERSIST, e)
        except Exception as e:
            logger.error(
                f"Unexpected persist error for {filename}, image left at {storage_ref}: {e}",
                exc_info=True
            )
            return self._failure(filename, FileStage.PERSIST, e)

        logger.info(f"Ingested {filename} as receipt {receipt.receipt_id}")
        return receipt

    def _extract(self, storage_ref: str, filename: str) -> ExtractedFields:
        """Run extraction, falling back to empty fields on any failure."""
        reason = "no attempt made"

        for attempt in range(1, self.max_extraction_attempts + 1):
            try:
                image_url = self.image_store.signed_url(storage_ref, ttl_seconds=self.signed_url_ttl)
            except ReceiptTrackerError as e:
                reason = f"could not sign image URL: {e.message}"
                break

            outcome = self.extractor.extract(image_url)
            if not isinstance(outcome, ExtractionFailure):
                return outcome

            reason = outcome.reason
            if attempt < self.max_extraction_attempts:
                logger.info(f"Extraction attempt {attempt} for {filename} failed: {reason}; retrying")

        logger.warning(f"Extraction degraded to manual entry for {filename}: {reason}")
        return ExtractedFields.empty(self.default_currency)

    @staticmethod
    def _failure(filename: str, stage: FileStage, error: Exception) -> FileError:
        reason = error.message if isinstance(error, ReceiptTrackerError) else str(error) or type(error).__name__
        return FileError(
            filename=filename,
            stage=stage,
            reason=reason,
            error_type=type(error).__name__
        )
