"""Batch revalidation of pending documents against SUNAT.

Processes documents one at a time with a fixed pause in between. A
credential failure aborts the remaining worklist; every other failure is
recorded on the document and the batch moves on.
"""

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from sunat_engine.authority.errors import AuthorityRequestError, BatchAbortedError, CredentialError
from sunat_engine.authority.schema import ValidationStatus
from sunat_engine.batch.ports import (
    DocumentOutcomeRecord,
    DocumentRecord,
    DocumentStatus,
    DocumentStore,
    ReportingSink,
)
from sunat_engine.extraction.extractor import extract
from sunat_engine.extraction.schema import ExtractedInvoiceFields
from sunat_engine.ocr.service import OCRService
from sunat_engine.shared.config import Settings
from sunat_engine.shared.metrics import batch_documents_total
from sunat_engine.validation.controller import ValidationController

logger = logging.getLogger(__name__)


class BatchSummary(BaseModel):
    """Counts for one batch run."""

    total: int = 0
    validated: int = 0
    not_validated: int = 0
    skipped: int = 0
    errors: int = 0
    corrected: int = 0
    aborted: bool = False
    processed_ids: list[str] = Field(default_factory=list)

    def record(self, outcome: DocumentOutcomeRecord) -> None:
        self.total += 1
        self.processed_ids.append(outcome.document_id)
        if outcome.status is DocumentStatus.VALIDATED:
            self.validated += 1
            if outcome.perturbation:
                self.corrected += 1
        elif outcome.status is DocumentStatus.NOT_VALIDATED:
            self.not_validated += 1
        elif outcome.status is DocumentStatus.SKIPPED:
            self.skipped += 1
        else:
            self.errors += 1


class ExtractionFailure(Exception):
    """A document's fields could not be obtained (no content or OCR failure)."""


class BatchOrchestrator:
    """Runs extraction and validation over a document worklist."""

    def __init__(
        self,
        settings: Settings,
        controller: ValidationController,
        store: DocumentStore,
        sink: ReportingSink | None = None,
        ocr_service: OCRService | None = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        """Initialize orchestrator.

        Args:
            settings: Application settings (pause, attempt budget)
            controller: Validation controller bound to a SUNAT client
            store: Source of pending documents and sink of outcomes
            sink: Optional reporting mirror
            ocr_service: OCR service for documents that only carry image bytes
            sleep: Pause function between documents
            now: Clock for ``verified_at`` timestamps
        """
        self.settings = settings
        self.controller = controller
        self.store = store
        self.sink = sink
        self._ocr_service = ocr_service
        self._sleep = sleep
        self._now = now

    @property
    def ocr_service(self) -> OCRService:
        if self._ocr_service is None:
            self._ocr_service = OCRService(self.settings)
        return self._ocr_service

    def run(self, max_attempts: int | None = None) -> BatchSummary:
        """Process every pending document.

        Args:
            max_attempts: Attempt budget per document (defaults to settings)

        Returns:
            Summary of the run

        Raises:
            BatchAbortedError: If SUNAT credentials could not be acquired
        """
        summary = BatchSummary()
        logger.info("Starting batch revalidation")

        for index, document in enumerate(self.store.pending_documents()):
            if index > 0 and self.settings.batch_pause_seconds > 0:
                self._sleep(self.settings.batch_pause_seconds)

            try:
                outcome = self.process_document(document, max_attempts)
            except CredentialError as e:
                summary.aborted = True
                logger.error(f"Aborting batch at document {document.id}: {e}")
                raise BatchAbortedError(f"Batch aborted: {e}", summary) from e

            self.store.save_outcome(outcome)
            if self.sink is not None:
                self.sink.publish(outcome)
            summary.record(outcome)
            batch_documents_total.labels(status=outcome.status.value).inc()

        logger.info(
            f"Batch finished: {summary.total} documents, {summary.validated} validated "
            f"({summary.corrected} corrected), {summary.not_validated} not validated, "
            f"{summary.skipped} skipped, {summary.errors} errors"
        )
        return summary

    def _fields_for(self, document: DocumentRecord) -> ExtractedInvoiceFields:
        if document.extracted_fields is not None:
            return document.extracted_fields

        ocr_result = document.ocr_result
        if ocr_result is None and document.image_bytes:
            ocr_result = self.ocr_service.extract_from_bytes(document.image_bytes)

        if ocr_result is None:
            raise ExtractionFailure("Document has no image, OCR result or extracted fields")
        if not ocr_result.success:
            raise ExtractionFailure(f"OCR failed: {ocr_result.error}")

        return extract(ocr_result, self.settings)

    def process_document(
        self, document: DocumentRecord, max_attempts: int | None = None
    ) -> DocumentOutcomeRecord:
        """Extract (if needed) and validate one document.

        Raises:
            CredentialError: Propagated so the batch can stop
        """
        logger.info(f"Processing document {document.id}")

        try:
            fields = self._fields_for(document)
        except ExtractionFailure as e:
            logger.warning(f"Document {document.id}: {e}")
            return DocumentOutcomeRecord(
                document_id=document.id, status=DocumentStatus.ERROR, error=str(e)
            )

        try:
            result = self.controller.validate_with_retries(fields, max_attempts)
        except AuthorityRequestError as e:
            logger.warning(f"Document {document.id}: SUNAT request failed: {e}")
            return DocumentOutcomeRecord(
                document_id=document.id,
                updated_fields=fields,
                verified_at=self._now(),
                status=DocumentStatus.ERROR,
                error=str(e),
            )

        if result.skipped:
            return DocumentOutcomeRecord(
                document_id=document.id,
                updated_fields=fields,
                status=DocumentStatus.SKIPPED,
                error=result.skipped_reason,
            )

        corrected = result.corrected_fields(fields)
        if corrected is not None:
            logger.info(f"Document {document.id}: corrected via {result.perturbation}")

        found = (
            result.outcome is not None and result.outcome.status is not ValidationStatus.NOT_FOUND
        )
        return DocumentOutcomeRecord(
            document_id=document.id,
            updated_fields=corrected or fields,
            outcome=result.outcome,
            verified_at=self._now(),
            attempt_count=result.attempts_used,
            perturbation=result.perturbation,
            status=DocumentStatus.VALIDATED if found else DocumentStatus.NOT_VALIDATED,
        )
