"""Records and collaborator interfaces for batch revalidation.

The document store and reporting sink are owned by the surrounding
application; only their narrow interfaces are defined here.
"""

from collections.abc import Iterable
from datetime import datetime
from enum import Enum
from typing import Protocol

from pydantic import BaseModel

from sunat_engine.authority.schema import ValidationOutcome
from sunat_engine.extraction.schema import ExtractedInvoiceFields
from sunat_engine.ocr.service import OCRResult


class DocumentStatus(str, Enum):
    """Per-document result of a batch run."""

    VALIDATED = "validated"  # SUNAT recognized the comprobante (any status but NOT_FOUND)
    NOT_VALIDATED = "not_validated"  # NOT_FOUND after every attempt
    SKIPPED = "skipped"  # not enough fields to build a query
    ERROR = "error"  # OCR or SUNAT request failure


class DocumentRecord(BaseModel):
    """A document waiting for validation.

    At least one of the three payloads is expected; previously extracted
    fields take precedence over OCR output, which takes precedence over raw
    image bytes.
    """

    id: str
    image_bytes: bytes | None = None
    ocr_result: OCRResult | None = None
    extracted_fields: ExtractedInvoiceFields | None = None


class DocumentOutcomeRecord(BaseModel):
    """What the orchestrator reports back for one document.

    Attributes:
        document_id: Id of the processed document
        updated_fields: Fields after extraction, with the matched correction applied
        outcome: Final validation outcome, if validation ran
        verified_at: When SUNAT was consulted
        attempt_count: Validation calls made for this document
        perturbation: Perturbation that produced the match, if any
        status: Batch status for the document
        error: Failure or skip reason
    """

    document_id: str
    updated_fields: ExtractedInvoiceFields | None = None
    outcome: ValidationOutcome | None = None
    verified_at: datetime | None = None
    attempt_count: int = 0
    perturbation: str | None = None
    status: DocumentStatus
    error: str | None = None


class DocumentStore(Protocol):
    """Source of pending documents and destination of outcomes."""

    def pending_documents(self) -> Iterable[DocumentRecord]:
        """Yield documents that need validation."""
        ...

    def save_outcome(self, record: DocumentOutcomeRecord) -> None:
        """Persist the outcome for one document."""
        ...


class ReportingSink(Protocol):
    """Read-only mirror (spreadsheet, reporting database) of outcomes."""

    def publish(self, record: DocumentOutcomeRecord) -> None:
        """Publish one outcome for display."""
        ...
