"""File-based document store and reporting sink for command-line runs.

Input is JSON Lines, one document per line:

    {"id": "doc-1", "image_path": "scans/doc-1.png"}
    {"id": "doc-2", "ocr_text": "FACTURA ELECTRONICA\\nRUC: 20123456789\\n..."}
    {"id": "doc-3", "words": [["FACTURA", 10.0], ["ELECTRONICA", 10.5]]}
    {"id": "doc-4", "extracted_fields": {"issuer_tax_id": "20123456789", ...}}

Outcomes are appended as JSON Lines; the report is a flat CSV.
"""

import csv
import json
import logging
from collections.abc import Iterator
from pathlib import Path

from pydantic import ValidationError

from sunat_engine.batch.ports import DocumentOutcomeRecord, DocumentRecord
from sunat_engine.extraction.schema import ExtractedInvoiceFields, OcrWord
from sunat_engine.ocr.service import OCRResult

logger = logging.getLogger(__name__)

REPORT_COLUMNS = [
    "document_id",
    "status",
    "sunat_status",
    "registry_status",
    "attempt_count",
    "perturbation",
    "issuer_tax_id",
    "document_series_number",
    "issue_date",
    "total_amount",
    "verified_at",
    "error",
]


def parse_document_line(raw: dict, base_dir: Path) -> DocumentRecord:
    """Convert one JSONL object into a DocumentRecord.

    Args:
        raw: Decoded JSON object
        base_dir: Directory that relative ``image_path`` values resolve against

    Returns:
        DocumentRecord

    Raises:
        ValueError: If the object has no id or malformed fields
    """
    if "id" not in raw:
        raise ValueError("Document is missing 'id'")

    image_bytes = None
    if raw.get("image_path"):
        image_path = Path(raw["image_path"])
        if not image_path.is_absolute():
            image_path = base_dir / image_path
        image_bytes = image_path.read_bytes()

    ocr_result = None
    if raw.get("words") or raw.get("ocr_text"):
        words = [OcrWord(text=str(text), top=float(top)) for text, top in raw.get("words", [])]
        ocr_result = OCRResult(text=raw.get("ocr_text", ""), words=words)

    extracted_fields = None
    if raw.get("extracted_fields"):
        extracted_fields = ExtractedInvoiceFields.model_validate(raw["extracted_fields"])

    return DocumentRecord(
        id=str(raw["id"]),
        image_bytes=image_bytes,
        ocr_result=ocr_result,
        extracted_fields=extracted_fields,
    )


class JsonlDocumentStore:
    """Reads pending documents from one JSONL file and appends outcomes to another."""

    def __init__(self, input_path: Path, output_path: Path) -> None:
        self.input_path = input_path
        self.output_path = output_path

    def pending_documents(self) -> Iterator[DocumentRecord]:
        """Yield documents lazily; malformed lines are logged and skipped."""
        with open(self.input_path, encoding="utf-8") as f:
            for line_num, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    yield parse_document_line(json.loads(line), self.input_path.parent)
                except (json.JSONDecodeError, ValidationError, ValueError, OSError) as e:
                    logger.warning(f"Line {line_num}: invalid document, skipping. Error: {e}")

    def save_outcome(self, record: DocumentOutcomeRecord) -> None:
        with open(self.output_path, "a", encoding="utf-8") as f:
            f.write(record.model_dump_json() + "\n")


class CsvReportingSink:
    """Appends one CSV row per outcome, writing the header on first use."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def publish(self, record: DocumentOutcomeRecord) -> None:
        write_header = not self.path.exists() or self.path.stat().st_size == 0
        fields = record.updated_fields
        outcome = record.outcome

        row = {
            "document_id": record.document_id,
            "status": record.status.value,
            "sunat_status": outcome.status.value if outcome else "",
            "registry_status": (outcome.counterparty_registry_status or "") if outcome else "",
            "attempt_count": record.attempt_count,
            "perturbation": record.perturbation or "",
            "issuer_tax_id": (fields.issuer_tax_id or "") if fields else "",
            "document_series_number": (fields.document_series_number or "") if fields else "",
            "issue_date": fields.issue_date.isoformat() if fields and fields.issue_date else "",
            "total_amount": str(fields.total_amount) if fields and fields.total_amount else "",
            "verified_at": record.verified_at.isoformat() if record.verified_at else "",
            "error": record.error or "",
        }

        with open(self.path, "a", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=REPORT_COLUMNS)
            if write_header:
                writer.writeheader()
            writer.writerow(row)
