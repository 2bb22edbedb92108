"""Invoice data models for heuristic field extraction.

Fields follow the Peruvian electronic comprobante (factura, boleta,
notas de crédito/débito) as validated by SUNAT.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import NamedTuple

from pydantic import BaseModel, Field


class OcrWord(NamedTuple):
    """A single OCR word and the top coordinate of its bounding box."""

    text: str
    top: float


class DocumentType(str, Enum):
    """SUNAT catalogue 01 document codes."""

    INVOICE = "01"
    RECEIPT = "03"
    CREDIT_NOTE = "07"
    DEBIT_NOTE = "08"


class CurrencyCode(str, Enum):
    """Currencies seen on local comprobantes."""

    PEN = "PEN"
    USD = "USD"


class ExtractedInvoiceFields(BaseModel):
    """Structured comprobante data inferred from OCR text.

    Every field is optional: a detector that finds nothing leaves its field unset.
    """

    # Issuer information
    issuer_tax_id: str | None = Field(None, description="RUC of the issuer (11 digits)")
    issuer_name: str | None = Field(None, description="Registered name of the issuer")
    issuer_address: str | None = Field(None, description="Fiscal address of the issuer")

    # Document identity
    document_series_number: str | None = Field(
        None, description="Series and correlative number, e.g. F001-00012345"
    )
    document_type: DocumentType | None = Field(None, description="SUNAT document type")
    issue_date: date | None = Field(None, description="Date the document was issued")

    # Financial details
    subtotal: Decimal | None = Field(None, ge=0, description="Taxable base (OP. GRAVADA)")
    tax_amount: Decimal | None = Field(None, ge=0, description="IGV amount")
    tax_rate_percent: int | None = Field(None, ge=0, description="IGV rate in percent")
    total_amount: Decimal | None = Field(None, ge=0, description="Total to pay")
    currency_code: CurrencyCode = Field(CurrencyCode.PEN, description="ISO 4217 currency")

    # Counterparty (buyer) information
    counterparty_tax_id: str | None = Field(None, description="RUC of the buyer")
    counterparty_national_id: str | None = Field(None, description="DNI of the buyer")

    def split_series_number(self) -> tuple[str, str] | None:
        """Split ``document_series_number`` into (series, number).

        Returns:
            Tuple of series and number, or None if the value is missing or malformed
        """
        if not self.document_series_number:
            return None
        series, sep, number = self.document_series_number.partition("-")
        if not sep or not series.isalnum() or not number.isdigit():
            return None
        return series.upper(), number
