"""OCR service using Tesseract.

Produces both the full text and per-word boxes (text plus top coordinate),
which the line segmenter needs to rebuild invoice lines.

Based on pytesseract documentation:
https://github.com/madmaze/pytesseract
"""

import io
import logging
import os
import time
from pathlib import Path

import pytesseract
from PIL import Image
from pydantic import BaseModel, Field

from sunat_engine.extraction.schema import OcrWord
from sunat_engine.shared.config import Settings
from sunat_engine.shared.metrics import ocr_processing_duration_seconds, ocr_requests_total

logger = logging.getLogger(__name__)


class OCRResult(BaseModel):
    """Result of OCR operation.

    Attributes:
        text: Extracted text content
        words: Recognized words with the top coordinate of their box
        success: Whether operation succeeded
        error: Error message if operation failed
    """

    text: str = ""
    words: list[OcrWord] = Field(default_factory=list)
    success: bool = True
    error: str | None = None


class OCRService:
    """OCR service using Tesseract engine.

    Failures are reported through ``OCRResult.success``; nothing is raised.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize OCR service.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self._configure_tesseract()

    def _configure_tesseract(self) -> None:
        """Configure Tesseract command path from environment.

        Allows overriding default Tesseract path via TESSERACT_CMD environment variable.
        """
        tesseract_cmd = os.getenv("TESSERACT_CMD")
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def is_available(self) -> bool:
        """Check whether the Tesseract binary can be invoked."""
        try:
            pytesseract.get_tesseract_version()
            return True
        except (pytesseract.TesseractNotFoundError, OSError) as e:
            logger.warning(f"Tesseract unavailable: {e}")
            return False

    def extract_text(self, image_path: Path) -> OCRResult:
        """Extract text and word boxes from an image file.

        Args:
            image_path: Path to image file

        Returns:
            OCRResult with extracted text or error information
        """
        if not image_path.exists():
            ocr_requests_total.labels(status="failed").inc()
            return OCRResult(success=False, error=f"Image file not found: {image_path}")

        try:
            with Image.open(image_path) as image:
                return self._recognize(image)
        except Exception as e:
            logger.error(f"OCR failed for {image_path}: {e}")
            ocr_requests_total.labels(status="failed").inc()
            return OCRResult(success=False, error=f"OCR processing failed: {str(e)}")

    def extract_from_bytes(self, data: bytes) -> OCRResult:
        """Extract text and word boxes from in-memory image bytes.

        Args:
            data: Encoded image (PNG, JPEG, TIFF...)

        Returns:
            OCRResult with extracted text or error information
        """
        if not data:
            ocr_requests_total.labels(status="failed").inc()
            return OCRResult(success=False, error="Empty image data")

        try:
            with Image.open(io.BytesIO(data)) as image:
                return self._recognize(image)
        except Exception as e:
            logger.error(f"OCR failed for in-memory image: {e}")
            ocr_requests_total.labels(status="failed").inc()
            return OCRResult(success=False, error=f"OCR processing failed: {str(e)}")

    def _recognize(self, image: Image.Image) -> OCRResult:
        start_time = time.time()
        lang = self.settings.ocr_language

        text = pytesseract.image_to_string(image, lang=lang)
        data = pytesseract.image_to_data(image, lang=lang, output_type=pytesseract.Output.DICT)

        words = [
            OcrWord(text=token.strip(), top=float(top))
            for token, top in zip(data.get("text", []), data.get("top", []), strict=False)
            if token and token.strip()
        ]

        duration = time.time() - start_time
        ocr_processing_duration_seconds.observe(duration)
        ocr_requests_total.labels(status="success").inc()
        logger.info(f"OCR recognized {len(words)} words in {duration:.2f}s")

        return OCRResult(text=text, words=words, success=True)
