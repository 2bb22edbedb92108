"""Unit tests for line segmentation of OCR word boxes."""

from sunat_engine.extraction.schema import OcrWord
from sunat_engine.extraction.segmenter import segment_lines


def test_empty_input_yields_no_lines() -> None:
    """Test that no words produce no lines."""
    assert segment_lines([]) == []


def test_words_on_same_row_are_joined() -> None:
    """Test that words within the threshold share a line."""
    words = [OcrWord("TOTAL", 100.0), OcrWord("A", 101.0), OcrWord("PAGAR", 102.5)]

    assert segment_lines(words) == ["TOTAL A PAGAR"]


def test_new_line_when_top_jumps() -> None:
    """Test that a vertical jump beyond the threshold starts a new line."""
    words = [
        OcrWord("RUC:", 10.0),
        OcrWord("20123456789", 11.0),
        OcrWord("F001-00012345", 30.0),
    ]

    assert segment_lines(words) == ["RUC: 20123456789", "F001-00012345"]


def test_threshold_is_compared_with_previous_word() -> None:
    """Test that gradual drift does not split a line."""
    words = [OcrWord("a", 0.0), OcrWord("b", 3.0), OcrWord("c", 6.0), OcrWord("d", 9.0)]

    assert segment_lines(words) == ["a b c d"]


def test_tight_threshold_splits_close_rows() -> None:
    """Test that rows 4px apart stay separate with the default threshold."""
    words = [OcrWord("OP GRAVADA", 200.0), OcrWord("100.00", 200.0), OcrWord("IGV", 204.0)]

    assert segment_lines(words) == ["OP GRAVADA 100.00", "IGV"]


def test_custom_threshold() -> None:
    """Test that a larger threshold merges rows."""
    words = [OcrWord("a", 0.0), OcrWord("b", 8.0)]

    assert segment_lines(words, threshold=10.0) == ["a b"]


def test_blank_tokens_are_skipped() -> None:
    """Test that whitespace-only words are ignored."""
    words = [OcrWord("  ", 0.0), OcrWord("FACTURA", 0.0), OcrWord("", 50.0)]

    assert segment_lines(words) == ["FACTURA"]


def test_accepts_plain_tuples() -> None:
    """Test that (text, top) tuples work as well as OcrWord."""
    assert segment_lines([("FACTURA", 1.0), ("ELECTRONICA", 1.0)]) == ["FACTURA ELECTRONICA"]
