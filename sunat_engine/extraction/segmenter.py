"""Line segmentation for OCR word boxes.

Groups words into text lines by vertical proximity of their bounding boxes.
"""

from collections.abc import Iterable

from sunat_engine.extraction.schema import OcrWord

DEFAULT_LINE_THRESHOLD_PX = 3.0


def segment_lines(
    words: Iterable[OcrWord | tuple[str, float]],
    threshold: float = DEFAULT_LINE_THRESHOLD_PX,
) -> list[str]:
    """Group words (in reading order) into lines.

    A new line starts whenever a word's top coordinate differs from the
    previous word's by more than ``threshold`` pixels.

    Args:
        words: Sequence of (text, top) pairs in reading order
        threshold: Maximum vertical distance for words on the same line

    Returns:
        List of line strings (empty for empty input)
    """
    lines: list[str] = []
    current: list[str] = []
    last_top: float | None = None

    for text, top in words:
        token = text.strip()
        if not token:
            continue

        if last_top is not None and abs(top - last_top) > threshold:
            if current:
                lines.append(" ".join(current))
            current = [token]
        else:
            current.append(token)

        last_top = top

    if current:
        lines.append(" ".join(current))

    return lines
