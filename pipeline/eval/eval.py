"""Evaluation harness for heuristic comprobante extraction.

Runs the line-based extractor over a gold dataset and reports per-field
precision, recall and F1.

Gold file format (JSON list):
    [{"lines": ["FACTURA ELECTRONICA", ...], "expected": {"issuer_tax_id": "...", ...}}]

An optional "ocr_text" key supplies the raw text for the anchor pass.
"""

import argparse
import json
import logging
from pathlib import Path
from typing import Any

from pipeline.eval.metrics import evaluate_extraction
from sunat_engine.extraction.extractor import extract_from_lines
from sunat_engine.extraction.schema import ExtractedInvoiceFields
from sunat_engine.shared.config import Settings, get_settings

logger = logging.getLogger(__name__)

DEFAULT_GOLD_FILE = Path("data/gold/comprobantes.json")


def load_gold_dataset(gold_file: Path) -> list[tuple[list[str], str | None, ExtractedInvoiceFields]]:
    """Load gold samples.

    Args:
        gold_file: Path to gold dataset JSON

    Returns:
        List of (lines, raw_text, expected_fields) tuples
    """
    with open(gold_file, encoding="utf-8") as f:
        data = json.load(f)

    samples = []
    for item in data:
        expected = ExtractedInvoiceFields.model_validate(item["expected"])
        samples.append((list(item["lines"]), item.get("ocr_text"), expected))
    return samples


def run_evaluation(gold_file: Path, settings: Settings | None = None) -> dict[str, Any]:
    """Run the extractor on every gold sample and score it.

    Args:
        gold_file: Path to gold dataset JSON file
        settings: Application settings (defaults to environment settings)

    Returns:
        Evaluation results dict
    """
    settings = settings or get_settings()
    samples = load_gold_dataset(gold_file)
    logger.info(f"Evaluating {len(samples)} samples from {gold_file}")

    expected_list = [expected for _, _, expected in samples]
    predicted_list = [extract_from_lines(lines, raw_text, settings) for lines, raw_text, _ in samples]

    report = evaluate_extraction(expected_list, predicted_list)

    return {
        "total_samples": report.total_samples,
        "macro_f1": round(report.macro_f1, 4),
        "field_metrics": {
            field: {
                "precision": round(metrics.precision, 4),
                "recall": round(metrics.recall, 4),
                "f1": round(metrics.f1, 4),
                "support": metrics.support,
            }
            for field, metrics in report.field_metrics.items()
        },
    }


def print_results(results: dict[str, Any]) -> None:
    print("\n" + "=" * 64)
    print("COMPROBANTE EXTRACTION EVALUATION RESULTS")
    print("=" * 64)
    print(f"\nTotal Samples: {results['total_samples']}")
    print(f"Macro F1 Score: {results['macro_f1']:.1%}\n")

    print(f"{'Field':<26} {'Precision':<12} {'Recall':<12} {'F1':<12}")
    print("-" * 64)
    for field, metrics in results["field_metrics"].items():
        print(
            f"{field:<26} {metrics['precision']:<12.1%} "
            f"{metrics['recall']:<12.1%} {metrics['f1']:<12.1%}"
        )
    print("=" * 64)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Evaluate heuristic field extraction")
    parser.add_argument("--gold", type=Path, default=DEFAULT_GOLD_FILE, help="Gold dataset JSON")
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    print_results(run_evaluation(args.gold))
