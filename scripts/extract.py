#!/usr/bin/env python3
"""
CLI extract script — pulls debit transactions out of bank-statement PDFs.

Usage:
    python scripts/extract.py --pdf ./statements/march.pdf
    python scripts/extract.py --pdf-dir ./statements --output debits.json --model sonnet
"""

from __future__ import annotations

import argparse
import asyncio
import glob
import json
import logging
import os
import sys

# Ensure project root is on path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), ".."))

from statement_extractor import config  # noqa: E402
from statement_extractor.errors import CostLimitExceeded, DocumentParseError  # noqa: E402
from statement_extractor.ingest.pipeline import extract_transactions  # noqa: E402
from statement_extractor.llm.cost_tracker import cost_tracker  # noqa: E402

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger("extract")


def _collect_pdf_paths(pdf: str | None, pdf_dir: str | None) -> list[str]:
    if pdf:
        return [os.path.abspath(pdf)]
    if pdf_dir:
        return sorted(glob.glob(os.path.join(os.path.abspath(pdf_dir), "*.pdf")))
    return []


async def _extract_all(paths: list[str], model: str | None, pages_per_chunk: int | None) -> dict:
    results: dict[str, dict] = {}
    for path in paths:
        name = os.path.basename(path)
        logger.info("=== Extracting: %s ===", name)
        with open(path, "rb") as f:
            data = f.read()
        try:
            result = await extract_transactions(data, model=model, pages_per_chunk=pages_per_chunk)
        except DocumentParseError as e:
            logger.error("FAILED: %s: %s", name, e)
            results[name] = {"status": "failed", "error": str(e)}
            continue
        except CostLimitExceeded as e:
            logger.error("Cost limit reached, stopping: %s", e)
            results[name] = {"status": "failed", "error": str(e)}
            break

        logger.info(
            "  [DONE] %d debits (%d chunks, %d failed)",
            result.final_transactions, result.chunks_total, result.chunks_failed,
        )
        results[name] = {"status": "completed", **result.model_dump()}
    return results


def main():
    parser = argparse.ArgumentParser(description="Extract debit transactions from statement PDFs")
    parser.add_argument("--pdf", help="Path to a single PDF file")
    parser.add_argument("--pdf-dir", help="Directory containing PDF files")
    parser.add_argument("--model", default=None, help="Model alias (haiku or sonnet)")
    parser.add_argument(
        "--pages-per-chunk", type=int, default=None,
        help=f"Pages per model call (default {config.PAGES_PER_CHUNK})",
    )
    parser.add_argument("--output", help="Write results as JSON to this file")
    args = parser.parse_args()

    paths = _collect_pdf_paths(args.pdf, args.pdf_dir)
    if not paths:
        logger.error("No PDF files found.")
        sys.exit(1)

    logger.info("Found %d PDF(s) to extract.", len(paths))
    results = asyncio.run(_extract_all(paths, args.model, args.pages_per_chunk))

    if args.output:
        with open(args.output, "w") as f:
            json.dump(results, f, indent=2, ensure_ascii=False)
        logger.info("Results written to %s", args.output)
    else:
        print(json.dumps(results, indent=2, ensure_ascii=False))

    stats = cost_tracker.get_stats()
    completed = sum(1 for r in results.values() if r["status"] == "completed")
    logger.info("=" * 60)
    logger.info("EXTRACT SUMMARY")
    logger.info("  Completed: %d", completed)
    logger.info("  Failed:    %d", len(results) - completed)
    logger.info("  Skipped:   %d", len(paths) - len(results))
    logger.info("  Cost:      $%.4f over %d calls", stats["daily_total"], stats["total_requests"])
    logger.info("=" * 60)


if __name__ == "__main__":
    main()
