"""
main.py
───────
Batch entry point: score one KYC submission read from a JSON file and print
the resulting RiskAssessment as JSON on stdout.

Usage:
  python -m kyc_engine.main path/to/submission.json

The submission file uses the KYCSubmission shape (documents, face_verification,
additional_data). Logs go to stderr via structlog; stdout carries only the
assessment so the output can be piped.
"""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import structlog

from kyc_engine.core.config import Settings, get_settings
from kyc_engine.core.logging_config import configure_logging
from kyc_engine.schemas.assessment import RiskAssessment
from kyc_engine.schemas.signals import KYCSubmission
from kyc_engine.scoring.engine import assess_risk

logger = structlog.get_logger(__name__)


def load_submission(path: str | Path) -> KYCSubmission:
    raw = Path(path).read_text(encoding="utf-8")
    return KYCSubmission.model_validate_json(raw)


def run_assessment(path: str | Path, settings: Optional[Settings] = None) -> RiskAssessment:
    """
    Full batch cycle:
      1. Parse + validate the submission file
      2. Run the engine
      3. Return the assessment (caller decides how to emit it)
    """
    settings = settings or get_settings()
    submission = load_submission(path)
    logger.info("batch_submission_loaded", path=str(path), submission_id=submission.submission_id)
    return assess_risk(submission, settings=settings)


def main(argv: Optional[list[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 1:
        print("usage: python -m kyc_engine.main <submission.json>", file=sys.stderr)
        return 2

    configure_logging()
    try:
        assessment = run_assessment(args[0])
    except Exception as e:
        logger.error("batch_assessment_failed", path=args[0], error=str(e))
        print(f"✗ Assessment failed: {e}", file=sys.stderr)
        return 1

    print(assessment.model_dump_json(indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
