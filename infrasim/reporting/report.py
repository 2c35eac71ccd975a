"""
Level reports — per-file validation results for the batch driver.

Reads level files, which the validators themselves never do, and turns
every outcome (read failure, parse failure, validation errors) into data.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel

from infrasim.models.config import ValidatorConfig
from infrasim.models.validation import ValidationError
from infrasim.validation.pipeline import parse_level_text, validate_level

logger = logging.getLogger(__name__)

DOCUMENT_PATH = "document"


class LevelReport(BaseModel):
    """Validation result for one level file."""

    file: str
    level_id: Optional[str] = None
    parse_failed: bool = False
    errors: List[ValidationError] = []

    @property
    def ok(self) -> bool:
        return not self.errors


class BatchSummary(BaseModel):
    files: int
    passed: int
    failed: int

    @property
    def ok(self) -> bool:
        return self.failed == 0


def validate_file(path: Union[str, Path], config: Optional[ValidatorConfig] = None) -> LevelReport:
    """Read, parse and validate one level file."""
    path = Path(path)
    try:
        raw = path.read_bytes()
    except OSError as e:
        return LevelReport(
            file=path.name,
            parse_failed=True,
            errors=[ValidationError(path=DOCUMENT_PATH, message=f"cannot read file: {e}")],
        )

    parsed = parse_level_text(raw)
    if not parsed.ok:
        logger.info("Failed to parse %s: %s", path.name, parsed.error)
        return LevelReport(
            file=path.name,
            parse_failed=True,
            errors=[ValidationError(path=DOCUMENT_PATH, message=parsed.error)],
        )

    level_id = parsed.document.get("id")
    return LevelReport(
        file=path.name,
        level_id=level_id if isinstance(level_id, str) else None,
        errors=validate_level(parsed.document, config),
    )


def validate_directory(
    directory: Union[str, Path],
    config: Optional[ValidatorConfig] = None,
    pattern: str = "*.json",
) -> List[LevelReport]:
    """Validate every level file in a directory, in file-name order."""
    files = sorted(Path(directory).glob(pattern))
    logger.debug("Validating %d level file(s) in %s", len(files), directory)
    return [validate_file(f, config) for f in files]


def summarize(reports: List[LevelReport]) -> BatchSummary:
    failed = sum(1 for r in reports if not r.ok)
    return BatchSummary(files=len(reports), passed=len(reports) - failed, failed=failed)


def format_report(report: LevelReport) -> List[str]:
    """Plain-text lines for one report."""
    if report.ok:
        return [f"{report.file} is valid."]
    if report.parse_failed:
        return [f"Failed to parse {report.file}: {report.errors[0].message}"]
    return [f"Errors in {report.file}:"] + [f"  - {error}" for error in report.errors]
