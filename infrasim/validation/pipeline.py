"""
Validation pipeline — the entry point for level documents.

raw text → parse_level_text (ParseResult) → StructuralValidator →
SemanticValidator (only when structurally clean) → accepted Level.

No file I/O happens here; reading level files is the caller's job.
"""

import json
import logging
import math
from typing import Any, List, Optional, Union

from infrasim.models.config import ValidatorConfig
from infrasim.models.level import Level
from infrasim.models.validation import ParseResult, ValidationError, ValidationOutcome
from infrasim.validation.semantic import SemanticValidator
from infrasim.validation.structural import StructuralValidator

logger = logging.getLogger(__name__)


class LevelValidationError(Exception):
    """Raised by load_level when a document does not describe a valid level."""

    def __init__(self, errors: List[ValidationError]):
        self.errors = errors
        summary = "; ".join(str(e) for e in errors[:3])
        more = f" (+{len(errors) - 3} more)" if len(errors) > 3 else ""
        super().__init__(f"Level failed validation: {summary}{more}")


def _reject_constant(name: str) -> float:
    # json accepts NaN, Infinity and -Infinity by default; level documents may not.
    raise ValueError(f"non-finite number {name} is not allowed")


def _finite_float(literal: str) -> float:
    value = float(literal)
    if not math.isfinite(value):
        raise ValueError(f"number {literal} is out of range")
    return value


def parse_level_text(text: Union[str, bytes]) -> ParseResult:
    """Parse a level document. Never raises for malformed input."""
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as e:
            return ParseResult(error=f"invalid encoding: {e}")

    try:
        document = json.loads(text, parse_float=_finite_float, parse_constant=_reject_constant)
    except json.JSONDecodeError as e:
        return ParseResult(error=f"invalid JSON: {e.msg} (line {e.lineno}, column {e.colno})")
    except ValueError as e:
        return ParseResult(error=f"invalid JSON: {e}")

    if not isinstance(document, dict):
        return ParseResult(error=f"level document must be a JSON object, got {type(document).__name__}")
    return ParseResult(document=document)


def validate_document(document: Any, config: Optional[ValidatorConfig] = None) -> ValidationOutcome:
    """Run structural then semantic validation, returning the level and all errors."""
    outcome = StructuralValidator().validate(document)
    if outcome.level is None:
        return outcome

    errors = SemanticValidator(config).validate(outcome.level)
    if errors:
        return ValidationOutcome(errors=errors)
    return outcome


def validate_level(document: Any, config: Optional[ValidatorConfig] = None) -> List[ValidationError]:
    """
    Validate a parsed level document.

    Returns the ordered list of errors; an empty list means the level is valid.
    Deterministic: the same document always yields the same list.
    """
    return validate_document(document, config).errors


def load_level(document: Any, config: Optional[ValidatorConfig] = None) -> Level:
    """Return the accepted Level or raise LevelValidationError carrying every error."""
    outcome = validate_document(document, config)
    if not outcome.ok:
        logger.info("Rejected level %r with %d error(s)", _level_id(document), len(outcome.errors))
        raise LevelValidationError(outcome.errors)
    return outcome.level


def _level_id(document: Any) -> Optional[str]:
    if isinstance(document, dict):
        return document.get("id")
    return None
