"""Validation results — errors are data, not control flow."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from infrasim.models.level import Level


class ValidationError(BaseModel):
    """One level-authoring problem, located by its document path."""

    model_config = ConfigDict(frozen=True)

    path: str                               # e.g., "nodes[2].capacity"
    message: str

    def __str__(self) -> str:
        return f"[{self.path}]: {self.message}"


class ParseResult(BaseModel):
    """Either a parsed level document or a description of why it could not be parsed."""

    document: Optional[dict] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ValidationOutcome(BaseModel):
    """The typed level (when one could be built) plus every error found."""

    level: Optional[Level] = None
    errors: List[ValidationError] = []

    @property
    def ok(self) -> bool:
        return self.level is not None and not self.errors
