"""Validator and simulation configuration."""

from typing import Optional

from pydantic import BaseModel, Field


class ValidatorConfig(BaseModel):
    """Limits enforced by the Semantic Validator."""

    max_lifecycle_ticks: int = Field(gt=0, default=1000)   # warning + duration bound
    horizon_ticks: int = Field(gt=0, default=100_000)      # Longest job interval that can still fire


class SimulationConfig(BaseModel):
    """Configuration for the Simulation Engine."""

    seed: Optional[int] = None
    tick_interval_seconds: float = 1.0      # Cadence of run_async
    max_history: int = 10_000               # Snapshots retained by the engine
