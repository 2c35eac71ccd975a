"""Effects — how jobs and incidents change node and flow metrics."""

from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel

from infrasim.models.fields import Name, Number


class EffectMode(str, Enum):
    MULTIPLY = "multiply"   # value * magnitude
    ADD = "add"             # value +/- magnitude
    PERCENT = "percent"     # value * (1 +/- magnitude / 100)


class EffectDirection(str, Enum):
    AMPLIFY = "amplify"
    DAMPEN = "dampen"


class Impact(BaseModel):
    """
    A change applied to one named metric.

    The direction is declared explicitly rather than inferred from the
    magnitude, so "reduce storage_usage by 20%" is written as
    ``{mode: percent, direction: dampen, magnitude: 20}`` and a 10x traffic
    spike as ``{mode: multiply, direction: amplify, magnitude: 10}``.
    """

    metric: Name                            # e.g., "volume", "storage_usage"
    mode: EffectMode = EffectMode.MULTIPLY
    direction: EffectDirection
    magnitude: Number

    def factor(self) -> float:
        """Multiplicative factor contributed by this impact (1.0 for additive impacts)."""
        if self.mode == EffectMode.MULTIPLY:
            return self.magnitude
        if self.mode == EffectMode.PERCENT:
            sign = 1 if self.direction == EffectDirection.AMPLIFY else -1
            return 1 + sign * self.magnitude / 100.0
        return 1.0

    def delta(self) -> float:
        """Signed additive delta contributed by this impact (0.0 for multiplicative impacts)."""
        if self.mode != EffectMode.ADD:
            return 0.0
        if self.direction == EffectDirection.DAMPEN:
            return -self.magnitude
        return self.magnitude


class InjectEffect(BaseModel):
    """Absolute request volume injected into the job target on firing ticks."""

    kind: Literal["inject"] = "inject"
    volume: Number


class MetricEffect(Impact):
    """An impact applied to the job target on firing ticks."""

    kind: Literal["metric"] = "metric"


JobEffect = Union[InjectEffect, MetricEffect]


class Overlay(BaseModel):
    """Compounded impacts on one metric for a single tick."""

    factor: float = 1.0
    delta: float = 0.0

    def add(self, impact: Impact) -> None:
        self.factor *= impact.factor()
        self.delta += impact.delta()

    def apply(self, value: float) -> float:
        return value * self.factor + self.delta
