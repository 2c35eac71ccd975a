"""
Infrasim API — FastAPI endpoints.

Exposes the level kernel over HTTP for:
- Level validation
- Seeded simulation runs
- Configuration inspection
"""

from typing import List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from infrasim.models.config import SimulationConfig, ValidatorConfig
from infrasim.models.validation import ValidationError
from infrasim.simulation.engine import SimulationEngine
from infrasim.validation.pipeline import LevelValidationError, load_level, validate_level


# --- Request/Response Models ---

class ValidateResponse(BaseModel):
    valid: bool
    errors: List[ValidationError]


class SimulateRequest(BaseModel):
    level: dict
    ticks: int = Field(ge=1, le=10_000, default=100)
    seed: Optional[int] = None
    include_snapshots: bool = True


# --- Application Factory ---

def create_app(
    validator_config: Optional[ValidatorConfig] = None,
    simulation_config: Optional[SimulationConfig] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Infrasim Level API",
        description="Validation and simulation of infrastructure survival levels",
        version="0.1.0",
    )

    v_config = validator_config or ValidatorConfig()
    s_config = simulation_config or SimulationConfig()

    app.state.validator_config = v_config
    app.state.simulation_config = s_config

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/config")
    def get_config():
        """Current validator and simulation configuration."""
        return {
            "validator": v_config.model_dump(),
            "simulation": s_config.model_dump(),
        }

    # === LEVELS ===

    @app.post("/levels/validate", response_model=ValidateResponse)
    def validate(document: dict):
        """Validate a level document. Problems come back as data, never as a 4xx."""
        errors = validate_level(document, v_config)
        return ValidateResponse(valid=not errors, errors=errors)

    @app.post("/levels/simulate")
    def simulate(req: SimulateRequest):
        """Validate and run a level for a number of ticks."""
        try:
            level = load_level(req.level, v_config)
        except LevelValidationError as e:
            raise HTTPException(
                422,
                {"message": "Level failed validation", "errors": [err.model_dump() for err in e.errors]},
            )

        seed = req.seed if req.seed is not None else s_config.seed
        engine = SimulationEngine(level, config=s_config.model_copy(update={"seed": seed}))
        snapshots = engine.run(req.ticks)

        result = {
            "level_id": level.id,
            "seed": seed,
            "ticks": engine.tick,
            "final": snapshots[-1].model_dump(mode="json"),
            "breach_ticks": sum(1 for s in snapshots if s.breaches),
        }
        if req.include_snapshots:
            result["snapshots"] = [s.model_dump(mode="json") for s in snapshots]
        return result

    return app


# Default application instance
app = create_app()
