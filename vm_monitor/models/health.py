from typing import Optional

from pydantic import BaseModel, Field


class HealthStatus(BaseModel):
    """Liveness and pipeline counters of the running service."""

    status: str = Field("ok", description="Always 'ok' while the service answers")
    subscribers: int = Field(..., ge=0, description="Currently connected subscribers")
    ticks: int = Field(..., ge=0, description="Sampling ticks started since startup")
    published: int = Field(..., ge=0, description="Ticks whose snapshot was broadcast")
    skipped: int = Field(..., ge=0, description="Ticks skipped because aggregation failed")
    last_error: Optional[str] = Field(
        None,
        description="Error message of the most recently skipped tick, if any.",
    )
