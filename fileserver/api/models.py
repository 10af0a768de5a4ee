from __future__ import annotations

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Liveness answer."""
    ok: bool = True
