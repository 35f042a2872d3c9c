"""
Schémas Pydantic pour la consultation des rondes et de leurs passages.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

VALID_ROUND_STATUSES = {"COMPLETE", "INCOMPLETE", "INVALID", "NOT_PERFORMED"}


class WaypointResponse(BaseModel):
    id: uuid.UUID
    checkpoint_id: uuid.UUID
    checkpoint_name: Optional[str] = None
    sequence_order: int
    timestamp: datetime
    delta_seconds: int
    status: str             # ON_TIME, LATE
    closing: bool           # True = ancrage de clôture

    model_config = {"from_attributes": True}


class RoundResponse(BaseModel):
    id: uuid.UUID
    route_id: uuid.UUID
    shift_id: uuid.UUID
    guard_id: uuid.UUID
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    window_start: datetime
    window_end: datetime
    state: str              # OPEN, CLOSED, NEVER_OPENED
    status: str             # COMPLETE, INCOMPLETE, INVALID, NOT_PERFORMED
    orphan: bool = False    # Ouverte sur un point intermédiaire, hors fenêtre
    notes: Optional[str]

    model_config = {"from_attributes": True}


class RoundDetail(RoundResponse):
    """Ronde avec ses passages triés par horodatage."""
    waypoints: List[WaypointResponse] = []


class ShiftSummary(BaseModel):
    """Bilan d'un service : rondes attendues et répartition par statut."""
    shift_id: uuid.UUID
    expected_rounds: int
    complete: int
    incomplete: int
    invalid: int
    not_performed: int
    open: int
    compliance_percent: float


class GapFillResult(BaseModel):
    created: int
