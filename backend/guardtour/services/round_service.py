"""
Service de consultation des rondes (liste filtrée, détail, bilan d'un service).
"""

import uuid
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from guardtour.models.round import Round, RoundState, RoundStatus, Waypoint
from guardtour.models.route import Checkpoint, Route
from guardtour.models.shift import Shift
from guardtour.schemas.round import RoundDetail, RoundResponse, ShiftSummary, WaypointResponse
from guardtour.services.gap_filler import expected_windows
from guardtour.services.window_resolver import as_utc_naive

logger = logging.getLogger(__name__)


def list_rounds(
    db: Session,
    shift_id: Optional[uuid.UUID] = None,
    guard_id: Optional[uuid.UUID] = None,
    route_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[RoundResponse]:
    """Rondes filtrées, de la fenêtre la plus récente à la plus ancienne."""
    query = select(Round).order_by(Round.window_start.desc()).offset(offset).limit(limit)
    if shift_id:
        query = query.where(Round.shift_id == shift_id)
    if guard_id:
        query = query.where(Round.guard_id == guard_id)
    if route_id:
        query = query.where(Round.route_id == route_id)
    if status:
        query = query.where(Round.status == status)
    if since:
        query = query.where(Round.window_start >= as_utc_naive(since))
    if until:
        query = query.where(Round.window_start <= as_utc_naive(until))

    rounds = db.execute(query).scalars().all()
    return [RoundResponse.model_validate(r) for r in rounds]


def get_round(db: Session, round_id: uuid.UUID) -> Optional[RoundDetail]:
    """Retourne une ronde avec ses passages (triés par horodatage), ou None."""
    rnd = db.get(Round, round_id)
    if rnd is None:
        return None

    rows = db.execute(
        select(Waypoint, Checkpoint.name)
        .join(Checkpoint, Checkpoint.id == Waypoint.checkpoint_id)
        .where(Waypoint.round_id == round_id)
        .order_by(Waypoint.timestamp, Waypoint.closing)
    ).all()

    waypoints = [
        WaypointResponse(
            id=w.id,
            checkpoint_id=w.checkpoint_id,
            checkpoint_name=name,
            sequence_order=w.sequence_order,
            timestamp=w.timestamp,
            delta_seconds=w.delta_seconds,
            status=w.status,
            closing=w.closing,
        )
        for w, name in rows
    ]
    base = RoundResponse.model_validate(rnd)
    return RoundDetail(**base.model_dump(), waypoints=waypoints)


def shift_summary(db: Session, shift_id: uuid.UUID) -> ShiftSummary:
    """
    Bilan d'un service : nombre de fenêtres attendues et répartition des rondes.
    Lève ValueError si le service est introuvable.
    """
    row = db.execute(
        select(Shift, Route.frequency_minutes)
        .join(Route, Route.id == Shift.route_id)
        .where(Shift.id == shift_id)
    ).first()
    if row is None:
        raise ValueError(f"Service {shift_id} introuvable.")
    shift, frequency_minutes = row

    expected = len(expected_windows(shift.start_time, shift.end_time, frequency_minutes))

    counts = dict(
        db.execute(
            select(Round.status, func.count(Round.id))
            .where(Round.shift_id == shift_id, Round.state != RoundState.OPEN)
            .group_by(Round.status)
        ).all()
    )
    open_count = db.execute(
        select(func.count(Round.id))
        .where(Round.shift_id == shift_id, Round.state == RoundState.OPEN)
    ).scalar() or 0

    complete = counts.get(RoundStatus.COMPLETE, 0)
    compliance = round(100.0 * complete / expected, 1) if expected else 0.0

    return ShiftSummary(
        shift_id=shift_id,
        expected_rounds=expected,
        complete=complete,
        incomplete=counts.get(RoundStatus.INCOMPLETE, 0),
        invalid=counts.get(RoundStatus.INVALID, 0),
        not_performed=counts.get(RoundStatus.NOT_PERFORMED, 0),
        open=open_count,
        compliance_percent=compliance,
    )
