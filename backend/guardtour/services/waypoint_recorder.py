"""
Enregistrement idempotent des passages aux points de contrôle.

Écart (delta_seconds) signé : positif = retard, négatif = avance.
- Ancrage d'ouverture : écart par rapport au début nominal de la fenêtre.
- Tout passage suivant (y compris l'ancrage de clôture) : temps réel depuis le
  passage précédent moins le temps de transit attendu vers ce point.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from guardtour.models.round import Round, Waypoint, WaypointStatus
from guardtour.models.scan_event import ScanEvent
from guardtour.services.checkpoint_catalog import CatalogCheckpoint


def _seconds_between(later: datetime, earlier: datetime) -> int:
    return round((later - earlier).total_seconds())


def opening_delta(timestamp: datetime, window_start: datetime) -> int:
    return _seconds_between(timestamp, window_start)


def transit_delta(timestamp: datetime, previous: datetime, expected_transit_seconds: int) -> int:
    return _seconds_between(timestamp, previous) - expected_transit_seconds


def waypoint_status(delta_seconds: int, tolerance_seconds: int) -> str:
    if abs(delta_seconds) > tolerance_seconds:
        return WaypointStatus.LATE
    return WaypointStatus.ON_TIME


def previous_timestamp(db: Session, rnd: Round) -> Optional[datetime]:
    """Horodatage du dernier passage enregistré, ou début de la ronde s'il n'y en a aucun."""
    last = db.execute(
        select(Waypoint.timestamp)
        .where(Waypoint.round_id == rnd.id)
        .order_by(Waypoint.timestamp.desc())
        .limit(1)
    ).scalar()
    return last or rnd.start_time


def record_waypoint(
    db: Session,
    rnd: Round,
    checkpoint: CatalogCheckpoint,
    event: ScanEvent,
    timestamp: datetime,
    delta_seconds: int,
    closing: bool = False,
) -> Waypoint:
    """
    Crée ou met à jour le passage (ronde, point, clôture).
    Un second passage au même point dans la même ronde met à jour l'existant.
    """
    status = waypoint_status(delta_seconds, checkpoint.tolerance_seconds)

    waypoint = db.execute(
        select(Waypoint).where(
            Waypoint.round_id == rnd.id,
            Waypoint.checkpoint_id == checkpoint.id,
            Waypoint.closing == closing,
        )
    ).scalar_one_or_none()

    if waypoint is None:
        waypoint = Waypoint(
            round_id=rnd.id,
            checkpoint_id=checkpoint.id,
            sequence_order=checkpoint.sequence_order,
            closing=closing,
        )
        db.add(waypoint)

    waypoint.scan_event_id = event.id
    waypoint.timestamp = timestamp
    waypoint.delta_seconds = delta_seconds
    waypoint.status = status
    db.flush()
    return waypoint
