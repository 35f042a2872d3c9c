"""
Résolution du service couvrant une lecture et de sa fenêtre nominale.

Les fenêtres d'un service sont contiguës, de durée frequency_minutes,
la fenêtre 0 commençant exactement au début du service.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from guardtour.models.shift import Shift
from guardtour.services.checkpoint_catalog import CatalogCheckpoint


@dataclass(frozen=True)
class ShiftWindow:
    shift_id: uuid.UUID
    guard_id: uuid.UUID
    route_id: uuid.UUID
    window_start: datetime
    window_end: datetime


def as_utc_naive(value: datetime) -> datetime:
    """Convertit une date en UTC naïf (format de stockage en base)."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def utc_now() -> datetime:
    return as_utc_naive(datetime.now(timezone.utc))


def compute_window(
    shift_start: datetime, frequency_minutes: int, timestamp: datetime
) -> Tuple[datetime, datetime]:
    """Retourne (window_start, window_end) de la fenêtre contenant timestamp."""
    frequency = timedelta(minutes=frequency_minutes)
    index = (timestamp - shift_start) // frequency
    window_start = shift_start + index * frequency
    return window_start, window_start + frequency


def resolve_window(
    db: Session, checkpoint: CatalogCheckpoint, timestamp: datetime
) -> Optional[ShiftWindow]:
    """
    Cherche le service du parcours tel que start_time <= t <= end_time.
    Retourne None si aucun service ne couvre la lecture (lecture hors planning).
    """
    shift = db.execute(
        select(Shift)
        .where(
            Shift.route_id == checkpoint.route_id,
            Shift.start_time <= timestamp,
            Shift.end_time >= timestamp,
        )
        .order_by(Shift.start_time)
        .limit(1)
    ).scalars().first()

    if shift is None:
        return None

    window_start, window_end = compute_window(shift.start_time, checkpoint.frequency_minutes, timestamp)
    return ShiftWindow(
        shift_id=shift.id,
        guard_id=shift.guard_id,
        route_id=checkpoint.route_id,
        window_start=window_start,
        window_end=window_end,
    )
