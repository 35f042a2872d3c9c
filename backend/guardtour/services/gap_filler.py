"""
Matérialisation des rondes non effectuées (NOT_PERFORMED).

Parcourt les fenêtres écoulées de chaque service en cours (ou terminé depuis
moins de GAP_FILL_LAG_MINUTES) et crée une ronde NOT_PERFORMED pour chaque
fenêtre sans ronde. Idempotent : l'index unique sur (shift_id, route_id,
window_start) écarte une fenêtre déjà créée, y compris par le moteur en parallèle.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from guardtour.config import settings
from guardtour.models.round import RoundState, RoundStatus
from guardtour.models.route import Route
from guardtour.models.shift import Shift
from guardtour.services.round_tracker import find_window_round, insert_window_round
from guardtour.services.window_resolver import ShiftWindow, utc_now

logger = logging.getLogger(__name__)

NOT_PERFORMED_NOTE = "Ronde non démarrée dans la fenêtre de temps"


def expected_windows(
    shift_start: datetime, shift_end: datetime, frequency_minutes: int
) -> List[Tuple[datetime, datetime]]:
    """Fenêtres contiguës et sans chevauchement couvrant le service."""
    frequency = timedelta(minutes=frequency_minutes)
    windows = []
    window_start = shift_start
    while window_start < shift_end:
        windows.append((window_start, window_start + frequency))
        window_start += frequency
    return windows


def run_gap_fill(
    db: Session, now: Optional[datetime] = None, lag_minutes: Optional[int] = None
) -> int:
    """
    Crée les rondes NOT_PERFORMED manquantes. Retourne le nombre de rondes créées.

    Une fenêtre n'est considérée que si elle a commencé avant now - lag,
    pour ne pas marquer une fenêtre encore en cours.
    """
    now = now or utc_now()
    lag = timedelta(minutes=settings.GAP_FILL_LAG_MINUTES if lag_minutes is None else lag_minutes)
    cutoff = now - lag

    rows = db.execute(
        select(Shift, Route.frequency_minutes)
        .join(Route, Route.id == Shift.route_id)
        .where(
            Shift.start_time <= now,
            Shift.end_time >= cutoff,
        )
    ).all()

    created = 0
    for shift, frequency_minutes in rows:
        for window_start, window_end in expected_windows(shift.start_time, shift.end_time, frequency_minutes):
            if window_start >= cutoff:
                break
            if find_window_round(db, shift.id, shift.route_id, window_start) is not None:
                continue

            window = ShiftWindow(
                shift_id=shift.id,
                guard_id=shift.guard_id,
                route_id=shift.route_id,
                window_start=window_start,
                window_end=window_end,
            )
            if insert_window_round(
                db, window, RoundState.NEVER_OPENED, RoundStatus.NOT_PERFORMED, notes=NOT_PERFORMED_NOTE
            ):
                created += 1

    db.commit()
    logger.info("Rondes non effectuées : %d créées sur %d services", created, len(rows))
    return created
