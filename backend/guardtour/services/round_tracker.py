"""
Suivi de l'état des rondes : ronde ouverte courante et ronde d'une fenêtre.

Les fonctions de ce module font un flush mais ne commitent jamais :
le moteur de réconciliation commite une fois par lecture.
"""

import logging
import uuid
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from guardtour.models.round import (
    WINDOWED_ROUND_KEY,
    WINDOWED_ROUND_WHERE,
    Round,
    RoundState,
    RoundStatus,
)
from guardtour.services.window_resolver import ShiftWindow

logger = logging.getLogger(__name__)

ORPHAN_ROUND_NOTE = "Ronde non démarrée au point d'ancrage"


def find_open_round(db: Session, shift_id: uuid.UUID, route_id: uuid.UUID) -> Optional[Round]:
    """Ronde OPEN la plus récente (par start_time) du couple service/parcours."""
    return db.execute(
        select(Round)
        .where(
            Round.shift_id == shift_id,
            Round.route_id == route_id,
            Round.state == RoundState.OPEN,
        )
        .order_by(Round.start_time.desc())
        .limit(1)
    ).scalars().first()


def find_window_round(
    db: Session, shift_id: uuid.UUID, route_id: uuid.UUID, window_start: datetime
) -> Optional[Round]:
    """Ronde dont la fenêtre commence exactement à window_start."""
    return db.execute(
        select(Round)
        .where(
            Round.shift_id == shift_id,
            Round.route_id == route_id,
            Round.window_start == window_start,
            Round.orphan.is_(False),
        )
        .order_by(Round.created_at)
        .limit(1)
    ).scalars().first()


def find_or_create_window_round(
    db: Session, window: ShiftWindow, first_timestamp: datetime
) -> Tuple[Round, bool]:
    """
    Retourne la ronde de la fenêtre, ou la crée (INCOMPLETE, OPEN) si elle n'existe pas.

    Une ronde existante est renvoyée telle quelle (lot retraité ou exécution
    partielle précédente). Retourne (ronde, créée).
    """
    existing = find_window_round(db, window.shift_id, window.route_id, window.window_start)
    if existing is not None:
        return existing, False

    created = insert_window_round(
        db, window, RoundState.OPEN, RoundStatus.INCOMPLETE, start_time=first_timestamp
    )
    rnd = find_window_round(db, window.shift_id, window.route_id, window.window_start)
    if created:
        logger.debug("Ronde ouverte : %s (fenêtre %s)", rnd.id, window.window_start)
    else:
        logger.info(
            "Fenêtre %s créée entre-temps par un autre traitement, ronde %s réutilisée",
            window.window_start, rnd.id,
        )
    return rnd, created


_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def insert_window_round(
    db: Session,
    window: ShiftWindow,
    state: str,
    status: str,
    start_time: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> bool:
    """
    INSERT ... ON CONFLICT DO NOTHING sur l'index unique des rondes fenêtrées.

    Le moteur et le job des rondes non effectuées peuvent viser la même fenêtre
    en même temps : la base arbitre. Retourne True si la ligne a été insérée.
    """
    insert = _DIALECT_INSERTS[db.get_bind().dialect.name]
    stmt = (
        insert(Round)
        .values(
            id=uuid.uuid4(),
            route_id=window.route_id,
            shift_id=window.shift_id,
            guard_id=window.guard_id,
            start_time=start_time,
            end_time=None,
            window_start=window.window_start,
            window_end=window.window_end,
            state=state,
            status=status,
            orphan=False,
            notes=notes,
        )
        .on_conflict_do_nothing(
            index_elements=list(WINDOWED_ROUND_KEY),
            index_where=WINDOWED_ROUND_WHERE,
        )
    )
    return db.execute(stmt).rowcount == 1


def open_orphan_round(db: Session, window: ShiftWindow, timestamp: datetime) -> Round:
    """
    Crée une ronde INVALID restée ouverte : premier passage sur un point intermédiaire.
    La fenêtre est réduite à l'instant de la lecture. Un ancrage ultérieur peut la clôturer.
    """
    orphan = Round(
        route_id=window.route_id,
        shift_id=window.shift_id,
        guard_id=window.guard_id,
        start_time=timestamp,
        end_time=None,
        window_start=timestamp,
        window_end=timestamp,
        state=RoundState.OPEN,
        status=RoundStatus.INVALID,
        orphan=True,
        notes=ORPHAN_ROUND_NOTE,
    )
    db.add(orphan)
    db.flush()
    return orphan


def reopen_round(db: Session, rnd: Round, timestamp: datetime) -> Round:
    """Une fenêtre marquée non effectuée reçoit finalement son ancrage d'ouverture."""
    rnd.state = RoundState.OPEN
    rnd.status = RoundStatus.INCOMPLETE
    rnd.start_time = timestamp
    rnd.end_time = None
    rnd.notes = None
    db.flush()
    return rnd


def list_orphan_rounds(db: Session, older_than: datetime) -> List[Round]:
    """Rondes INVALID encore ouvertes dont le début précède older_than."""
    return db.execute(
        select(Round)
        .where(
            Round.state == RoundState.OPEN,
            Round.status == RoundStatus.INVALID,
            Round.start_time < older_than,
        )
        .order_by(Round.start_time)
    ).scalars().all()
