"""
Clôture d'une ronde et calcul de son statut final à partir des passages.

Règles (dans cet ordre) :
1. Points distincts enregistrés < points actifs du parcours → INCOMPLETE
2. Au moins un passage LATE → INCOMPLETE
3. Passages triés par horodatage (pas par ordre d'insertion) :
   - le premier n'est pas le point d'ancrage → INVALID (cycle non démarré en 1)
   - le dernier n'est pas le point d'ancrage → INCOMPLETE (cycle non refermé en 1)
   - sinon → COMPLETE
"""

import logging
import uuid
from datetime import datetime
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from guardtour.models.round import Round, RoundState, RoundStatus, Waypoint, WaypointStatus
from guardtour.models.route import Checkpoint
from guardtour.schemas.round import RoundResponse
from guardtour.services.checkpoint_catalog import ANCHOR_ORDER, count_active_checkpoints
from guardtour.services.waypoint_recorder import waypoint_status

logger = logging.getLogger(__name__)


def derive_round_status(waypoints: Sequence[Waypoint], active_checkpoint_count: int) -> str:
    """Fonction pure : statut final d'une ronde selon ses passages."""
    if not waypoints:
        return RoundStatus.INCOMPLETE

    registered = len({w.checkpoint_id for w in waypoints})
    if registered < active_checkpoint_count:
        return RoundStatus.INCOMPLETE

    if any(w.status == WaypointStatus.LATE for w in waypoints):
        return RoundStatus.INCOMPLETE

    # À horodatage égal, l'ancrage de clôture passe en dernier
    ordered = sorted(waypoints, key=lambda w: (w.timestamp, bool(w.closing)))
    if ordered[0].sequence_order != ANCHOR_ORDER:
        return RoundStatus.INVALID
    if ordered[-1].sequence_order != ANCHOR_ORDER:
        return RoundStatus.INCOMPLETE
    return RoundStatus.COMPLETE


def finalize_round(
    db: Session, rnd: Round, end_time: datetime, active_checkpoint_count: int
) -> str:
    """Fixe end_time, passe la ronde à CLOSED et enregistre le statut dérivé."""
    waypoints = db.execute(
        select(Waypoint).where(Waypoint.round_id == rnd.id)
    ).scalars().all()

    status = derive_round_status(waypoints, active_checkpoint_count)
    rnd.end_time = end_time
    rnd.state = RoundState.CLOSED
    rnd.status = status
    db.flush()

    logger.info(
        "Ronde %s clôturée à %s : %s (%d passages / %d points)",
        rnd.id, end_time, status, len(waypoints), active_checkpoint_count,
    )
    return status


def recalculate_round(db: Session, round_id: uuid.UUID) -> RoundResponse:
    """
    Recalcule le statut d'une ronde clôturée à partir des passages déjà enregistrés.

    Le statut ON_TIME / LATE de chaque passage est réévalué avec la tolérance
    actuelle du point, puis le statut de la ronde est dérivé à nouveau avec le
    nombre actuel de points actifs. end_time est conservé.
    Lève ValueError si la ronde est introuvable ou n'est pas clôturée.
    """
    rnd = db.get(Round, round_id)
    if rnd is None:
        raise ValueError(f"Ronde {round_id} introuvable.")
    if rnd.state != RoundState.CLOSED:
        raise ValueError(f"La ronde {round_id} n'est pas clôturée (état {rnd.state}).")

    rows = db.execute(
        select(Waypoint, Checkpoint.tolerance_seconds)
        .join(Checkpoint, Checkpoint.id == Waypoint.checkpoint_id)
        .where(Waypoint.round_id == rnd.id)
    ).all()
    for waypoint, tolerance_seconds in rows:
        waypoint.status = waypoint_status(waypoint.delta_seconds, tolerance_seconds or 0)

    previous = rnd.status
    rnd.status = derive_round_status(
        [waypoint for waypoint, _ in rows], count_active_checkpoints(db, rnd.route_id)
    )
    db.commit()
    db.refresh(rnd)

    logger.info("Ronde %s recalculée : %s → %s", rnd.id, previous, rnd.status)
    return RoundResponse.model_validate(rnd)
