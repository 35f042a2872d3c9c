"""
Modèles SQLAlchemy pour les rondes et leurs passages (waypoints).

L'état d'ouverture (state) est distinct du statut de fidélité (status) :
une ronde INVALID peut rester OPEN jusqu'à ce qu'un ancrage la clôture.
Invariant : pour un couple (shift_id, route_id), au plus une ronde OPEN.
Une seule ronde fenêtrée par (shift_id, route_id, window_start), garantie par
un index unique partiel ; les rondes orphelines (orphan=True) en sont exclues.
"""

import uuid
from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid,
    false, func,
)

from guardtour.database import Base


class RoundState:
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    NEVER_OPENED = "NEVER_OPENED"  # Créée par le job des rondes non effectuées


class RoundStatus:
    COMPLETE = "COMPLETE"
    INCOMPLETE = "INCOMPLETE"
    INVALID = "INVALID"
    NOT_PERFORMED = "NOT_PERFORMED"


class WaypointStatus:
    ON_TIME = "ON_TIME"
    LATE = "LATE"


class Round(Base):
    """Tentative de cycle complet du parcours dans une fenêtre de temps."""
    __tablename__ = "rounds"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    route_id = Column(Uuid, ForeignKey("routes.id", ondelete="CASCADE"), nullable=False)
    shift_id = Column(Uuid, ForeignKey("shifts.id", ondelete="CASCADE"), nullable=False)
    guard_id = Column(Uuid, ForeignKey("guards.id"), nullable=False)

    start_time = Column(DateTime, nullable=True)    # NULL pour une ronde non effectuée
    end_time = Column(DateTime, nullable=True)
    window_start = Column(DateTime, nullable=False, index=True)
    window_end = Column(DateTime, nullable=False)

    state = Column(String(20), nullable=False, default=RoundState.OPEN)
    status = Column(String(20), nullable=False, default=RoundStatus.INCOMPLETE)
    # Ronde ouverte sur un point intermédiaire : fenêtre réduite à l'instant de la lecture
    orphan = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


# Clé des rondes fenêtrées, réutilisée par les INSERT ... ON CONFLICT DO NOTHING
WINDOWED_ROUND_KEY = ("shift_id", "route_id", "window_start")
WINDOWED_ROUND_WHERE = Round.orphan == false()

Index(
    "uq_rounds_shift_route_window",
    Round.shift_id, Round.route_id, Round.window_start,
    unique=True,
    postgresql_where=WINDOWED_ROUND_WHERE,
    sqlite_where=WINDOWED_ROUND_WHERE,
)


class Waypoint(Base):
    """
    Passage à un point de contrôle dans une ronde.

    Le point d'ancrage apparaît deux fois : à l'ouverture (closing=False)
    et à la clôture (closing=True).
    """
    __tablename__ = "waypoints"
    __table_args__ = (
        UniqueConstraint("round_id", "checkpoint_id", "closing", name="uq_waypoints_round_checkpoint"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    round_id = Column(Uuid, ForeignKey("rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    checkpoint_id = Column(Uuid, ForeignKey("checkpoints.id", ondelete="CASCADE"), nullable=False)
    scan_event_id = Column(Uuid, ForeignKey("scan_events.id"), nullable=True)
    sequence_order = Column(Integer, nullable=False)
    timestamp = Column(DateTime, nullable=False)
    delta_seconds = Column(Integer, nullable=False, default=0)  # > 0 = retard, < 0 = avance
    status = Column(String(20), nullable=False, default=WaypointStatus.ON_TIME)
    closing = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, server_default=func.now())
