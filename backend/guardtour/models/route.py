"""
Modèles SQLAlchemy pour les parcours et leurs points de contrôle.

Le point de contrôle d'ordre 1 est le point d'ancrage : il ouvre et clôture
chaque cycle de ronde. Un tag n'identifie qu'un seul point actif, tous parcours
confondus (index unique partiel).
"""

import uuid
from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid,
    func, true,
)

from guardtour.database import Base


class Route(Base):
    """Parcours de ronde. frequency_minutes = durée nominale d'une ronde et taille des fenêtres."""
    __tablename__ = "routes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(150), nullable=False)
    description = Column(Text, nullable=True)
    frequency_minutes = Column(Integer, nullable=False)  # 120 ou 180 en général
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Checkpoint(Base):
    """Point de contrôle physique identifié par son tag."""
    __tablename__ = "checkpoints"
    __table_args__ = (
        UniqueConstraint("route_id", "sequence_order", name="uq_checkpoints_route_order"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    route_id = Column(Uuid, ForeignKey("routes.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(150), nullable=False)
    tag_id = Column(String(64), nullable=False, index=True)  # Tag normalisé (majuscules, sans espaces)
    sequence_order = Column(Integer, nullable=False)         # 1 = point d'ancrage
    expected_transit_seconds = Column(Integer, default=0)    # Depuis le point précédent, pas cumulatif
    tolerance_seconds = Column(Integer, default=300)
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


Index(
    "uq_checkpoints_active_tag",
    Checkpoint.tag_id,
    unique=True,
    postgresql_where=Checkpoint.active == true(),
    sqlite_where=Checkpoint.active == true(),
)
