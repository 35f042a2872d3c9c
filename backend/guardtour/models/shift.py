"""
Modèle SQLAlchemy pour les services (affectation vigile ↔ parcours).
La fenêtre 0 d'un service commence exactement à start_time.
"""

import uuid
from sqlalchemy import Column, DateTime, ForeignKey, Uuid, func

from guardtour.database import Base


class Shift(Base):
    __tablename__ = "shifts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    guard_id = Column(Uuid, ForeignKey("guards.id", ondelete="CASCADE"), nullable=False)
    route_id = Column(Uuid, ForeignKey("routes.id", ondelete="CASCADE"), nullable=False)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now())
