"""
Modèle SQLAlchemy pour les vigiles.
"""

import uuid
from sqlalchemy import Boolean, Column, DateTime, String, Uuid, func

from guardtour.database import Base


class Guard(Base):
    __tablename__ = "guards"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(150), nullable=False)
    employee_number = Column(String(50), nullable=True)
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
