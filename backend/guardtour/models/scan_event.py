"""
Modèles SQLAlchemy pour les lectures de tags et les journaux de téléchargement.

Une lecture est immuable une fois créée, sauf le drapeau processed.
"""

import uuid
from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, Uuid, func

from guardtour.database import Base


class ScanEvent(Base):
    """Lecture horodatée d'un tag par le lecteur du vigile."""
    __tablename__ = "scan_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tag_id = Column(String(64), nullable=False, index=True)
    timestamp = Column(DateTime, nullable=False, index=True)
    reader_id = Column(String(50), nullable=True)
    raw_line = Column(Text, nullable=True)
    processed = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class DownloadLog(Base):
    """Trace d'un téléchargement de lecteur (reçus / nouveaux / doublons)."""
    __tablename__ = "download_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reader_id = Column(String(50), nullable=False)
    downloaded_at = Column(DateTime, nullable=True)
    received_count = Column(Integer, default=0)
    new_count = Column(Integer, default=0)
    duplicate_count = Column(Integer, default=0)
    created_at = Column(DateTime, server_default=func.now())
