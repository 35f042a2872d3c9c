"""
Schémas Pydantic pour l'ingestion des lectures de tags et le moteur de rondes.
Endpoint : POST /api/events/upload
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator

from guardtour.config import settings


class RawScan(BaseModel):
    """Une lecture déjà parsée par l'agent du lecteur (ligne brute conservée)."""

    tag: str
    timestamp: datetime
    reader_id: Optional[str] = None
    raw_line: Optional[str] = None

    @field_validator("tag")
    @classmethod
    def tag_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Le tag ne peut pas être vide.")
        return v


class ScanUploadRequest(BaseModel):
    """Téléchargement complet d'un lecteur."""

    reader_id: str
    scans: List[RawScan]
    downloaded_at: Optional[datetime] = None

    @field_validator("scans")
    @classmethod
    def scans_not_too_large(cls, v: List[RawScan]) -> List[RawScan]:
        if len(v) > settings.MAX_UPLOAD_BATCH_SIZE:
            raise ValueError(
                f"Lot trop grand : maximum {settings.MAX_UPLOAD_BATCH_SIZE} lectures par requête."
            )
        return v


class ProcessingResult(BaseModel):
    """Résultat d'un passage du moteur de rondes sur un lot de lectures."""

    rounds_affected: int = 0
    diagnostics: List[str] = []


class ScanUploadResponse(BaseModel):
    """Rapport de téléchargement retourné au lecteur."""

    total_received: int
    total_inserted: int
    duplicates: int
    rounds_affected: int
    diagnostics: List[str]


class ReprocessResponse(BaseModel):
    pending: int
    rounds_affected: int
    diagnostics: List[str]


class ScanEventResponse(BaseModel):
    id: uuid.UUID
    tag_id: str
    timestamp: datetime
    reader_id: Optional[str]
    processed: bool

    model_config = {"from_attributes": True}
