"""
Router pour la réception des lectures de tags.
Reçoit les téléchargements des lecteurs et déclenche la réconciliation des rondes.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from guardtour.database import get_db
from guardtour.schemas.event import (
    ReprocessResponse,
    ScanEventResponse,
    ScanUploadRequest,
    ScanUploadResponse,
)
from guardtour.services import event_service

router = APIRouter(prefix="/api/events", tags=["Lectures"])


@router.post(
    "/upload",
    response_model=ScanUploadResponse,
    summary="Recevoir le téléchargement d'un lecteur",
)
def upload_scans(data: ScanUploadRequest, db: Session = Depends(get_db)):
    """
    Reçoit un lot de lectures déjà parsées par l'agent du lecteur.

    Comportement :
    - Tags normalisés (majuscules, sans espaces)
    - Doublons (tag + horodatage) ignorés, dans le lot comme en base
    - Les nouvelles lectures sont réconciliées en rondes immédiatement
    - Retourne le rapport : reçues / insérées / doublons / rondes touchées / anomalies
    """
    return event_service.ingest_scans(db, data.reader_id, data.scans, data.downloaded_at)


@router.post(
    "/reprocess",
    response_model=ReprocessResponse,
    summary="Retraiter les lectures en attente",
)
def reprocess_events(db: Session = Depends(get_db)):
    """Relance le moteur de rondes sur les lectures non traitées (les plus anciennes d'abord)."""
    return event_service.reprocess_pending(db)


@router.get("", response_model=List[ScanEventResponse], summary="Lister les lectures")
def list_events(
    processed: Optional[bool] = None,
    tag: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    """Retourne les lectures les plus récentes (débogage / administration)."""
    return event_service.list_events(db, processed, tag, since, until, limit)
