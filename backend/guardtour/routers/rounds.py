"""
Router pour la consultation des rondes et le bilan des services.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from guardtour.database import get_db
from guardtour.schemas.round import (
    VALID_ROUND_STATUSES,
    GapFillResult,
    RoundDetail,
    RoundResponse,
    ShiftSummary,
)
from guardtour.services import gap_filler, round_finalizer, round_service

router = APIRouter(prefix="/api/rounds", tags=["Rondes"])

shifts_router = APIRouter(prefix="/api/shifts", tags=["Services"])


@router.get("", response_model=List[RoundResponse], summary="Lister les rondes")
def list_rounds(
    shift_id: Optional[uuid.UUID] = None,
    guard_id: Optional[uuid.UUID] = None,
    route_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    """Rondes filtrées, de la plus récente à la plus ancienne."""
    if status is not None and status not in VALID_ROUND_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"Statut invalide. Valeurs acceptées : {sorted(VALID_ROUND_STATUSES)}",
        )
    return round_service.list_rounds(
        db, shift_id, guard_id, route_id, status, since, until, limit, offset
    )


@router.post("/gap-fill", response_model=GapFillResult, summary="Marquer les rondes non effectuées")
def run_gap_fill(db: Session = Depends(get_db)):
    """
    Crée les rondes NOT_PERFORMED des fenêtres écoulées sans activité.
    Même traitement que le job horaire ; idempotent.
    """
    return GapFillResult(created=gap_filler.run_gap_fill(db))


@router.get("/{round_id}", response_model=RoundDetail, summary="Détail d'une ronde")
def get_round(round_id: uuid.UUID, db: Session = Depends(get_db)):
    """Retourne une ronde avec ses passages triés par horodatage."""
    rnd = round_service.get_round(db, round_id)
    if rnd is None:
        raise HTTPException(status_code=404, detail="Ronde introuvable.")
    return rnd


@router.post("/{round_id}/recalculate", response_model=RoundResponse, summary="Recalculer une ronde")
def recalculate_round(round_id: uuid.UUID, db: Session = Depends(get_db)):
    """
    Réévalue le statut d'une ronde clôturée à partir de ses passages enregistrés
    et des tolérances actuelles des points (après correction d'un parcours).

    Retourne 404 si la ronde est introuvable, 400 si elle n'est pas clôturée.
    """
    try:
        return round_finalizer.recalculate_round(db, round_id)
    except ValueError as e:
        msg = str(e)
        if "introuvable" in msg:
            raise HTTPException(status_code=404, detail=msg)
        raise HTTPException(status_code=400, detail=msg)


@shifts_router.get("/{shift_id}/summary", response_model=ShiftSummary, summary="Bilan d'un service")
def get_shift_summary(shift_id: uuid.UUID, db: Session = Depends(get_db)):
    """
    Nombre de rondes attendues sur le service et répartition par statut.

    Retourne 404 si le service est introuvable.
    """
    try:
        return round_service.shift_summary(db, shift_id)
    except ValueError as e:
        msg = str(e)
        if "introuvable" in msg:
            raise HTTPException(status_code=404, detail=msg)
        raise HTTPException(status_code=400, detail=msg)
