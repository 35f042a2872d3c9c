"""
Frontière d'ingestion : réception des téléchargements de lecteurs.

Stratégie :
- Normalisation des tags (majuscules, sans espaces)
- Doublons par (tag, horodatage) : intra-lot en mémoire, inter-lots via la base
- Les nouvelles lectures sont insérées (processed=False) puis confiées au moteur de rondes
"""

import logging
import re
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from guardtour.config import settings
from guardtour.models.scan_event import DownloadLog, ScanEvent
from guardtour.schemas.event import RawScan, ReprocessResponse, ScanUploadResponse
from guardtour.services.reconciliation import process_events
from guardtour.services.window_resolver import as_utc_naive

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_tag(raw: str) -> str:
    """Tag normalisé : majuscules, tous les espaces supprimés."""
    return _WHITESPACE.sub("", raw).upper()


def ingest_scans(
    db: Session,
    reader_id: str,
    scans: List[RawScan],
    downloaded_at: Optional[datetime] = None,
) -> ScanUploadResponse:
    """
    Insère les lectures nouvelles d'un téléchargement et lance la réconciliation.

    Pour chaque lecture :
    1. Normalise le tag et convertit l'horodatage en UTC
    2. Ignore un doublon déjà vu dans CE lot
    3. Ignore un doublon déjà présent en base
    4. Sinon → crée le ScanEvent
    """
    new_events: List[ScanEvent] = []
    duplicates = 0
    seen_in_batch: set = set()

    for scan in scans:
        tag = normalize_tag(scan.tag)
        timestamp = as_utc_naive(scan.timestamp)
        key = (tag, timestamp)

        if key in seen_in_batch:
            duplicates += 1
            logger.debug("Doublon intra-lot ignoré : %s %s", tag, timestamp)
            continue

        existing = db.execute(
            select(ScanEvent.id).where(ScanEvent.tag_id == tag, ScanEvent.timestamp == timestamp)
        ).scalar()
        if existing:
            duplicates += 1
            logger.debug("Lecture déjà reçue, ignorée : %s %s", tag, timestamp)
            continue

        event = ScanEvent(
            tag_id=tag,
            timestamp=timestamp,
            reader_id=scan.reader_id or reader_id,
            raw_line=scan.raw_line,
            processed=False,
        )
        db.add(event)
        seen_in_batch.add(key)
        new_events.append(event)

    db.add(DownloadLog(
        reader_id=reader_id,
        downloaded_at=as_utc_naive(downloaded_at) if downloaded_at else None,
        received_count=len(scans),
        new_count=len(new_events),
        duplicate_count=duplicates,
    ))
    db.commit()

    logger.info(
        "Téléchargement lecteur=%s : %d reçues, %d nouvelles, %d doublons",
        reader_id, len(scans), len(new_events), duplicates,
    )

    result = process_events(db, new_events)

    return ScanUploadResponse(
        total_received=len(scans),
        total_inserted=len(new_events),
        duplicates=duplicates,
        rounds_affected=result.rounds_affected,
        diagnostics=result.diagnostics,
    )


def reprocess_pending(db: Session, limit: Optional[int] = None) -> ReprocessResponse:
    """Relance le moteur sur les lectures non encore traitées, les plus anciennes d'abord."""
    pending = db.execute(
        select(ScanEvent)
        .where(ScanEvent.processed.is_(False))
        .order_by(ScanEvent.timestamp)
        .limit(limit or settings.REPROCESS_LIMIT)
    ).scalars().all()

    if not pending:
        return ReprocessResponse(pending=0, rounds_affected=0, diagnostics=[])

    result = process_events(db, pending)
    return ReprocessResponse(
        pending=len(pending),
        rounds_affected=result.rounds_affected,
        diagnostics=result.diagnostics,
    )


def list_events(
    db: Session,
    processed: Optional[bool] = None,
    tag: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = 100,
) -> List[ScanEvent]:
    """Lectures les plus récentes d'abord, filtrées (débogage / administration)."""
    query = select(ScanEvent).order_by(ScanEvent.timestamp.desc()).limit(limit)
    if processed is not None:
        query = query.where(ScanEvent.processed.is_(processed))
    if tag:
        query = query.where(ScanEvent.tag_id == normalize_tag(tag))
    if since:
        query = query.where(ScanEvent.timestamp >= as_utc_naive(since))
    if until:
        query = query.where(ScanEvent.timestamp <= as_utc_naive(until))
    return db.execute(query).scalars().all()
