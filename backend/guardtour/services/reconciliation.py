"""
Moteur de réconciliation des rondes.

Transforme un lot de lectures (non ordonné, éventuellement dupliqué ou en retard)
en rondes et passages. Chaque lecture est d'abord classée par classify_event
(fonction pure, sans accès base) en une décision, puis la décision est appliquée
par un handler unique. Les effets de chaque lecture sont commités séparément :
un échec de persistance interrompt le lot, les lectures précédentes restent acquises.

Table des transitions (point d'ancrage = ordre 1) :

    tag inconnu / hors service               → Unmatched
    lecture déjà traitée                     → AlreadyApplied
    ancrage, pas de ronde ouverte            → OpenAnchor
    ancrage, ronde ouverte, écoulé <= 60s    → Bounce
    ancrage, ronde ouverte, 60s < é < 4h     → NormalClose
    ancrage, ronde ouverte, écoulé >= 4h     → ZombieRecoverAndStart
    intermédiaire, pas de ronde ouverte      → InvalidStart
    intermédiaire, ronde ouverte             → Continuation
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Union

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from guardtour.config import settings
from guardtour.models.round import Round, RoundState
from guardtour.models.scan_event import ScanEvent
from guardtour.schemas.event import ProcessingResult
from guardtour.services.checkpoint_catalog import CatalogCheckpoint, CheckpointCatalog, load_catalog
from guardtour.services.round_finalizer import finalize_round
from guardtour.services.round_tracker import (
    find_open_round,
    find_or_create_window_round,
    open_orphan_round,
    reopen_round,
)
from guardtour.services.waypoint_recorder import (
    opening_delta,
    previous_timestamp,
    record_waypoint,
    transit_delta,
)
from guardtour.services.window_resolver import ShiftWindow, as_utc_naive, resolve_window

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------
# Décisions
# ----------------------------------------------------------------

@dataclass(frozen=True)
class Unmatched:
    reason: str  # "tag" ou "shift"


@dataclass(frozen=True)
class AlreadyApplied:
    pass


@dataclass(frozen=True)
class Bounce:
    elapsed_seconds: float


@dataclass(frozen=True)
class NormalClose:
    elapsed_seconds: float


@dataclass(frozen=True)
class ZombieRecoverAndStart:
    elapsed_seconds: float
    forced_end: datetime


@dataclass(frozen=True)
class OpenAnchor:
    pass


@dataclass(frozen=True)
class InvalidStart:
    pass


@dataclass(frozen=True)
class Continuation:
    pass


Decision = Union[
    Unmatched, AlreadyApplied, Bounce, NormalClose, ZombieRecoverAndStart,
    OpenAnchor, InvalidStart, Continuation,
]


def classify_event(
    checkpoint: Optional[CatalogCheckpoint],
    window: Optional[ShiftWindow],
    timestamp: datetime,
    open_round_start: Optional[datetime],
    bounce_threshold_seconds: int = 60,
    zombie_threshold_seconds: int = 14400,
) -> Decision:
    """Classe une lecture selon l'état de la ronde ouverte. Aucun accès base."""
    if checkpoint is None:
        return Unmatched(reason="tag")
    if window is None:
        return Unmatched(reason="shift")

    if not checkpoint.is_anchor:
        if open_round_start is None:
            return InvalidStart()
        return Continuation()

    if open_round_start is None:
        return OpenAnchor()

    elapsed = (timestamp - open_round_start).total_seconds()
    if elapsed <= bounce_threshold_seconds:
        return Bounce(elapsed_seconds=elapsed)
    if elapsed < zombie_threshold_seconds:
        return NormalClose(elapsed_seconds=elapsed)
    return ZombieRecoverAndStart(
        elapsed_seconds=elapsed,
        forced_end=open_round_start + timedelta(seconds=zombie_threshold_seconds),
    )


# ----------------------------------------------------------------
# Application des décisions
# ----------------------------------------------------------------

@dataclass
class EventContext:
    db: Session
    event: ScanEvent
    timestamp: datetime
    catalog: CheckpointCatalog
    checkpoint: Optional[CatalogCheckpoint] = None
    window: Optional[ShiftWindow] = None
    open_round: Optional[Round] = None
    diagnostics: List[str] = field(default_factory=list)

    def diagnose(self, message: str) -> None:
        logger.warning(message)
        self.diagnostics.append(message)


def _visit(ctx: EventContext, rnd: Round, closing: bool = False) -> bool:
    """Passage suivant dans une ronde ouverte. False si la lecture précède le début de la ronde."""
    if ctx.timestamp < rnd.start_time:
        ctx.diagnose(
            f"Lecture ignorée : {ctx.event.tag_id} à {ctx.timestamp.isoformat()} "
            f"antérieure au début de la ronde active {rnd.id} ({rnd.start_time.isoformat()})"
        )
        return False

    previous = previous_timestamp(ctx.db, rnd)
    delta = transit_delta(ctx.timestamp, previous, ctx.checkpoint.expected_transit_seconds)
    record_waypoint(ctx.db, rnd, ctx.checkpoint, ctx.event, ctx.timestamp, delta, closing=closing)
    return True


def _open_anchor(ctx: EventContext) -> int:
    rnd, created = find_or_create_window_round(ctx.db, ctx.window, ctx.timestamp)
    if not created:
        if rnd.state == RoundState.CLOSED:
            ctx.diagnose(
                f"Ancrage tardif ignoré : {ctx.event.tag_id} à {ctx.timestamp.isoformat()}, "
                f"la ronde {rnd.id} de la fenêtre {rnd.window_start.isoformat()} est déjà clôturée"
            )
            return 0
        if rnd.state == RoundState.NEVER_OPENED:
            reopen_round(ctx.db, rnd, ctx.timestamp)

    delta = opening_delta(ctx.timestamp, rnd.window_start)
    record_waypoint(ctx.db, rnd, ctx.checkpoint, ctx.event, ctx.timestamp, delta)
    return 1


def _handle_unmatched(ctx: EventContext, decision: Unmatched) -> int:
    logger.debug("Lecture %s (%s) sans correspondance : %s", ctx.event.id, ctx.event.tag_id, decision.reason)
    return 0


def _handle_already_applied(ctx: EventContext, decision: AlreadyApplied) -> int:
    logger.debug("Lecture %s déjà traitée, ignorée", ctx.event.id)
    return 0


def _handle_bounce(ctx: EventContext, decision: Bounce) -> int:
    ctx.diagnose(
        f"Rebond ignoré : {ctx.event.tag_id} à {ctx.timestamp.isoformat()}, "
        f"{int(decision.elapsed_seconds)}s après le début de la ronde {ctx.open_round.id}"
    )
    return 0


def _handle_normal_close(ctx: EventContext, decision: NormalClose) -> int:
    if not _visit(ctx, ctx.open_round, closing=True):
        return 0
    finalize_round(
        ctx.db, ctx.open_round, ctx.timestamp, ctx.catalog.active_count(ctx.checkpoint.route_id)
    )
    return 1


def _handle_zombie(ctx: EventContext, decision: ZombieRecoverAndStart) -> int:
    zombie = ctx.open_round
    status = finalize_round(
        ctx.db, zombie, decision.forced_end, ctx.catalog.active_count(ctx.checkpoint.route_id)
    )
    ctx.diagnose(
        f"Ronde abandonnée {zombie.id} clôturée de force à {decision.forced_end.isoformat()} "
        f"({status}), nouvelle ronde ouverte par {ctx.event.tag_id} à {ctx.timestamp.isoformat()}"
    )
    return 1 + _open_anchor(ctx)


def _handle_open_anchor(ctx: EventContext, decision: OpenAnchor) -> int:
    return _open_anchor(ctx)


def _handle_invalid_start(ctx: EventContext, decision: InvalidStart) -> int:
    orphan = open_orphan_round(ctx.db, ctx.window, ctx.timestamp)
    record_waypoint(ctx.db, orphan, ctx.checkpoint, ctx.event, ctx.timestamp, 0)
    logger.info(
        "Ronde INVALID ouverte %s : premier passage au point %s (%s)",
        orphan.id, ctx.checkpoint.sequence_order, ctx.event.tag_id,
    )
    return 1


def _handle_continuation(ctx: EventContext, decision: Continuation) -> int:
    return 1 if _visit(ctx, ctx.open_round) else 0


_HANDLERS: Dict[type, Callable[[EventContext, Decision], int]] = {
    Unmatched: _handle_unmatched,
    AlreadyApplied: _handle_already_applied,
    Bounce: _handle_bounce,
    NormalClose: _handle_normal_close,
    ZombieRecoverAndStart: _handle_zombie,
    OpenAnchor: _handle_open_anchor,
    InvalidStart: _handle_invalid_start,
    Continuation: _handle_continuation,
}


def apply_decision(ctx: EventContext, decision: Decision) -> int:
    """Applique la décision ; retourne le nombre de rondes touchées."""
    return _HANDLERS[type(decision)](ctx, decision)


# ----------------------------------------------------------------
# Point d'entrée
# ----------------------------------------------------------------

def _sort_events(events: Sequence[ScanEvent]) -> List[ScanEvent]:
    """Ordre chronologique strict, dédoublonné par id (l'ordre d'entrée n'est pas fiable)."""
    unique = {event.id: event for event in events}
    return sorted(
        unique.values(),
        key=lambda e: (as_utc_naive(e.timestamp), e.tag_id, str(e.id)),
    )


def _processed_ids(db: Session, event_ids: List[uuid.UUID]) -> set:
    return set(
        db.execute(
            select(ScanEvent.id).where(ScanEvent.id.in_(event_ids), ScanEvent.processed.is_(True))
        ).scalars().all()
    )


def _mark_processed(db: Session, event_ids: List[uuid.UUID]) -> None:
    if not event_ids:
        return
    db.execute(
        update(ScanEvent).where(ScanEvent.id.in_(event_ids)).values(processed=True)
    )


def process_events(db: Session, events: Sequence[ScanEvent]) -> ProcessingResult:
    """
    Traite un lot de lectures et crée / met à jour les rondes correspondantes.

    Étapes :
    1. Tri chronologique du lot
    2. Instantané du catalogue des points actifs (une seule lecture par lot)
    3. Pour chaque lecture : point, service/fenêtre, ronde ouverte → décision → application
    4. Chaque lecture est marquée traitée dans la même transaction que ses effets,
       y compris les lectures ignorées

    Les lectures déjà traitées sont ignorées : relancer un lot est sans effet.
    Toute erreur de persistance est propagée à l'appelant.
    """
    if not events:
        return ProcessingResult(rounds_affected=0, diagnostics=[])

    ordered = _sort_events(events)
    catalog = load_catalog(db, {e.tag_id for e in ordered})
    already_processed = _processed_ids(db, [e.id for e in ordered])

    rounds_affected = 0
    diagnostics: List[str] = []

    for event in ordered:
        timestamp = as_utc_naive(event.timestamp)
        ctx = EventContext(db=db, event=event, timestamp=timestamp, catalog=catalog, diagnostics=diagnostics)

        if event.id in already_processed:
            decision = AlreadyApplied()
        else:
            ctx.checkpoint = catalog.get(event.tag_id)
            if ctx.checkpoint is not None:
                ctx.window = resolve_window(db, ctx.checkpoint, timestamp)
            if ctx.window is not None:
                ctx.open_round = find_open_round(db, ctx.window.shift_id, ctx.window.route_id)
            decision = classify_event(
                ctx.checkpoint,
                ctx.window,
                timestamp,
                ctx.open_round.start_time if ctx.open_round is not None else None,
                bounce_threshold_seconds=settings.BOUNCE_THRESHOLD_SECONDS,
                zombie_threshold_seconds=settings.ZOMBIE_THRESHOLD_SECONDS,
            )

        rounds_affected += apply_decision(ctx, decision)
        _mark_processed(db, [event.id])
        db.commit()

    logger.info(
        "Lot traité : %d lectures, %d rondes touchées, %d anomalies",
        len(ordered), rounds_affected, len(diagnostics),
    )
    return ProcessingResult(rounds_affected=rounds_affected, diagnostics=diagnostics)
