"""
Catalogue des points de contrôle actifs, indexé par tag.

Instantané immuable construit une seule fois par lot de lectures puis
transmis à chaque étape du traitement.
"""

import uuid
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from guardtour.models.route import Checkpoint, Route

ANCHOR_ORDER = 1


@dataclass(frozen=True)
class CatalogCheckpoint:
    id: uuid.UUID
    route_id: uuid.UUID
    tag_id: str
    name: str
    sequence_order: int
    expected_transit_seconds: int
    tolerance_seconds: int
    frequency_minutes: int

    @property
    def is_anchor(self) -> bool:
        return self.sequence_order == ANCHOR_ORDER


@dataclass(frozen=True)
class CheckpointCatalog:
    by_tag: Mapping[str, CatalogCheckpoint]
    active_counts: Mapping[uuid.UUID, int]

    def get(self, tag_id: str) -> Optional[CatalogCheckpoint]:
        return self.by_tag.get(tag_id)

    def active_count(self, route_id: uuid.UUID) -> int:
        return self.active_counts.get(route_id, 0)


def load_catalog(db: Session, tag_ids: Iterable[str]) -> CheckpointCatalog:
    """
    Lit les points de contrôle actifs (sur parcours actifs) correspondant aux tags,
    ainsi que le nombre de points actifs de chaque parcours concerné.
    """
    tags = sorted(set(tag_ids))
    if not tags:
        return CheckpointCatalog(by_tag=MappingProxyType({}), active_counts=MappingProxyType({}))

    rows = db.execute(
        select(Checkpoint, Route.frequency_minutes)
        .join(Route, Route.id == Checkpoint.route_id)
        .where(
            Checkpoint.tag_id.in_(tags),
            Checkpoint.active.is_(True),
            Route.active.is_(True),
        )
    ).all()

    by_tag = {}
    for cp, frequency_minutes in rows:
        by_tag[cp.tag_id] = CatalogCheckpoint(
            id=cp.id,
            route_id=cp.route_id,
            tag_id=cp.tag_id,
            name=cp.name,
            sequence_order=cp.sequence_order,
            expected_transit_seconds=cp.expected_transit_seconds or 0,
            tolerance_seconds=cp.tolerance_seconds or 0,
            frequency_minutes=frequency_minutes,
        )

    route_ids = {cp.route_id for cp in by_tag.values()}
    counts = {}
    if route_ids:
        counts = dict(
            db.execute(
                select(Checkpoint.route_id, func.count(Checkpoint.id))
                .where(Checkpoint.route_id.in_(route_ids), Checkpoint.active.is_(True))
                .group_by(Checkpoint.route_id)
            ).all()
        )

    return CheckpointCatalog(
        by_tag=MappingProxyType(by_tag),
        active_counts=MappingProxyType(counts),
    )


def count_active_checkpoints(db: Session, route_id: uuid.UUID) -> int:
    """Nombre de points actifs d'un parcours (hors instantané de lot)."""
    return db.execute(
        select(func.count(Checkpoint.id))
        .where(Checkpoint.route_id == route_id, Checkpoint.active.is_(True))
    ).scalar() or 0
