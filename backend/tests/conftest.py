"""
Configuration partagée pour tous les tests.

- client : API avec get_db remplacé par un MagicMock (aucune connexion PostgreSQL)
- session_factory / db_session : base SQLite en mémoire, une par session créée,
  pour exercer le moteur de rondes de bout en bout
- seed_patrol : parcours de 3 points (TAG1 = ancrage), fréquence 2h,
  service de 24h à partir du 2024-01-01 08:00
"""

from datetime import datetime
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import guardtour.models  # noqa: F401
from guardtour.database import Base, get_db
from guardtour.main import app
from guardtour.models.guard import Guard
from guardtour.models.route import Checkpoint, Route
from guardtour.models.scan_event import ScanEvent
from guardtour.models.shift import Shift

SHIFT_START = datetime(2024, 1, 1, 8, 0)
SHIFT_END = datetime(2024, 1, 2, 8, 0)


@pytest.fixture
def client():
    """Client HTTP de test avec la BDD mockée."""
    mock_db = MagicMock()
    app.dependency_overrides[get_db] = lambda: mock_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def session_factory():
    """Fabrique de sessions, chacune sur sa propre base SQLite en mémoire."""
    opened = []

    def _new_session():
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(engine)
        db = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
        opened.append((db, engine))
        return db

    yield _new_session

    for db, engine in opened:
        db.close()
        engine.dispose()


@pytest.fixture
def db_session(session_factory):
    return session_factory()


@pytest.fixture
def seed_patrol():
    """Crée vigile, parcours (3 points), service de 24h. Retourne un namespace."""

    def _seed(db, frequency_minutes=120, shift_start=SHIFT_START, shift_end=SHIFT_END):
        guard = Guard(name="Juan Pérez", employee_number="V-001")
        route = Route(name="Périmètre nord", frequency_minutes=frequency_minutes)
        db.add_all([guard, route])
        db.flush()

        checkpoints = {
            1: Checkpoint(route_id=route.id, name="Accès principal", tag_id="TAG1",
                          sequence_order=1, expected_transit_seconds=300, tolerance_seconds=300),
            2: Checkpoint(route_id=route.id, name="Quai de chargement", tag_id="TAG2",
                          sequence_order=2, expected_transit_seconds=300, tolerance_seconds=120),
            3: Checkpoint(route_id=route.id, name="Parking", tag_id="TAG3",
                          sequence_order=3, expected_transit_seconds=300, tolerance_seconds=120),
        }
        db.add_all(checkpoints.values())

        shift = Shift(guard_id=guard.id, route_id=route.id, start_time=shift_start, end_time=shift_end)
        db.add(shift)
        db.commit()
        return SimpleNamespace(guard=guard, route=route, shift=shift, checkpoints=checkpoints)

    return _seed


@pytest.fixture
def add_scans():
    """Insère des lectures non traitées : add_scans(db, [("TAG1", datetime), ...])."""

    def _add(db, scans):
        events = [ScanEvent(tag_id=tag, timestamp=ts, processed=False) for tag, ts in scans]
        db.add_all(events)
        db.commit()
        return events

    return _add
