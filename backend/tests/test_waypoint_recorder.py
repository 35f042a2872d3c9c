"""
Tests unitaires de l'enregistrement des passages (écarts, statut, upsert).
"""

from datetime import datetime, timedelta

from sqlalchemy import select

from guardtour.models.round import Round, RoundState, RoundStatus, Waypoint, WaypointStatus
from guardtour.models.scan_event import ScanEvent
from guardtour.services.checkpoint_catalog import load_catalog
from guardtour.services.waypoint_recorder import (
    opening_delta,
    previous_timestamp,
    record_waypoint,
    transit_delta,
    waypoint_status,
)

T0 = datetime(2024, 1, 1, 10, 0)


def make_round(db, patrol, start=T0):
    rnd = Round(
        route_id=patrol.route.id, shift_id=patrol.shift.id, guard_id=patrol.guard.id,
        start_time=start, window_start=T0, window_end=T0 + timedelta(hours=2),
        state=RoundState.OPEN, status=RoundStatus.INCOMPLETE,
    )
    db.add(rnd)
    db.flush()
    return rnd


def make_event(db, tag, ts):
    event = ScanEvent(tag_id=tag, timestamp=ts, processed=False)
    db.add(event)
    db.flush()
    return event


def test_opening_delta_signe():
    assert opening_delta(T0 + timedelta(minutes=3), T0) == 180
    assert opening_delta(T0 - timedelta(seconds=20), T0) == -20


def test_transit_delta_point_a_point():
    assert transit_delta(T0 + timedelta(minutes=4), T0, 300) == -60
    assert transit_delta(T0 + timedelta(minutes=7), T0, 300) == 120


def test_transit_delta_arrondi_a_la_seconde():
    assert transit_delta(T0 + timedelta(seconds=300, milliseconds=600), T0, 300) == 1


def test_waypoint_status_tolerance_incluse():
    assert waypoint_status(120, 120) == WaypointStatus.ON_TIME
    assert waypoint_status(-120, 120) == WaypointStatus.ON_TIME
    assert waypoint_status(121, 120) == WaypointStatus.LATE
    assert waypoint_status(-121, 120) == WaypointStatus.LATE


def test_previous_timestamp_sans_passage_utilise_le_debut(db_session, seed_patrol):
    patrol = seed_patrol(db_session)
    rnd = make_round(db_session, patrol, start=T0 + timedelta(minutes=2))

    assert previous_timestamp(db_session, rnd) == T0 + timedelta(minutes=2)


def test_record_waypoint_cree_puis_met_a_jour(db_session, seed_patrol):
    patrol = seed_patrol(db_session)
    catalog = load_catalog(db_session, ["TAG2"])
    rnd = make_round(db_session, patrol)
    first = make_event(db_session, "TAG2", T0 + timedelta(minutes=5))
    second = make_event(db_session, "TAG2", T0 + timedelta(minutes=9))

    record_waypoint(db_session, rnd, catalog.get("TAG2"), first, first.timestamp, 0)
    record_waypoint(db_session, rnd, catalog.get("TAG2"), second, second.timestamp, 240)

    [wp] = db_session.execute(select(Waypoint).where(Waypoint.round_id == rnd.id)).scalars().all()
    assert wp.scan_event_id == second.id
    assert wp.timestamp == T0 + timedelta(minutes=9)
    assert wp.delta_seconds == 240
    assert wp.status == WaypointStatus.LATE
    assert wp.sequence_order == 2
    assert previous_timestamp(db_session, rnd) == T0 + timedelta(minutes=9)


def test_ancrage_ouverture_et_cloture_distincts(db_session, seed_patrol):
    patrol = seed_patrol(db_session)
    anchor = load_catalog(db_session, ["TAG1"]).get("TAG1")
    rnd = make_round(db_session, patrol)
    opening = make_event(db_session, "TAG1", T0)
    closing = make_event(db_session, "TAG1", T0 + timedelta(minutes=20))

    record_waypoint(db_session, rnd, anchor, opening, opening.timestamp, 0)
    record_waypoint(db_session, rnd, anchor, closing, closing.timestamp, 0, closing=True)

    waypoints = db_session.execute(select(Waypoint).where(Waypoint.round_id == rnd.id)).scalars().all()
    assert sorted(w.closing for w in waypoints) == [False, True]
