"""
Tests unitaires du suivi des rondes (ronde ouverte, ronde de fenêtre, rondes orphelines).
"""

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from guardtour.models.round import Round, RoundState, RoundStatus
from guardtour.services.round_tracker import (
    ORPHAN_ROUND_NOTE,
    find_open_round,
    find_or_create_window_round,
    find_window_round,
    insert_window_round,
    list_orphan_rounds,
    open_orphan_round,
    reopen_round,
)
from guardtour.services.window_resolver import ShiftWindow

T0 = datetime(2024, 1, 1, 10, 0)


def window_for(patrol, start=T0):
    return ShiftWindow(
        shift_id=patrol.shift.id, guard_id=patrol.guard.id, route_id=patrol.route.id,
        window_start=start, window_end=start + timedelta(hours=2),
    )


def test_find_open_round_aucune(db_session, seed_patrol):
    patrol = seed_patrol(db_session)
    assert find_open_round(db_session, patrol.shift.id, patrol.route.id) is None


def test_find_or_create_cree_une_ronde_ouverte(db_session, seed_patrol):
    patrol = seed_patrol(db_session)

    rnd, created = find_or_create_window_round(db_session, window_for(patrol), T0 + timedelta(minutes=4))

    assert created is True
    assert rnd.state == RoundState.OPEN
    assert rnd.status == RoundStatus.INCOMPLETE
    assert rnd.start_time == T0 + timedelta(minutes=4)
    assert rnd.end_time is None
    assert rnd.window_end - rnd.window_start == timedelta(hours=2)
    assert find_open_round(db_session, patrol.shift.id, patrol.route.id).id == rnd.id


def test_find_or_create_retourne_la_ronde_existante(db_session, seed_patrol):
    patrol = seed_patrol(db_session)
    first, _ = find_or_create_window_round(db_session, window_for(patrol), T0)

    again, created = find_or_create_window_round(db_session, window_for(patrol), T0 + timedelta(minutes=1))

    assert created is False
    assert again.id == first.id
    assert again.start_time == T0


def test_ronde_non_effectuee_non_consideree_ouverte(db_session, seed_patrol):
    patrol = seed_patrol(db_session)
    db_session.add(Round(
        route_id=patrol.route.id, shift_id=patrol.shift.id, guard_id=patrol.guard.id,
        window_start=T0, window_end=T0 + timedelta(hours=2),
        state=RoundState.NEVER_OPENED, status=RoundStatus.NOT_PERFORMED,
    ))
    db_session.flush()

    assert find_open_round(db_session, patrol.shift.id, patrol.route.id) is None


def test_reopen_round(db_session, seed_patrol):
    patrol = seed_patrol(db_session)
    rnd = Round(
        route_id=patrol.route.id, shift_id=patrol.shift.id, guard_id=patrol.guard.id,
        window_start=T0, window_end=T0 + timedelta(hours=2),
        state=RoundState.NEVER_OPENED, status=RoundStatus.NOT_PERFORMED, notes="non effectuée",
    )
    db_session.add(rnd)
    db_session.flush()

    reopen_round(db_session, rnd, T0 + timedelta(minutes=10))

    assert rnd.state == RoundState.OPEN
    assert rnd.status == RoundStatus.INCOMPLETE
    assert rnd.notes is None


def test_rondes_orphelines_listees(db_session, seed_patrol):
    patrol = seed_patrol(db_session)
    orphan = open_orphan_round(db_session, window_for(patrol), T0)

    assert orphan.notes == ORPHAN_ROUND_NOTE
    assert [r.id for r in list_orphan_rounds(db_session, T0 + timedelta(hours=6))] == [orphan.id]
    assert list_orphan_rounds(db_session, T0) == []


# ============================================================
# Unicité des rondes fenêtrées
# ============================================================

def windowed_round(patrol, start=T0, **kwargs):
    return Round(
        route_id=patrol.route.id, shift_id=patrol.shift.id, guard_id=patrol.guard.id,
        window_start=start, window_end=start + timedelta(hours=2), **kwargs,
    )


def test_deux_rondes_pour_une_fenetre_refusees_par_la_base(db_session, seed_patrol):
    patrol = seed_patrol(db_session)
    db_session.add(windowed_round(patrol, state=RoundState.OPEN, status=RoundStatus.INCOMPLETE))
    db_session.add(windowed_round(patrol, state=RoundState.NEVER_OPENED, status=RoundStatus.NOT_PERFORMED))

    with pytest.raises(IntegrityError):
        db_session.flush()


def test_rondes_orphelines_hors_contrainte_de_fenetre(db_session, seed_patrol):
    """Deux rondes orphelines au même instant, et une ronde fenêtrée à la même borne."""
    patrol = seed_patrol(db_session)
    open_orphan_round(db_session, window_for(patrol), T0)
    open_orphan_round(db_session, window_for(patrol), T0)

    created = insert_window_round(db_session, window_for(patrol), RoundState.OPEN, RoundStatus.INCOMPLETE, T0)

    assert created is True
    assert len(db_session.execute(select(Round)).scalars().all()) == 3


def test_insert_window_round_ignore_une_fenetre_existante(db_session, seed_patrol):
    patrol = seed_patrol(db_session)
    first = insert_window_round(
        db_session, window_for(patrol), RoundState.NEVER_OPENED, RoundStatus.NOT_PERFORMED
    )
    second = insert_window_round(
        db_session, window_for(patrol), RoundState.OPEN, RoundStatus.INCOMPLETE, start_time=T0
    )

    assert first is True
    assert second is False
    [rnd] = db_session.execute(select(Round)).scalars().all()
    assert rnd.status == RoundStatus.NOT_PERFORMED


def test_find_window_round_ignore_les_orphelines(db_session, seed_patrol):
    patrol = seed_patrol(db_session)
    open_orphan_round(db_session, window_for(patrol), T0)

    assert find_window_round(db_session, patrol.shift.id, patrol.route.id, T0) is None


def test_find_or_create_fenetre_creee_entre_temps(db_session, seed_patrol):
    """Le job des rondes non effectuées insère la fenêtre juste après la vérification du moteur."""
    patrol = seed_patrol(db_session)
    insert_window_round(db_session, window_for(patrol), RoundState.NEVER_OPENED, RoundStatus.NOT_PERFORMED)
    lookups = []

    def missed_then_found(*args):
        lookups.append(args)
        return None if len(lookups) == 1 else find_window_round(*args)

    with patch("guardtour.services.round_tracker.find_window_round", side_effect=missed_then_found):
        rnd, created = find_or_create_window_round(db_session, window_for(patrol), T0 + timedelta(minutes=5))

    assert created is False
    assert rnd.state == RoundState.NEVER_OPENED
    assert len(db_session.execute(select(Round)).scalars().all()) == 1
