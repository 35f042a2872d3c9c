"""
Planificateur APScheduler pour le marquage des rondes non effectuées.

Le job s'exécute toutes les GAP_FILL_INTERVAL_MINUTES minutes et crée une ronde
NOT_PERFORMED pour chaque fenêtre écoulée sans activité.
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from guardtour.config import settings
from guardtour.database import SessionLocal

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def _gap_fill_scheduled() -> None:
    """
    Tâche planifiée : matérialise les rondes non effectuées.
    Une erreur est journalisée ; le prochain passage retentera.
    Import local pour éviter les imports circulaires.
    """
    from guardtour.services.gap_filler import run_gap_fill

    db = SessionLocal()
    try:
        created = run_gap_fill(db)
        logger.info("Job rondes non effectuées : %d créées", created)
    except Exception as exc:
        db.rollback()
        logger.error("Erreur lors du marquage des rondes non effectuées : %s", exc)
    finally:
        db.close()


def start_scheduler() -> None:
    """Démarre le planificateur en arrière-plan (appelé au démarrage de l'API)."""
    scheduler.add_job(
        _gap_fill_scheduled,
        trigger="interval",
        minutes=settings.GAP_FILL_INTERVAL_MINUTES,
        id="gap_fill_not_performed",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        "Scheduler démarré, rondes non effectuées toutes les %d minutes.",
        settings.GAP_FILL_INTERVAL_MINUTES,
    )


def stop_scheduler() -> None:
    """Arrête le planificateur proprement (appelé à l'arrêt de l'API)."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler arrêté.")
