"""
Planificateur APScheduler pour la clôture automatique des sessions expirées.

Le job s'exécute toutes les SESSION_SWEEP_INTERVAL_MINUTES et clôture les
sessions encore actives dont le QR code a expiré depuis plus de
EXPIRED_SESSION_GRACE_MINUTES (les membres sans pointage sont marqués absents).
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from unitrack.config import settings
from unitrack.database import SessionLocal

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def _close_expired_sessions_scheduled() -> None:
    """
    Tâche planifiée : clôture les sessions expirées.
    Import local pour éviter les imports circulaires.
    """
    from unitrack.services.session_service import close_expired_sessions

    db = SessionLocal()
    try:
        closed = close_expired_sessions(db)
        if closed:
            logger.info("Clôture automatique : %d session(s) expirée(s) clôturée(s)", closed)
    except Exception as exc:
        db.rollback()
        logger.error("Erreur lors de la clôture automatique des sessions : %s", exc)
    finally:
        db.close()


def start_scheduler() -> None:
    """Démarre le planificateur en arrière-plan (appelé au démarrage de l'API)."""
    scheduler.add_job(
        _close_expired_sessions_scheduled,
        trigger="interval",
        minutes=settings.SESSION_SWEEP_INTERVAL_MINUTES,
        id="close_expired_sessions",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        "Scheduler démarré : clôture des sessions expirées toutes les %d min.",
        settings.SESSION_SWEEP_INTERVAL_MINUTES,
    )


def stop_scheduler() -> None:
    """Arrête le planificateur proprement (appelé à l'arrêt de l'API)."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler arrêté.")
