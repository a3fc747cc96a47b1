"""
Contrôle d'éligibilité avant une tentative de pointage.

Politique interchangeable : le service de pointage et le router ne dépendent
que de `is_eligible(token, user)`, la règle effective est choisie par
configuration (ELIGIBILITY_POLICY).
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from unitrack.auth import CurrentUser
from unitrack.config import settings
from unitrack.models.attendance import AttendanceRecord
from unitrack.models.attendance_session import AttendanceSession

logger = logging.getLogger(__name__)


class EligibilityPolicy:
    """Interface : une seule méthode, appelée avant la géolocalisation."""

    def is_eligible(self, token: Optional[str], user: Optional[CurrentUser]) -> bool:
        raise NotImplementedError


class AllowAllPolicy(EligibilityPolicy):
    """Comportement de référence : éligible dès qu'un jeton et un utilisateur sont présents."""

    def is_eligible(self, token: Optional[str], user: Optional[CurrentUser]) -> bool:
        return bool(token) and user is not None


class NoExistingRecordPolicy(AllowAllPolicy):
    """Refuse l'étudiant qui a déjà un pointage pour la session de ce jeton."""

    def __init__(self, db: Session):
        self.db = db

    def is_eligible(self, token: Optional[str], user: Optional[CurrentUser]) -> bool:
        if not super().is_eligible(token, user):
            return False

        existing = self.db.execute(
            select(AttendanceRecord.id)
            .join(AttendanceSession, AttendanceSession.id == AttendanceRecord.session_id)
            .where(
                AttendanceSession.qr_token == token,
                AttendanceRecord.student_id == user.id,
            )
        ).scalar()

        if existing:
            logger.debug("Étudiant %s déjà pointé pour ce jeton", user.id)
            return False
        return True


POLICIES = {
    "allow_all": lambda db: AllowAllPolicy(),
    "no_existing_record": NoExistingRecordPolicy,
}


def get_eligibility_policy(db: Session, name: Optional[str] = None) -> EligibilityPolicy:
    """Instancie la politique configurée. Lève ValueError si le nom est inconnu."""
    key = (name or settings.ELIGIBILITY_POLICY).strip().lower()
    try:
        factory = POLICIES[key]
    except KeyError:
        raise ValueError(f"Politique d'éligibilité inconnue : {key}")
    return factory(db)
