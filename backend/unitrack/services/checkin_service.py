"""
Service métier pour le pointage par QR code.

Flux (un seul aller-retour, aucune reprise interne) :
  1. Retrouver la session active du jeton (expirée → refus si l'expiration est appliquée)
  2. Vérifier que l'étudiant est membre actif du groupe
  3. Refuser un second pointage pour la même session
  4. Calculer la distance haversine étudiant ↔ enseignant
  5. Classer present / late (ou refuser hors rayon selon OUT_OF_RANGE_POLICY)
  6. Insérer un AttendanceRecord et le renvoyer avec les champs d'affichage
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from unitrack.auth import CurrentUser
from unitrack.config import settings
from unitrack.models.attendance import AttendanceRecord
from unitrack.models.attendance_session import AttendanceSession
from unitrack.models.group import GroupMember
from unitrack.models.user import User
from unitrack.schemas.attendance import CheckInRequest, CheckInResponse
from unitrack.services.errors import (
    AlreadyCheckedIn,
    NotGroupMember,
    OutOfRange,
    SessionExpired,
    SessionNotFound,
)
from unitrack.services.geo import classify_check_in, haversine_distance

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def find_active_session(db: Session, token: str) -> Optional[AttendanceSession]:
    """Retourne la session active portant ce jeton, ou None."""
    return db.execute(
        select(AttendanceSession).where(
            AttendanceSession.qr_token == token,
            AttendanceSession.status == "active",
        )
    ).scalar()


def process_check_in(
    db: Session,
    data: CheckInRequest,
    user: CurrentUser,
    now: Optional[datetime] = None,
    out_of_range_policy: Optional[str] = None,
    enforce_expiry: Optional[bool] = None,
) -> CheckInResponse:
    """
    Enregistre le pointage de l'étudiant authentifié.

    Lève SessionNotFound, SessionExpired, NotGroupMember, AlreadyCheckedIn
    ou OutOfRange (uniquement si la politique hors rayon vaut "reject").
    Aucun enregistrement n'est créé en cas d'erreur.
    """
    now = now or _utcnow()
    policy = (out_of_range_policy or settings.OUT_OF_RANGE_POLICY).lower()
    if enforce_expiry is None:
        enforce_expiry = settings.ENFORCE_SESSION_EXPIRY

    # 1. Session active
    session = find_active_session(db, data.qr_code_token)
    if session is None:
        logger.info("Pointage refusé : jeton inconnu (%s...)", data.qr_code_token[:8])
        raise SessionNotFound(
            f"Aucune session active pour le jeton {data.qr_code_token[:8]}..."
        )

    if enforce_expiry and session.expires_at is not None and session.expires_at < now:
        logger.info("Pointage refusé : session %s expirée", session.id)
        raise SessionExpired("Ce QR code a expiré. Demandez un nouveau code à l'enseignant.")

    # 2. Appartenance au groupe
    membership = db.execute(
        select(GroupMember).where(
            GroupMember.group_id == session.group_id,
            GroupMember.student_id == user.id,
            GroupMember.status == "active",
        )
    ).scalar()

    if not membership:
        raise NotGroupMember("Vous n'êtes pas membre du groupe de cette session.")

    # 3. Pointage déjà enregistré
    existing = db.execute(
        select(AttendanceRecord.id).where(
            AttendanceRecord.session_id == session.id,
            AttendanceRecord.student_id == user.id,
        )
    ).scalar()

    if existing:
        raise AlreadyCheckedIn("Votre présence est déjà enregistrée pour cette session.")

    # 4-5. Distance et statut
    distance = haversine_distance(
        data.student_latitude, data.student_longitude,
        session.faculty_latitude, session.faculty_longitude,
    )
    try:
        status = classify_check_in(distance, session.allowed_radius_meters, policy)
    except OutOfRange:
        logger.info(
            "Pointage refusé : étudiant %s à %.0f m (rayon %.0f m)",
            user.id, distance, session.allowed_radius_meters,
        )
        raise

    # 6. Insertion
    record = AttendanceRecord(
        id=uuid.uuid4(),
        session_id=session.id,
        student_id=user.id,
        group_id=session.group_id,
        status=status,
        check_in_time=now,
        check_in_method="qr_scan",
        student_latitude=data.student_latitude,
        student_longitude=data.student_longitude,
        distance_from_faculty_meters=distance,
    )
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        # Deux scans simultanés : la contrainte unique (session_id, student_id) tranche
        db.rollback()
        raise AlreadyCheckedIn("Votre présence est déjà enregistrée pour cette session.")

    logger.info(
        "Pointage %s : étudiant %s, session %s, %.1f m",
        status, user.id, session.id, distance,
    )

    student = db.get(User, user.id)
    return CheckInResponse(
        id=record.id,
        session_id=record.session_id,
        student_id=record.student_id,
        status=record.status,
        check_in_time=record.check_in_time,
        student_latitude=record.student_latitude,
        student_longitude=record.student_longitude,
        distance_from_faculty_meters=record.distance_from_faculty_meters,
        session_name=session.session_name,
        session_type=session.session_type,
        student_name=(student.name or student.email) if student else None,
        student_usn=student.usn if student else None,
    )
