"""
Service métier pour les sessions de présence (côté enseignant).
Ouverture avec jeton QR, image du QR code, clôture avec marquage des absents.
"""

import csv
import io
import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import qrcode
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from unitrack.auth import CurrentUser
from unitrack.config import settings
from unitrack.models.attendance import AttendanceRecord
from unitrack.models.attendance_session import AttendanceSession
from unitrack.models.group import GroupMember
from unitrack.schemas.attendance import (
    AttendanceRecordResponse,
    SessionCloseResult,
    SessionCreate,
    SessionRecordsResponse,
    SessionResponse,
)
from unitrack.services import group_service
from unitrack.services.errors import (
    NotSessionOwner,
    SessionClosed,
    SessionCloseConflict,
    SessionNotFound,
)
from unitrack.services.token_resolver import build_scan_url

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_qr_token() -> str:
    """Jeton opaque hexadécimal (QR_TOKEN_BYTES octets aléatoires)."""
    return secrets.token_hex(settings.QR_TOKEN_BYTES)


def create_session(
    db: Session,
    data: SessionCreate,
    faculty: CurrentUser,
    now: Optional[datetime] = None,
) -> SessionResponse:
    """
    Ouvre une session de présence pour un groupe.

    Durée du QR et rayon : valeur de la requête, sinon réglage du groupe,
    sinon configuration globale. Lève ValueError si le groupe est introuvable,
    NotGroupOwner si l'enseignant n'en est pas responsable (les administrateurs
    ne sont pas restreints).
    """
    group = group_service.get_owned_group(db, data.group_id, faculty)
    group_settings = group_service.find_settings(db, data.group_id)

    now = now or _utcnow()
    duration = data.qr_duration_minutes or group_service.effective_qr_duration(group_settings)
    radius = data.allowed_radius_meters or group_service.effective_radius(group_settings)

    session = AttendanceSession(
        id=uuid.uuid4(),
        group_id=data.group_id,
        faculty_id=faculty.id,
        qr_token=generate_qr_token(),
        session_name=data.session_name,
        session_type=data.session_type,
        faculty_latitude=data.faculty_latitude,
        faculty_longitude=data.faculty_longitude,
        allowed_radius_meters=radius,
        status="active",
        expires_at=now + timedelta(minutes=duration),
    )
    db.add(session)
    db.commit()

    logger.info(
        "Session %s ouverte pour le groupe %s (%d min, rayon %.0f m)",
        session.id, group.id, duration, session.allowed_radius_meters,
    )
    return to_response(session)


def get_session(db: Session, session_id: uuid.UUID) -> AttendanceSession:
    session = db.get(AttendanceSession, session_id)
    if session is None:
        raise SessionNotFound(f"Session {session_id} introuvable.")
    return session


def get_owned_session(
    db: Session, session_id: uuid.UUID, faculty: Optional[CurrentUser]
) -> AttendanceSession:
    """
    Session accessible à l'enseignant qui l'a ouverte (ou à un administrateur).
    faculty=None : appel interne (planificateur), sans contrôle.
    """
    session = get_session(db, session_id)
    if faculty is not None and not faculty.is_admin and session.faculty_id != faculty.id:
        raise NotSessionOwner("Vous n'êtes pas responsable de cette session.")
    return session


def get_session_qr_png(db: Session, session_id: uuid.UUID, faculty: Optional[CurrentUser] = None) -> bytes:
    """Image PNG du QR code encodant l'URL de scan de la session."""
    session = get_owned_session(db, session_id, faculty)
    qr = qrcode.QRCode(box_size=10, border=4)
    qr.add_data(build_scan_url(session.qr_token))
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _mark_absentees(
    db: Session,
    session: AttendanceSession,
    faculty: Optional[CurrentUser],
    now: datetime,
) -> int:
    member_ids = db.execute(
        select(GroupMember.student_id).where(
            GroupMember.group_id == session.group_id,
            GroupMember.status == "active",
        )
    ).scalars().all()

    recorded_ids = set(db.execute(
        select(AttendanceRecord.student_id).where(AttendanceRecord.session_id == session.id)
    ).scalars().all())

    absent_ids = [sid for sid in member_ids if sid not in recorded_ids]
    for student_id in absent_ids:
        db.add(AttendanceRecord(
            id=uuid.uuid4(),
            session_id=session.id,
            student_id=student_id,
            group_id=session.group_id,
            status="absent",
            check_in_time=now,
            check_in_method="manual_faculty",
            marked_by=faculty.id if faculty else None,
        ))

    session.status = "completed"
    session.ended_at = now
    db.commit()
    return len(absent_ids)


def close_session(
    db: Session,
    session_id: uuid.UUID,
    faculty: Optional[CurrentUser] = None,
    now: Optional[datetime] = None,
) -> SessionCloseResult:
    """
    Clôture une session : chaque membre actif sans pointage est marqué absent,
    puis la session passe en statut completed.

    Un pointage arrivé entre la lecture des présents et le commit viole la
    contrainte unique : on annule et on recalcule une fois, puis
    SessionCloseConflict. faculty=None correspond à la clôture automatique.
    """
    session = get_owned_session(db, session_id, faculty)
    if session.status == "completed":
        raise SessionClosed("La session est déjà clôturée.")

    now = now or _utcnow()

    for attempt in (1, 2):
        try:
            absent_marked = _mark_absentees(db, session, faculty, now)
            break
        except IntegrityError:
            db.rollback()
            logger.warning("Clôture de la session %s : pointage concurrent (essai %d)", session.id, attempt)
    else:
        raise SessionCloseConflict("Des pointages sont en cours, réessayez la clôture.")

    logger.info("Session %s clôturée : %d absent(s) marqué(s)", session.id, absent_marked)
    return SessionCloseResult(session_id=session.id, absent_marked=absent_marked, ended_at=now)


def close_expired_sessions(db: Session, now: Optional[datetime] = None) -> int:
    """
    Clôture les sessions actives expirées depuis plus de EXPIRED_SESSION_GRACE_MINUTES.
    Chaque session est traitée séparément : un échec n'empêche pas les suivantes.
    Retourne le nombre de sessions clôturées.
    """
    now = now or _utcnow()
    cutoff = now - timedelta(minutes=settings.EXPIRED_SESSION_GRACE_MINUTES)

    expired_ids = db.execute(
        select(AttendanceSession.id).where(
            AttendanceSession.status == "active",
            AttendanceSession.expires_at < cutoff,
        )
    ).scalars().all()

    closed = 0
    for session_id in expired_ids:
        try:
            close_session(db, session_id, faculty=None, now=now)
        except ValueError as e:
            logger.warning("Clôture automatique de la session %s ignorée : %s", session_id, e)
            continue
        closed += 1
    return closed


def get_session_records(
    db: Session, session_id: uuid.UUID, faculty: Optional[CurrentUser] = None
) -> SessionRecordsResponse:
    """Liste des pointages d'une session, par heure de pointage."""
    session = get_owned_session(db, session_id, faculty)
    records = db.execute(
        select(AttendanceRecord)
        .where(AttendanceRecord.session_id == session.id)
        .order_by(AttendanceRecord.check_in_time)
    ).scalars().all()

    return SessionRecordsResponse(
        session_id=session.id,
        total=len(records),
        records=[AttendanceRecordResponse.model_validate(r) for r in records],
    )


def export_session_records_csv(
    db: Session, session_id: uuid.UUID, faculty: Optional[CurrentUser] = None
) -> str:
    """
    Génère un CSV des pointages d'une session.
    Retourne le contenu CSV sous forme de string (UTF-8 BOM pour Excel).
    """
    records: List[AttendanceRecordResponse] = get_session_records(db, session_id, faculty).records

    output = io.StringIO()
    writer = csv.writer(output, delimiter=";")
    writer.writerow(["student_id", "status", "check_in_time", "check_in_method", "distance_m"])

    for r in records:
        writer.writerow([
            str(r.student_id),
            r.status,
            r.check_in_time.strftime("%Y-%m-%d %H:%M:%S"),
            r.check_in_method,
            f"{r.distance_from_faculty_meters:.0f}" if r.distance_from_faculty_meters is not None else "",
        ])

    return "\ufeff" + output.getvalue()  # BOM pour compatibilité Excel


def to_response(session: AttendanceSession) -> SessionResponse:
    return SessionResponse(
        id=session.id,
        group_id=session.group_id,
        faculty_id=session.faculty_id,
        qr_token=session.qr_token,
        scan_url=build_scan_url(session.qr_token),
        session_name=session.session_name,
        session_type=session.session_type,
        faculty_latitude=session.faculty_latitude,
        faculty_longitude=session.faculty_longitude,
        allowed_radius_meters=session.allowed_radius_meters,
        status=session.status,
        expires_at=session.expires_at,
        ended_at=session.ended_at,
    )
