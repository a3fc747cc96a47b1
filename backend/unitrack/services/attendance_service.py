"""
Service métier pour le marquage manuel, les sessions en cours et les bilans de présence.

Seuls present et late comptent comme présences ; excused n'est ni présent ni absent.
"""

import logging
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from unitrack.auth import CurrentUser
from unitrack.models.attendance import AttendanceRecord
from unitrack.models.attendance_session import AttendanceSession
from unitrack.models.group import Group, GroupMember
from unitrack.models.user import User
from unitrack.schemas.attendance import (
    ActiveSessionResponse,
    AttendanceRecordResponse,
    AttendanceSummary,
    GroupAttendanceStats,
    ManualAttendanceCreate,
    SessionHistoryEntry,
)
from unitrack.services import group_service, session_service

logger = logging.getLogger(__name__)

ATTENDED_STATUSES = ("present", "late")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def mark_manual_attendance(
    db: Session,
    data: ManualAttendanceCreate,
    faculty: CurrentUser,
) -> AttendanceRecordResponse:
    """
    Marque (ou corrige) la présence d'un étudiant.
    Un pointage existant est mis à jour, sinon un nouveau est créé.
    """
    session = session_service.get_owned_session(db, data.session_id, faculty)

    record = db.execute(
        select(AttendanceRecord).where(
            AttendanceRecord.session_id == data.session_id,
            AttendanceRecord.student_id == data.student_id,
        )
    ).scalar()

    if record is not None:
        record.status = data.status
        record.marked_by = faculty.id
        record.manual_reason = data.manual_reason
        record.check_in_method = "manual_faculty"
    else:
        record = AttendanceRecord(
            id=uuid.uuid4(),
            session_id=session.id,
            student_id=data.student_id,
            group_id=session.group_id,
            status=data.status,
            check_in_time=_utcnow(),
            check_in_method="manual_faculty",
            marked_by=faculty.id,
            manual_reason=data.manual_reason,
        )
        db.add(record)

    db.commit()
    db.refresh(record)

    logger.info(
        "Marquage manuel %s : étudiant %s, session %s (par %s)",
        data.status, data.student_id, session.id, faculty.id,
    )
    return AttendanceRecordResponse.model_validate(record)


# ----------------------------------------------------------------
# Sessions en cours
# ----------------------------------------------------------------

def _to_active_response(
    session: AttendanceSession, group: Optional[Group], now: datetime
) -> ActiveSessionResponse:
    remaining = max(0.0, (session.expires_at - now).total_seconds() / 60)
    return ActiveSessionResponse(
        **session_service.to_response(session).model_dump(),
        group_name=group.name if group else None,
        subject=group.subject if group else None,
        subject_code=group.subject_code if group else None,
        qr_status="active" if session.expires_at > now else "expired",
        minutes_until_qr_expiry=round(remaining, 1),
    )


def _active_sessions_query():
    return (
        select(AttendanceSession, Group)
        .join(Group, Group.id == AttendanceSession.group_id)
        .where(AttendanceSession.status == "active")
        .order_by(AttendanceSession.created_at.desc())
    )


def get_group_active_session(
    db: Session, group_id: uuid.UUID, now: Optional[datetime] = None
) -> Optional[ActiveSessionResponse]:
    """Dernière session ouverte du groupe, ou None."""
    row = db.execute(
        _active_sessions_query().where(AttendanceSession.group_id == group_id).limit(1)
    ).first()
    if row is None:
        return None
    session, group = row
    return _to_active_response(session, group, now or _utcnow())


def get_faculty_active_sessions(
    db: Session, faculty: CurrentUser, now: Optional[datetime] = None
) -> List[ActiveSessionResponse]:
    rows = db.execute(
        _active_sessions_query().where(AttendanceSession.faculty_id == faculty.id)
    ).all()
    now = now or _utcnow()
    return [_to_active_response(session, group, now) for session, group in rows]


# ----------------------------------------------------------------
# Bilans
# ----------------------------------------------------------------

def summarize_statuses(
    student_id: uuid.UUID,
    group_id: uuid.UUID,
    total_sessions: int,
    statuses: Iterable[str],
    student_name: Optional[str] = None,
    usn: Optional[str] = None,
) -> AttendanceSummary:
    """
    Agrège les statuts d'un étudiant. Une session sans pointage compte absente,
    en plus des absences déjà marquées à la clôture.
    """
    statuses = list(statuses)
    present = statuses.count("present")
    late = statuses.count("late")
    excused = statuses.count("excused")
    absent = max(0, total_sessions - len(statuses)) + statuses.count("absent")

    attended = present + late
    percentage = (attended / total_sessions) * 100 if total_sessions > 0 else 0.0

    return AttendanceSummary(
        student_id=student_id,
        group_id=group_id,
        student_name=student_name,
        usn=usn,
        total_sessions=total_sessions,
        attended_sessions=attended,
        present_sessions=present,
        late_sessions=late,
        absent_sessions=absent,
        excused_sessions=excused,
        attendance_percentage=round(percentage, 1),
    )


def _count_group_sessions(db: Session, group_id: uuid.UUID) -> int:
    session_ids = db.execute(
        select(AttendanceSession.id).where(
            AttendanceSession.group_id == group_id,
            AttendanceSession.status.in_(["active", "completed"]),
        )
    ).scalars().all()
    return len(session_ids)


def get_student_attendance_summary(
    db: Session,
    student_id: uuid.UUID,
    group_id: uuid.UUID,
) -> AttendanceSummary:
    """Bilan de présence d'un étudiant sur les sessions (actives ou clôturées) du groupe."""
    total_sessions = _count_group_sessions(db, group_id)

    statuses = db.execute(
        select(AttendanceRecord.status).where(
            AttendanceRecord.student_id == student_id,
            AttendanceRecord.group_id == group_id,
        )
    ).scalars().all()

    return summarize_statuses(student_id, group_id, total_sessions, statuses)


def get_group_attendance_summary(db: Session, group_id: uuid.UUID) -> List[AttendanceSummary]:
    """Bilan de chaque membre actif, du meilleur taux de présence au plus faible."""
    total_sessions = _count_group_sessions(db, group_id)

    members = db.execute(
        select(GroupMember.student_id, User.name, User.email, User.usn)
        .outerjoin(User, User.id == GroupMember.student_id)
        .where(
            GroupMember.group_id == group_id,
            GroupMember.status == "active",
        )
    ).all()
    if not members:
        return []

    statuses_by_student = defaultdict(list)
    for row in db.execute(
        select(AttendanceRecord.student_id, AttendanceRecord.status)
        .where(AttendanceRecord.group_id == group_id)
    ).all():
        statuses_by_student[row.student_id].append(row.status)

    summaries = [
        summarize_statuses(
            m.student_id, group_id, total_sessions, statuses_by_student.get(m.student_id, []),
            student_name=m.name or m.email, usn=m.usn,
        )
        for m in members
    ]
    summaries.sort(key=lambda s: s.attendance_percentage, reverse=True)
    return summaries


def get_students_with_low_attendance(
    db: Session, group_id: uuid.UUID, threshold: Optional[float] = None
) -> List[AttendanceSummary]:
    """
    Étudiants sous le seuil d'alerte (réglage du groupe, sinon configuration),
    du taux le plus faible au plus élevé. Sans session, personne n'est signalé.
    """
    if threshold is None:
        threshold = group_service.effective_threshold(group_service.find_settings(db, group_id))

    low = [
        s for s in get_group_attendance_summary(db, group_id)
        if s.total_sessions > 0 and s.attendance_percentage < threshold
    ]
    low.sort(key=lambda s: s.attendance_percentage)
    return low


def get_group_attendance_stats(db: Session, group_id: uuid.UUID) -> GroupAttendanceStats:
    """Taux de présence moyen sur les sessions clôturées : présences / (sessions × membres)."""
    session_ids = db.execute(
        select(AttendanceSession.id).where(
            AttendanceSession.group_id == group_id,
            AttendanceSession.status == "completed",
        )
    ).scalars().all()

    total_students = db.execute(
        select(func.count()).select_from(GroupMember).where(
            GroupMember.group_id == group_id,
            GroupMember.status == "active",
        )
    ).scalar() or 0

    total_sessions = len(session_ids)
    if total_sessions == 0 or total_students == 0:
        return GroupAttendanceStats(
            group_id=group_id, total_sessions=total_sessions,
            total_students=total_students, average_attendance=0,
        )

    attended = db.execute(
        select(func.count(AttendanceRecord.id)).where(
            AttendanceRecord.session_id.in_(session_ids),
            AttendanceRecord.status.in_(ATTENDED_STATUSES),
        )
    ).scalar() or 0

    average = min(100.0, attended / (total_sessions * total_students) * 100)
    return GroupAttendanceStats(
        group_id=group_id,
        total_sessions=total_sessions,
        total_students=total_students,
        average_attendance=round(average, 1),
    )


def get_student_session_history(
    db: Session, student_id: uuid.UUID, group_id: uuid.UUID
) -> List[SessionHistoryEntry]:
    """
    Sessions du groupe (les plus récentes d'abord) avec le statut de l'étudiant.
    Sans pointage : absent si la session est clôturée, pending si elle est ouverte.
    """
    sessions = db.execute(
        select(AttendanceSession)
        .where(AttendanceSession.group_id == group_id)
        .order_by(AttendanceSession.created_at.desc())
    ).scalars().all()
    if not sessions:
        return []

    records = db.execute(
        select(AttendanceRecord).where(
            AttendanceRecord.student_id == student_id,
            AttendanceRecord.session_id.in_([s.id for s in sessions]),
        )
    ).scalars().all()
    by_session = {r.session_id: r for r in records}

    history = []
    for session in sessions:
        record = by_session.get(session.id)
        if record is not None:
            status = record.status
        else:
            status = "absent" if session.status == "completed" else "pending"
        history.append(SessionHistoryEntry(
            session_id=session.id,
            session_name=session.session_name,
            session_type=session.session_type,
            session_status=session.status,
            created_at=session.created_at,
            ended_at=session.ended_at,
            attendance_status=status,
            marked_at=record.check_in_time if record else None,
            location_verified=(
                record is not None
                and record.student_latitude is not None
                and record.student_longitude is not None
            ),
        ))
    return history
