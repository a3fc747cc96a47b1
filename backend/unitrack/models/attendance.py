"""
Modèle SQLAlchemy pour les pointages des étudiants.

Contrainte (session_id, student_id) unique : un seul enregistrement faisant foi
par étudiant et par session, y compris en cas de double scan simultané.
"""

import uuid
from sqlalchemy import Column, DateTime, Float, ForeignKey, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID

from unitrack.database import Base


class AttendanceRecord(Base):
    """Pointage d'un étudiant : scan QR ou marquage manuel par l'enseignant."""
    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("session_id", "student_id", name="uq_attendance_session_student"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    session_id = Column(UUID(as_uuid=True), ForeignKey("attendance_sessions.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    group_id = Column(UUID(as_uuid=True), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)

    status = Column(String(20), nullable=False)           # present, late, absent, excused
    check_in_time = Column(DateTime, nullable=False)
    check_in_method = Column(String(20), nullable=False)  # qr_scan, manual_faculty

    student_latitude = Column(Float, nullable=True)
    student_longitude = Column(Float, nullable=True)
    distance_from_faculty_meters = Column(Float, nullable=True)

    marked_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    manual_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
