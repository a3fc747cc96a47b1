"""
Modèle SQLAlchemy pour les sessions de présence.

Une session est ouverte par un enseignant : elle porte le jeton QR (unique),
la position de l'enseignant et le rayon toléré. Le flux de pointage ne fait
que la lire.
"""

import uuid
from sqlalchemy import Column, DateTime, Float, ForeignKey, String, func
from sqlalchemy.dialects.postgresql import UUID

from unitrack.database import Base


class AttendanceSession(Base):
    __tablename__ = "attendance_sessions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    group_id = Column(UUID(as_uuid=True), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)
    faculty_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)

    qr_token = Column(String(128), unique=True, nullable=False)
    session_name = Column(String(255), nullable=True)
    session_type = Column(String(30), nullable=True)     # lecture, lab, tutorial, exam

    faculty_latitude = Column(Float, nullable=False)
    faculty_longitude = Column(Float, nullable=False)
    allowed_radius_meters = Column(Float, nullable=False, default=20.0)

    status = Column(String(20), default="active")        # active, completed
    created_at = Column(DateTime, server_default=func.now())
    expires_at = Column(DateTime, nullable=False)
    ended_at = Column(DateTime, nullable=True)           # NULL = session encore ouverte
