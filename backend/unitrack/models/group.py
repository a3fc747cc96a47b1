"""
Modèles SQLAlchemy pour les groupes (classes) et leurs membres.
"""

import uuid
from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID

from unitrack.database import Base


class Group(Base):
    __tablename__ = "groups"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(150), nullable=False)
    subject = Column(String(150), nullable=True)
    subject_code = Column(String(30), nullable=True)
    faculty_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class GroupMember(Base):
    """Association groupe ↔ étudiants."""
    __tablename__ = "group_members"

    group_id = Column(UUID(as_uuid=True), ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True)
    student_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    status = Column(String(20), default="active")  # active, removed
    joined_at = Column(DateTime, server_default=func.now())


class ClassAttendanceSettings(Base):
    """
    Réglages de présence propres à un groupe. Créés avec les valeurs par défaut
    à la première consultation ; NULL = valeur globale de la configuration.
    """
    __tablename__ = "class_attendance_settings"

    group_id = Column(UUID(as_uuid=True), ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True)
    minimum_attendance_percentage = Column(Float, default=75.0)
    notification_threshold_percentage = Column(Float, default=70.0)
    default_qr_duration_minutes = Column(Integer, nullable=True)
    default_allowed_radius_meters = Column(Float, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
