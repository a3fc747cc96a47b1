"""
Modèles SQLAlchemy pour les devoirs et les rendus notés.
"""

import uuid
from sqlalchemy import Column, DateTime, Float, ForeignKey, String, func
from sqlalchemy.dialects.postgresql import UUID

from unitrack.database import Base


class Assignment(Base):
    __tablename__ = "assignments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    group_id = Column(UUID(as_uuid=True), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    max_score = Column(Float, nullable=False, default=100.0)
    status = Column(String(20), default="active")  # draft, active, closed
    due_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class Submission(Base):
    """Rendu d'un étudiant. total_score NULL = pas encore corrigé."""
    __tablename__ = "assignment_submissions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    assignment_id = Column(UUID(as_uuid=True), ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    total_score = Column(Float, nullable=True)
    status = Column(String(20), default="submitted")  # submitted, graded, returned
    submitted_at = Column(DateTime, server_default=func.now())
