"""
Modèle SQLAlchemy pour les utilisateurs.
Miroir de la table profiles du fournisseur d'identité (l'authentification reste externe).
"""

import uuid
from sqlalchemy import Column, DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID

from unitrack.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(200), nullable=True)
    usn = Column(String(30), nullable=True)    # Numéro d'inscription (étudiants uniquement)
    role = Column(String(20), nullable=False)  # student, faculty, admin, superadmin
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
