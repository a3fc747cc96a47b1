"""
Service métier pour les groupes : contrôle du responsable et réglages de présence.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy.orm import Session

from unitrack.auth import CurrentUser
from unitrack.config import settings
from unitrack.models.group import ClassAttendanceSettings, Group
from unitrack.schemas.attendance import (
    ClassAttendanceSettingsResponse,
    ClassAttendanceSettingsUpdate,
)
from unitrack.services.errors import NotGroupOwner

logger = logging.getLogger(__name__)


def get_owned_group(db: Session, group_id: uuid.UUID, faculty: CurrentUser) -> Group:
    """
    Retourne le groupe si l'enseignant en est responsable (ou administrateur).
    Lève ValueError si le groupe est introuvable, NotGroupOwner sinon.
    """
    group = db.get(Group, group_id)
    if group is None:
        raise ValueError(f"Groupe {group_id} introuvable.")
    if not faculty.is_admin and group.faculty_id != faculty.id:
        raise NotGroupOwner("Vous n'êtes pas responsable de ce groupe.")
    return group


def find_settings(db: Session, group_id: uuid.UUID) -> Optional[ClassAttendanceSettings]:
    return db.get(ClassAttendanceSettings, group_id)


def effective_qr_duration(row: Optional[ClassAttendanceSettings]) -> int:
    if row is not None and row.default_qr_duration_minutes:
        return row.default_qr_duration_minutes
    return settings.QR_DEFAULT_DURATION_MINUTES


def effective_radius(row: Optional[ClassAttendanceSettings]) -> float:
    if row is not None and row.default_allowed_radius_meters:
        return row.default_allowed_radius_meters
    return settings.DEFAULT_ALLOWED_RADIUS_METERS


def effective_threshold(row: Optional[ClassAttendanceSettings]) -> float:
    if row is not None and row.notification_threshold_percentage is not None:
        return row.notification_threshold_percentage
    return settings.LOW_ATTENDANCE_THRESHOLD_PERCENTAGE


def _to_response(group_id: uuid.UUID, row: ClassAttendanceSettings) -> ClassAttendanceSettingsResponse:
    minimum = row.minimum_attendance_percentage
    return ClassAttendanceSettingsResponse(
        group_id=group_id,
        minimum_attendance_percentage=(
            minimum if minimum is not None else settings.MINIMUM_ATTENDANCE_PERCENTAGE
        ),
        notification_threshold_percentage=effective_threshold(row),
        default_qr_duration_minutes=effective_qr_duration(row),
        default_allowed_radius_meters=effective_radius(row),
    )


def get_attendance_settings(
    db: Session, group_id: uuid.UUID, faculty: CurrentUser
) -> ClassAttendanceSettingsResponse:
    """Réglages du groupe ; la ligne est créée avec les valeurs par défaut si absente."""
    get_owned_group(db, group_id, faculty)
    row = find_settings(db, group_id)
    if row is None:
        row = ClassAttendanceSettings(
            group_id=group_id,
            minimum_attendance_percentage=settings.MINIMUM_ATTENDANCE_PERCENTAGE,
            notification_threshold_percentage=settings.LOW_ATTENDANCE_THRESHOLD_PERCENTAGE,
        )
        db.add(row)
        db.commit()
        logger.info("Réglages de présence créés pour le groupe %s", group_id)
    return _to_response(group_id, row)


def update_attendance_settings(
    db: Session,
    group_id: uuid.UUID,
    data: ClassAttendanceSettingsUpdate,
    faculty: CurrentUser,
) -> ClassAttendanceSettingsResponse:
    """Met à jour les seuls champs fournis."""
    get_owned_group(db, group_id, faculty)
    row = find_settings(db, group_id)
    if row is None:
        row = ClassAttendanceSettings(group_id=group_id)
        db.add(row)

    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(row, field, value)
    db.commit()

    logger.info("Réglages de présence du groupe %s mis à jour par %s", group_id, faculty.id)
    return _to_response(group_id, row)
