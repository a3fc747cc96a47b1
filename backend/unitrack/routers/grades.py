"""
Router pour les moyennes (GPA) des groupes.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from unitrack.auth import CurrentUser, get_current_user, require_faculty
from unitrack.database import get_db
from unitrack.schemas.grade import GradeSummary, GroupGradeStats
from unitrack.services import grade_service, group_service
from unitrack.services.errors import http_error

router = APIRouter(prefix="/api/v1/groups", tags=["Notes"])


def _owned_group(db: Session, group_id: uuid.UUID, faculty: CurrentUser) -> None:
    try:
        group_service.get_owned_group(db, group_id, faculty)
    except ValueError as e:
        raise http_error(e)


@router.get("/{group_id}/grades", response_model=GroupGradeStats,
            summary="GPA de tous les étudiants du groupe")
def get_group_grades(
    group_id: uuid.UUID,
    db: Session = Depends(get_db),
    faculty: CurrentUser = Depends(require_faculty),
):
    """
    Recalculé à chaque appel à partir des rendus notés.
    Un groupe sans devoir renvoie des statistiques à zéro.
    Réservé à l'enseignant responsable du groupe (ou à un administrateur).
    """
    _owned_group(db, group_id, faculty)
    return grade_service.get_group_student_grades(db, group_id)


@router.get("/{group_id}/grades/top", response_model=list[GradeSummary],
            summary="Meilleurs étudiants du groupe")
def get_top_performers(
    group_id: uuid.UUID,
    limit: int = Query(3, ge=1, le=50),
    db: Session = Depends(get_db),
    faculty: CurrentUser = Depends(require_faculty),
):
    _owned_group(db, group_id, faculty)
    return grade_service.get_top_performers(db, group_id, limit)


@router.get("/{group_id}/grades/students/{student_id}", response_model=GradeSummary,
            summary="GPA d'un étudiant")
def get_student_grades(
    group_id: uuid.UUID,
    student_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    if user.is_faculty:
        _owned_group(db, group_id, user)
    elif user.id != student_id:
        raise HTTPException(status_code=403, detail="Accès refusé.")

    details = grade_service.get_student_grade_details(db, student_id, group_id)
    if details is None:
        raise HTTPException(status_code=404, detail=f"Étudiant {student_id} introuvable dans ce groupe.")
    return details
