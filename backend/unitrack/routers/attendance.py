"""
Routers pour le pointage par QR code et la gestion des sessions de présence.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from unitrack.auth import CurrentUser, get_current_user, require_faculty
from unitrack.database import get_db
from unitrack.schemas.attendance import (
    ActiveSessionResponse,
    AttendanceRecordResponse,
    AttendanceSummary,
    CheckInRequest,
    CheckInResponse,
    ClassAttendanceSettingsResponse,
    ClassAttendanceSettingsUpdate,
    EligibilityResponse,
    GroupAttendanceStats,
    ManualAttendanceCreate,
    SessionCloseResult,
    SessionCreate,
    SessionHistoryEntry,
    SessionRecordsResponse,
    SessionResponse,
)
from unitrack.services import attendance_service, checkin_service, group_service, session_service
from unitrack.services.eligibility import get_eligibility_policy
from unitrack.services.errors import http_error
from unitrack.services.token_resolver import resolve_token

router = APIRouter(prefix="/api/v1/attendance", tags=["Présences"])


def _check_student_access(db: Session, user: CurrentUser, group_id: uuid.UUID, student_id: uuid.UUID) -> None:
    """Un étudiant ne voit que ses propres données ; un enseignant, celles de ses groupes."""
    if user.is_faculty:
        try:
            group_service.get_owned_group(db, group_id, user)
        except ValueError as e:
            raise http_error(e)
    elif user.id != student_id:
        raise HTTPException(status_code=403, detail="Accès refusé.")


def _owned_group(db: Session, group_id: uuid.UUID, faculty: CurrentUser) -> None:
    try:
        group_service.get_owned_group(db, group_id, faculty)
    except ValueError as e:
        raise http_error(e)


# ============================================================
# Pointage (étudiant)
# ============================================================

@router.get("/eligibility", response_model=EligibilityResponse,
            summary="Vérifier l'éligibilité avant pointage")
def check_eligibility(
    token: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """
    Contrôle préalable exécuté avant la géolocalisation.
    Accepte le jeton brut ou l'URL complète du QR code.
    """
    resolved = resolve_token(token)
    policy = get_eligibility_policy(db)
    return EligibilityResponse(token=resolved, eligible=policy.is_eligible(resolved, user))


@router.post("/check-in", response_model=CheckInResponse, status_code=201,
             summary="Pointer sa présence via QR code")
def check_in(
    data: CheckInRequest,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """
    Enregistre la présence de l'étudiant authentifié.

    - 404 SESSION_NOT_FOUND : jeton inconnu ou session clôturée
    - 410 SESSION_EXPIRED : QR code expiré (nouveau jeton nécessaire)
    - 403 NOT_GROUP_MEMBER : étudiant hors du groupe
    - 409 ALREADY_CHECKED_IN : présence déjà enregistrée
    - 422 OUT_OF_RANGE : hors rayon (uniquement si OUT_OF_RANGE_POLICY=reject)
    """
    data.qr_code_token = resolve_token(data.qr_code_token)
    try:
        return checkin_service.process_check_in(db, data, user)
    except ValueError as e:
        raise http_error(e)


# ============================================================
# Sessions (enseignant responsable)
# ============================================================

@router.post("/sessions", response_model=SessionResponse, status_code=201,
             summary="Ouvrir une session de présence")
def create_session(
    data: SessionCreate,
    db: Session = Depends(get_db),
    faculty: CurrentUser = Depends(require_faculty),
):
    """Génère le jeton QR et fixe la position de référence de l'enseignant."""
    try:
        return session_service.create_session(db, data, faculty)
    except ValueError as e:
        raise http_error(e)


@router.get("/sessions/active", response_model=List[ActiveSessionResponse],
            summary="Sessions en cours de l'enseignant")
def get_my_active_sessions(
    db: Session = Depends(get_db),
    faculty: CurrentUser = Depends(require_faculty),
):
    return attendance_service.get_faculty_active_sessions(db, faculty)


@router.get("/sessions/{session_id}", response_model=SessionResponse,
            summary="Détail d'une session")
def get_session(
    session_id: uuid.UUID,
    db: Session = Depends(get_db),
    faculty: CurrentUser = Depends(require_faculty),
):
    try:
        return session_service.to_response(session_service.get_owned_session(db, session_id, faculty))
    except ValueError as e:
        raise http_error(e)


@router.get("/sessions/{session_id}/qr.png", summary="Image du QR code de la session")
def get_session_qr(
    session_id: uuid.UUID,
    db: Session = Depends(get_db),
    faculty: CurrentUser = Depends(require_faculty),
):
    """PNG à projeter en salle ; encode l'URL /attendance/scan?token=..."""
    try:
        png = session_service.get_session_qr_png(db, session_id, faculty)
    except ValueError as e:
        raise http_error(e)
    return Response(content=png, media_type="image/png")


@router.post("/sessions/{session_id}/close", response_model=SessionCloseResult,
             summary="Clôturer une session et marquer les absents")
def close_session(
    session_id: uuid.UUID,
    db: Session = Depends(get_db),
    faculty: CurrentUser = Depends(require_faculty),
):
    try:
        return session_service.close_session(db, session_id, faculty)
    except ValueError as e:
        raise http_error(e)


@router.get("/sessions/{session_id}/records", response_model=SessionRecordsResponse,
            summary="Pointages d'une session")
def get_session_records(
    session_id: uuid.UUID,
    db: Session = Depends(get_db),
    faculty: CurrentUser = Depends(require_faculty),
):
    try:
        return session_service.get_session_records(db, session_id, faculty)
    except ValueError as e:
        raise http_error(e)


@router.get("/sessions/{session_id}/records/export", summary="Exporter les pointages en CSV")
def export_session_records(
    session_id: uuid.UUID,
    db: Session = Depends(get_db),
    faculty: CurrentUser = Depends(require_faculty),
):
    """CSV UTF-8 BOM, séparateur ; (compatible Excel)."""
    try:
        csv_content = session_service.export_session_records_csv(db, session_id, faculty)
    except ValueError as e:
        raise http_error(e)

    return StreamingResponse(
        iter([csv_content]),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f"attachment; filename=presences_{session_id}.csv"},
    )


@router.post("/manual", response_model=AttendanceRecordResponse,
             summary="Marquer manuellement la présence d'un étudiant")
def mark_manual(
    data: ManualAttendanceCreate,
    db: Session = Depends(get_db),
    faculty: CurrentUser = Depends(require_faculty),
):
    """Crée le pointage ou corrige l'existant (statut, motif)."""
    try:
        return attendance_service.mark_manual_attendance(db, data, faculty)
    except ValueError as e:
        raise http_error(e)


# ============================================================
# Groupes (enseignant responsable)
# ============================================================

@router.get("/groups/{group_id}/active-session", response_model=Optional[ActiveSessionResponse],
            summary="Session en cours du groupe")
def get_group_active_session(
    group_id: uuid.UUID,
    db: Session = Depends(get_db),
    faculty: CurrentUser = Depends(require_faculty),
):
    """null si aucune session n'est ouverte."""
    _owned_group(db, group_id, faculty)
    return attendance_service.get_group_active_session(db, group_id)


@router.get("/groups/{group_id}/summary", response_model=List[AttendanceSummary],
            summary="Bilan de présence de tous les étudiants du groupe")
def get_group_summary(
    group_id: uuid.UUID,
    db: Session = Depends(get_db),
    faculty: CurrentUser = Depends(require_faculty),
):
    _owned_group(db, group_id, faculty)
    return attendance_service.get_group_attendance_summary(db, group_id)


@router.get("/groups/{group_id}/low-attendance", response_model=List[AttendanceSummary],
            summary="Étudiants sous le seuil d'alerte")
def get_low_attendance(
    group_id: uuid.UUID,
    threshold: Optional[float] = Query(None, ge=0, le=100),
    db: Session = Depends(get_db),
    faculty: CurrentUser = Depends(require_faculty),
):
    """Seuil : paramètre threshold, sinon réglage du groupe, sinon 70 %."""
    _owned_group(db, group_id, faculty)
    return attendance_service.get_students_with_low_attendance(db, group_id, threshold)


@router.get("/groups/{group_id}/stats", response_model=GroupAttendanceStats,
            summary="Taux de présence moyen du groupe")
def get_group_stats(
    group_id: uuid.UUID,
    db: Session = Depends(get_db),
    faculty: CurrentUser = Depends(require_faculty),
):
    _owned_group(db, group_id, faculty)
    return attendance_service.get_group_attendance_stats(db, group_id)


@router.get("/groups/{group_id}/settings", response_model=ClassAttendanceSettingsResponse,
            summary="Réglages de présence du groupe")
def get_group_settings(
    group_id: uuid.UUID,
    db: Session = Depends(get_db),
    faculty: CurrentUser = Depends(require_faculty),
):
    try:
        return group_service.get_attendance_settings(db, group_id, faculty)
    except ValueError as e:
        raise http_error(e)


@router.put("/groups/{group_id}/settings", response_model=ClassAttendanceSettingsResponse,
            summary="Modifier les réglages de présence du groupe")
def update_group_settings(
    group_id: uuid.UUID,
    data: ClassAttendanceSettingsUpdate,
    db: Session = Depends(get_db),
    faculty: CurrentUser = Depends(require_faculty),
):
    """Seuls les champs fournis sont modifiés."""
    try:
        return group_service.update_attendance_settings(db, group_id, data, faculty)
    except ValueError as e:
        raise http_error(e)


# ============================================================
# Étudiant (lui-même, ou enseignant responsable du groupe)
# ============================================================

@router.get("/groups/{group_id}/students/{student_id}/summary", response_model=AttendanceSummary,
            summary="Bilan de présence d'un étudiant")
def get_student_summary(
    group_id: uuid.UUID,
    student_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    _check_student_access(db, user, group_id, student_id)
    return attendance_service.get_student_attendance_summary(db, student_id, group_id)


@router.get("/groups/{group_id}/students/{student_id}/history", response_model=List[SessionHistoryEntry],
            summary="Historique des sessions d'un étudiant")
def get_student_history(
    group_id: uuid.UUID,
    student_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    _check_student_access(db, user, group_id, student_id)
    return attendance_service.get_student_session_history(db, student_id, group_id)
