"""
Schémas Pydantic pour les sessions de présence et le pointage par QR code.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

VALID_SESSION_TYPES = {"lecture", "lab", "tutorial", "exam"}
VALID_MANUAL_STATUSES = {"present", "late", "absent", "excused"}


class CheckInRequest(BaseModel):
    """Corps de requête envoyé par le poste de scan de l'étudiant."""
    qr_code_token: str
    student_latitude: float = Field(ge=-90, le=90)
    student_longitude: float = Field(ge=-180, le=180)

    @field_validator("qr_code_token")
    @classmethod
    def token_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Le jeton QR ne peut pas être vide.")
        return v.strip()


class CheckInResponse(BaseModel):
    """Pointage enregistré, enrichi des champs d'affichage de la session."""
    id: uuid.UUID
    session_id: uuid.UUID
    student_id: uuid.UUID
    status: str
    check_in_time: datetime
    student_latitude: Optional[float]
    student_longitude: Optional[float]
    distance_from_faculty_meters: Optional[float]
    session_name: Optional[str] = None
    session_type: Optional[str] = None
    student_name: Optional[str] = None
    student_usn: Optional[str] = None


class EligibilityResponse(BaseModel):
    token: str
    eligible: bool


class SessionCreate(BaseModel):
    """Ouverture d'une session de présence par un enseignant."""
    group_id: uuid.UUID
    session_name: str
    session_type: str = "lecture"
    faculty_latitude: float = Field(ge=-90, le=90)
    faculty_longitude: float = Field(ge=-180, le=180)
    allowed_radius_meters: Optional[float] = Field(default=None, gt=0)
    qr_duration_minutes: Optional[int] = Field(default=None, gt=0, le=24 * 60)

    @field_validator("session_name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Le nom de la session ne peut pas être vide.")
        return v.strip()

    @field_validator("session_type")
    @classmethod
    def valid_session_type(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in VALID_SESSION_TYPES:
            raise ValueError(f"Type de session invalide. Valeurs acceptées : {VALID_SESSION_TYPES}")
        return v


class SessionResponse(BaseModel):
    id: uuid.UUID
    group_id: uuid.UUID
    faculty_id: Optional[uuid.UUID]
    qr_token: str
    scan_url: str
    session_name: Optional[str]
    session_type: Optional[str]
    faculty_latitude: float
    faculty_longitude: float
    allowed_radius_meters: float
    status: str
    expires_at: datetime
    ended_at: Optional[datetime] = None


class SessionCloseResult(BaseModel):
    session_id: uuid.UUID
    absent_marked: int
    ended_at: datetime


class ManualAttendanceCreate(BaseModel):
    """Marquage manuel d'un étudiant par l'enseignant (création ou correction)."""
    session_id: uuid.UUID
    student_id: uuid.UUID
    status: str
    manual_reason: Optional[str] = None

    @field_validator("status")
    @classmethod
    def valid_status(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in VALID_MANUAL_STATUSES:
            raise ValueError(f"Statut invalide. Valeurs acceptées : {VALID_MANUAL_STATUSES}")
        return v


class AttendanceRecordResponse(BaseModel):
    id: uuid.UUID
    session_id: uuid.UUID
    student_id: uuid.UUID
    status: str
    check_in_time: datetime
    check_in_method: str
    distance_from_faculty_meters: Optional[float] = None
    marked_by: Optional[uuid.UUID] = None
    manual_reason: Optional[str] = None

    model_config = {"from_attributes": True}


class SessionRecordsResponse(BaseModel):
    session_id: uuid.UUID
    total: int
    records: List[AttendanceRecordResponse]


class AttendanceSummary(BaseModel):
    """Bilan de présence d'un étudiant dans un groupe."""
    student_id: uuid.UUID
    group_id: uuid.UUID
    student_name: Optional[str] = None
    usn: Optional[str] = None
    total_sessions: int
    attended_sessions: int
    present_sessions: int
    late_sessions: int
    absent_sessions: int
    excused_sessions: int
    attendance_percentage: float


class ActiveSessionResponse(SessionResponse):
    """Session en cours, enrichie du groupe et de l'état du QR code."""
    group_name: Optional[str] = None
    subject: Optional[str] = None
    subject_code: Optional[str] = None
    qr_status: str
    minutes_until_qr_expiry: float


class SessionHistoryEntry(BaseModel):
    """Une session du groupe vue par un étudiant (absent si aucun pointage)."""
    session_id: uuid.UUID
    session_name: Optional[str]
    session_type: Optional[str]
    session_status: str
    created_at: Optional[datetime]
    ended_at: Optional[datetime] = None
    attendance_status: str
    marked_at: Optional[datetime] = None
    location_verified: bool = False


class GroupAttendanceStats(BaseModel):
    group_id: uuid.UUID
    total_sessions: int
    total_students: int
    average_attendance: float


class ClassAttendanceSettingsResponse(BaseModel):
    """Réglages effectifs du groupe (valeurs globales si non définies)."""
    group_id: uuid.UUID
    minimum_attendance_percentage: float
    notification_threshold_percentage: float
    default_qr_duration_minutes: int
    default_allowed_radius_meters: float


class ClassAttendanceSettingsUpdate(BaseModel):
    minimum_attendance_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    notification_threshold_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    default_qr_duration_minutes: Optional[int] = Field(default=None, gt=0, le=24 * 60)
    default_allowed_radius_meters: Optional[float] = Field(default=None, gt=0)
