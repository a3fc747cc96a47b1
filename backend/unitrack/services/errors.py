"""
Erreurs métier du flux de présence.

Toutes héritent de ValueError (comme les autres erreurs de service) et portent
un code lisible par machine + le statut HTTP associé, pour que le client
distingue « jeton invalide » de « déjà pointé » sans analyser le message.
"""

from fastapi import HTTPException


class AttendanceError(ValueError):
    code = "ATTENDANCE_ERROR"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class SessionNotFound(AttendanceError):
    code = "SESSION_NOT_FOUND"
    status_code = 404


class SessionExpired(AttendanceError):
    code = "SESSION_EXPIRED"
    status_code = 410


class SessionClosed(AttendanceError):
    code = "SESSION_CLOSED"
    status_code = 409


class NotGroupMember(AttendanceError):
    code = "NOT_GROUP_MEMBER"
    status_code = 403


class NotSessionOwner(AttendanceError):
    code = "NOT_SESSION_OWNER"
    status_code = 403


class AlreadyCheckedIn(AttendanceError):
    code = "ALREADY_CHECKED_IN"
    status_code = 409


class OutOfRange(AttendanceError):
    code = "OUT_OF_RANGE"
    status_code = 422

    def __init__(self, distance_meters: float, allowed_radius_meters: float):
        super().__init__(
            f"Vous êtes à {round(distance_meters)} m du lieu du cours. "
            f"Vous devez être à moins de {round(allowed_radius_meters)} m pour pointer."
        )
        self.distance_meters = distance_meters
        self.allowed_radius_meters = allowed_radius_meters


class NotGroupOwner(AttendanceError):
    code = "NOT_GROUP_OWNER"
    status_code = 403


class SessionCloseConflict(AttendanceError):
    """Des pointages concurrents empêchent la clôture ; l'enseignant peut réessayer."""
    code = "SESSION_CLOSE_CONFLICT"
    status_code = 409


def http_error(e: ValueError) -> HTTPException:
    """Erreur métier → HTTPException avec un code lisible par le client."""
    if isinstance(e, AttendanceError):
        return HTTPException(status_code=e.status_code, detail=e.to_detail())
    msg = str(e)
    if "introuvable" in msg:
        return HTTPException(status_code=404, detail=msg)
    return HTTPException(status_code=400, detail=msg)
