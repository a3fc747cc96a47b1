"""
Contexte d'authentification explicite.

L'identité est gérée par le fournisseur externe (JWT signé) : on ne fait que
vérifier le jeton et extraire l'utilisateur. Le CurrentUser est ensuite passé
explicitement aux services, jamais stocké dans un état global.
"""

import uuid
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from unitrack.config import settings

security = HTTPBearer()

FACULTY_ROLES = {"faculty", "admin", "superadmin"}
ADMIN_ROLES = {"admin", "superadmin"}


@dataclass(frozen=True)
class CurrentUser:
    id: uuid.UUID
    role: str = "student"
    email: str = ""

    @property
    def is_faculty(self) -> bool:
        return self.role in FACULTY_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


def decode_access_token(token: str) -> dict:
    """Décode le JWT du fournisseur d'identité. Lève 401 si invalide ou expiré."""
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            options={"verify_aud": False},
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Jeton d'authentification invalide.",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    """Dépendance FastAPI : construit le CurrentUser à partir du claim `sub`."""
    payload = decode_access_token(credentials.credentials)

    sub = payload.get("sub")
    try:
        user_id = uuid.UUID(str(sub))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Identifiant utilisateur invalide dans le jeton.",
        )

    # Supabase place le rôle applicatif dans user_metadata
    role = payload.get("user_role") or (payload.get("user_metadata") or {}).get("role") or "student"
    return CurrentUser(id=user_id, role=str(role).lower(), email=payload.get("email") or "")


def require_faculty(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Restreint un endpoint aux enseignants et administrateurs."""
    if not user.is_faculty:
        raise HTTPException(status_code=403, detail="Réservé aux enseignants.")
    return user
