"""
University Assessment Engine - Security Module
JWT handling for principals issued by the external identity provider
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from jose import JWTError, jwt

from assessment.core.config import settings


class PrincipalRole(str, Enum):
    """Roles the identity provider may assign."""
    INSTRUCTOR = "instructor"
    STUDENT = "student"
    ADMIN = "admin"


@dataclass(frozen=True)
class Principal:
    """An authenticated caller, trusted as handed over by the identity provider."""
    id: int
    role: PrincipalRole

    @property
    def is_admin(self) -> bool:
        return self.role == PrincipalRole.ADMIN


def create_access_token(
    subject: str | int,
    expires_delta: timedelta | None = None,
    additional_claims: dict[str, Any] | None = None
) -> str:
    """
    Create a JWT access token.

    The identity provider mints tokens in this shape; the engine only
    needs it for tooling and tests.

    Args:
        subject: The token subject (the principal's numeric id)
        expires_delta: Optional custom expiration time
        additional_claims: Optional additional JWT claims (e.g. ``role``)

    Returns:
        Encoded JWT token string
    """
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode = {
        "sub": str(subject),
        "exp": expire,
        "iat": datetime.now(timezone.utc),
        "type": "access"
    }

    if additional_claims:
        to_encode.update(additional_claims)

    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict[str, Any] | None:
    """
    Decode and validate a JWT token.

    Args:
        token: The JWT token to decode

    Returns:
        Decoded token payload or None if invalid
    """
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
        return payload
    except JWTError:
        return None


def principal_from_token(token: str) -> Principal | None:
    """
    Build the principal described by an access token.

    Returns:
        Principal if the token is valid and carries a numeric subject
        and a known role, None otherwise
    """
    payload = decode_token(token)
    if payload is None or payload.get("type") != "access":
        return None

    try:
        principal_id = int(payload.get("sub"))
        role = PrincipalRole(payload.get("role"))
    except (TypeError, ValueError):
        return None

    return Principal(id=principal_id, role=role)
