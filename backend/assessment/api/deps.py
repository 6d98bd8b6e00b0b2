"""
University Assessment Engine - API Dependencies
FastAPI dependencies for authentication, authorization and service wiring
"""
from typing import Annotated

from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from assessment.core.config import settings
from assessment.core.database import get_db
from assessment.core.security import Principal, PrincipalRole, principal_from_token
from assessment.services.exceptions import AssessmentError
from assessment.services.notifications import NotificationSink, build_notification_sink
from assessment.services.scoring import GradingPolicy

# Security scheme (missing credentials are reported as 401 below)
security = HTTPBearer(auto_error=False)


async def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> Principal:
    """
    Get the authenticated principal from the bearer token.

    Raises:
        HTTPException: If the token is missing, invalid or expired
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    principal = principal_from_token(credentials.credentials)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return principal


def require_role(*roles: PrincipalRole):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/sweep")
        async def sweep(principal: Principal = Depends(require_role(PrincipalRole.ADMIN))):
            ...
    """
    async def role_checker(
        principal: Annotated[Principal, Depends(get_current_principal)],
    ) -> Principal:
        if principal.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required: {[r.value for r in roles]}",
            )
        return principal

    return role_checker


def get_grading_policy() -> GradingPolicy:
    """Grading bands in force; override in tests to try other policies."""
    return GradingPolicy.from_settings()


def get_notification_sink() -> NotificationSink:
    return build_notification_sink()


def as_http_exception(error: AssessmentError) -> HTTPException:
    """Translate a domain error into its HTTP response."""
    return HTTPException(status_code=error.status_code, detail=error.to_detail())


class Pagination:
    """``page`` / ``per_page`` query parameters, capped by settings."""

    def __init__(
        self,
        page: Annotated[int, Query(ge=1)] = 1,
        per_page: Annotated[int, Query(ge=1)] = settings.DEFAULT_PAGE_SIZE,
    ):
        self.page = page
        self.per_page = min(per_page, settings.MAX_PAGE_SIZE)


# Type aliases for common dependencies
CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
InstructorPrincipal = Annotated[
    Principal, Depends(require_role(PrincipalRole.INSTRUCTOR, PrincipalRole.ADMIN))
]
StudentPrincipal = Annotated[Principal, Depends(require_role(PrincipalRole.STUDENT))]
AdminPrincipal = Annotated[Principal, Depends(require_role(PrincipalRole.ADMIN))]
DbSession = Annotated[AsyncSession, Depends(get_db)]
Policy = Annotated[GradingPolicy, Depends(get_grading_policy)]
Notifier = Annotated[NotificationSink, Depends(get_notification_sink)]
PageParams = Annotated[Pagination, Depends()]
