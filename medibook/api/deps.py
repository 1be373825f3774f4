from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from typing import List

from ..core.config import settings
from ..core.database import get_db, get_redis, get_session_factory
from ..core.security import (
    security, verify_token, AuthenticationError,
    AuthorizationError, UserRole, TokenPayload
)
from ..models.user import User
from ..services.appointment_service import AppointmentService
from ..services.audit_service import AuditService
from ..services.calendar_service import CalendarService
from ..services.doctor_service import DoctorService
from ..services.notification_service import (
    NotificationDispatcher, NotificationService, create_dispatcher
)
from ..services.payment_service import PaymentService
from ..services.reminder_service import ReminderService

async def get_current_user_token(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> TokenPayload:
    """Extract and verify JWT token from Authorization header."""
    token_payload = verify_token(credentials.credentials)
    if not token_payload:
        raise AuthenticationError("Invalid or expired token")

    if token_payload.token_type != "access":
        raise AuthenticationError("Invalid token type")

    return token_payload

async def get_current_user(
    token_payload: TokenPayload = Depends(get_current_user_token),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Get current authenticated user from database."""
    if not token_payload.sub:
        raise AuthenticationError("Invalid token payload")

    user = await db.get(User, token_payload.sub)
    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is deactivated")

    return user

# Role-based access control dependencies
def require_role(allowed_roles: List[UserRole]):
    """Create a dependency that requires specific user roles."""
    async def role_checker(
        current_user: User = Depends(get_current_user)
    ) -> User:
        if current_user.role not in allowed_roles:
            raise AuthorizationError(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return current_user

    return role_checker

# Specific role dependencies
async def get_admin_user(
    current_user: User = Depends(require_role([UserRole.ADMIN]))
) -> User:
    """Require admin role."""
    return current_user

async def get_doctor_user(
    current_user: User = Depends(require_role([UserRole.DOCTOR, UserRole.ADMIN]))
) -> User:
    """Require doctor or admin role."""
    return current_user

async def get_patient_user(
    current_user: User = Depends(require_role([UserRole.PATIENT]))
) -> User:
    """Require patient role."""
    return current_user

# Service dependencies
def get_notification_dispatcher() -> NotificationDispatcher:
    return create_dispatcher()

def get_audit_service(
    request: Request,
    db: AsyncSession = Depends(get_db)
) -> AuditService:
    """Audit service carrying the caller's IP and user agent."""
    return AuditService(
        db,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )

def get_appointment_service(
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
    audit: AuditService = Depends(get_audit_service),
) -> AppointmentService:
    return AppointmentService(db, notifier, audit)

def get_calendar_service(
    db: AsyncSession = Depends(get_db),
    audit: AuditService = Depends(get_audit_service),
) -> CalendarService:
    return CalendarService(db, audit)

def get_payment_service(
    db: AsyncSession = Depends(get_db),
    appointments: AppointmentService = Depends(get_appointment_service),
) -> PaymentService:
    return PaymentService(db, appointments)

def get_doctor_service(db: AsyncSession = Depends(get_db)) -> DoctorService:
    return DoctorService(db)

def get_notification_service(db: AsyncSession = Depends(get_db)) -> NotificationService:
    return NotificationService(db)

def get_reminder_service(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> ReminderService:
    return ReminderService(session_factory, notifier)

# Rate limiting dependency
async def rate_limit_check(
    request: Request,
    redis_client = Depends(get_redis)
) -> None:
    """Per-IP hourly request limit for authentication endpoints."""
    client_ip = request.client.host if request.client else "unknown"
    key = f"rate_limit:{client_ip}"

    current_requests = await redis_client.incr(key)
    if current_requests == 1:
        await redis_client.expire(key, 3600)

    if current_requests > settings.RATE_LIMIT_PER_HOUR:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please try again later."
        )
