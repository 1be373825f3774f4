from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.audit_log import AuditLog
from ..models.user import User

class AuditService:
    def __init__(
        self,
        db: AsyncSession,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ):
        self.db = db
        self.ip_address = ip_address
        self.user_agent = user_agent

    def record(
        self,
        action: str,
        actor: Optional[User] = None,
        resource: Optional[str] = None,
        resource_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """Add an audit entry to the current transaction; the caller commits."""
        entry = AuditLog(
            action=action,
            user_id=actor.id if actor else None,
            user_role=actor.role.value if actor else None,
            resource=resource,
            resource_id=resource_id,
            details=details or {},
            ip_address=self.ip_address,
            user_agent=self.user_agent,
        )
        self.db.add(entry)
        return entry

    async def list_logs(
        self,
        action: Optional[str] = None,
        user_id: Optional[int] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[AuditLog], int]:
        conditions = []
        if action:
            conditions.append(AuditLog.action == action)
        if user_id is not None:
            conditions.append(AuditLog.user_id == user_id)

        total = await self.db.scalar(select(func.count(AuditLog.id)).where(*conditions))
        result = await self.db.execute(
            select(AuditLog)
            .where(*conditions)
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0
