from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, JSON

from ..core.clock import utcnow
from ..core.database import Base

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String(64), nullable=False, index=True)

    # Actor; null for system-initiated events such as payment confirmations
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    user_role = Column(String(20), nullable=True)

    resource = Column(String(64), nullable=True)
    resource_id = Column(Integer, nullable=True)
    details = Column(JSON, nullable=False, default=dict)

    # Request context
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', user_id={self.user_id})>"
