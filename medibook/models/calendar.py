from sqlalchemy import Column, Integer, ForeignKey, DateTime, Date, Boolean, JSON, UniqueConstraint

from ..core.clock import utcnow
from ..core.database import Base

class Calendar(Base):
    """A doctor's declared slots for one day."""
    __tablename__ = "calendars"
    __table_args__ = (
        UniqueConstraint("doctor_id", "date", name="uq_calendar_doctor_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)

    # Ordered "HH:MM" strings
    slots = Column(JSON, nullable=False, default=list)
    confirmed = Column(Boolean, nullable=False, default=False)

    # Append-only: [{"slots": [...], "replacedAt": iso-timestamp}, ...]
    versions = Column(JSON, nullable=False, default=list)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Calendar(id={self.id}, doctor_id={self.doctor_id}, date='{self.date}', confirmed={self.confirmed})>"
