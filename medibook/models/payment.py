from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, Numeric, Index, Enum as SQLEnum, text,
)
import enum

from ..core.clock import utcnow
from ..core.database import Base

class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REFUNDED = "refunded"

class PaymentMethod(str, enum.Enum):
    CARD = "card"
    MOBILE_MONEY = "mobile_money"
    CASH = "cash"
    INSURANCE = "insurance"

class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        # At most one completed payment per appointment; refunded rows do not count
        Index(
            "uq_payments_completed_appointment",
            "appointment_id",
            unique=True,
            postgresql_where=text("status = 'completed'"),
            sqlite_where=text("status = 'completed'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="EUR")
    payment_method = Column(
        SQLEnum(PaymentMethod, name="payment_method", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    status = Column(
        SQLEnum(PaymentStatus, name="payment_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    transaction_id = Column(String(100), nullable=True, unique=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Payment(id={self.id}, appointment_id={self.appointment_id}, status='{self.status}')>"
