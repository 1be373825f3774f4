from typing import List
import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import utcnow
from ..core.exceptions import ConflictError, ForbiddenError, InvalidTransitionError, NotFoundError
from ..core.security import UserRole
from ..models.appointment import Appointment, AppointmentStatus
from ..models.notification import NotificationType
from ..models.payment import Payment, PaymentStatus
from ..models.user import User
from ..schemas.payment import PaymentCreate
from .appointment_service import AppointmentService

logger = logging.getLogger(__name__)

class PaymentService:
    def __init__(self, db: AsyncSession, appointments: AppointmentService):
        self.db = db
        self.appointments = appointments
        self.notifier = appointments.notifier
        self.audit = appointments.audit

    async def record_payment(self, patient: User, data: PaymentCreate) -> Payment:
        """Record a completed payment; a pending appointment becomes confirmed.

        An appointment holds at most one completed payment. The check below
        gives the usual error; a concurrent payment that slips past it is
        stopped by the unique index and reported the same way.
        """
        appointment = await self.db.get(Appointment, data.appointment_id)
        if not appointment:
            raise NotFoundError("Appointment not found")
        if appointment.patient_id != patient.id:
            raise ForbiddenError("Only the patient can pay for this appointment")
        if appointment.status not in (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED):
            raise InvalidTransitionError(
                f"Cannot pay for an appointment that is {appointment.status.value}"
            )
        appointment_id = appointment.id
        was_pending = appointment.status == AppointmentStatus.PENDING

        paid = await self.db.execute(
            select(Payment.id).where(
                Payment.appointment_id == appointment_id,
                Payment.status == PaymentStatus.COMPLETED,
            )
        )
        if paid.first() is not None:
            raise ConflictError("This appointment has already been paid")

        payment = Payment(
            appointment_id=appointment_id,
            patient_id=patient.id,
            amount=data.amount,
            currency=data.currency.upper(),
            payment_method=data.payment_method,
            status=PaymentStatus.COMPLETED,
            transaction_id=uuid.uuid4().hex,
        )
        self.db.add(payment)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            logger.warning("Concurrent payment detected for appointment %s", appointment_id)
            raise ConflictError("This appointment has already been paid")

        receipt = await self.notifier.notify(
            self.db,
            user_id=patient.id,
            notification_type=NotificationType.PAYMENT_CONFIRMATION,
            title="Payment received",
            message=f"Payment of {payment.amount} {payment.currency} received",
            data={"paymentId": payment.id, "appointmentId": appointment_id},
        )
        self.audit.record(
            "PAYMENT_RECORDED",
            actor=patient,
            resource="payment",
            resource_id=payment.id,
            details={
                "appointmentId": appointment_id,
                "amount": str(payment.amount),
                "currency": payment.currency,
            },
        )

        if was_pending:
            # Commits the payment together with the confirmation
            await self.appointments.confirm_from_payment(appointment_id, payment.id)
        else:
            await self.db.commit()

        await self.notifier.deliver(receipt)
        logger.info("Payment %s recorded for appointment %s", payment.id, appointment_id)
        return payment

    async def refund_payment(self, admin: User, payment_id: int) -> Payment:
        """Move a completed payment to refunded and tell the patient.

        The appointment itself is left as it is.
        """
        payment = await self.db.get(Payment, payment_id)
        if not payment:
            raise NotFoundError("Payment not found")

        result = await self.db.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == PaymentStatus.COMPLETED)
            .values(status=PaymentStatus.REFUNDED, updated_at=utcnow())
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise InvalidTransitionError("Only completed payments can be refunded")

        notice = await self.notifier.notify(
            self.db,
            user_id=payment.patient_id,
            notification_type=NotificationType.PAYMENT_REFUND,
            title="Payment refunded",
            message=f"Your payment of {payment.amount} {payment.currency} has been refunded",
            data={"paymentId": payment.id, "appointmentId": payment.appointment_id},
        )
        self.audit.record(
            "PAYMENT_REFUNDED",
            actor=admin,
            resource="payment",
            resource_id=payment.id,
            details={"paymentId": payment.id},
        )
        await self.db.commit()
        await self.db.refresh(payment)

        await self.notifier.deliver(notice)
        logger.info("Payment %s refunded by admin %s", payment.id, admin.id)
        return payment

    async def list_payments(self, actor: User) -> List[Payment]:
        query = select(Payment).order_by(Payment.created_at.desc(), Payment.id.desc())
        if actor.role == UserRole.DOCTOR:
            query = query.join(Appointment, Appointment.id == Payment.appointment_id).where(
                Appointment.doctor_id == actor.id
            )
        elif actor.role != UserRole.ADMIN:
            query = query.where(Payment.patient_id == actor.id)

        result = await self.db.execute(query)
        return list(result.scalars().all())
