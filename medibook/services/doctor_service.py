from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import NotFoundError
from ..core.security import UserRole
from ..models.user import User

def _active_doctors():
    return select(User).where(User.role == UserRole.DOCTOR, User.is_active.is_(True))

class DoctorService:
    """Read-only directory of the active doctors patients can book with."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_doctors(self) -> List[User]:
        result = await self.db.execute(
            _active_doctors().order_by(User.first_name, User.last_name, User.id)
        )
        return list(result.scalars().all())

    async def get_doctor(self, doctor_id: int) -> User:
        """Return the active doctor with this id or raise NotFoundError."""
        result = await self.db.execute(_active_doctors().where(User.id == doctor_id))
        doctor = result.scalar_one_or_none()
        if not doctor:
            raise NotFoundError("Doctor not found or inactive")
        return doctor
