from datetime import date, datetime, timedelta

import pytest

from medibook.core.exceptions import ConflictError, NotFoundError, ValidationError
from medibook.models.appointment import AppointmentStatus
from medibook.models.calendar import Calendar
from medibook.services.slot_service import (
    DEFAULT_SLOTS, SlotService, claim_blocks, generate_default_slots, normalize_slots,
)

from .conftest import auth_headers

DAY = date(2024, 6, 1)


class TestSlotHelpers:

    def test_default_template_skips_lunch(self):
        slots = generate_default_slots()
        assert slots[0] == "08:00"
        assert slots[-1] == "17:30"
        assert "12:00" not in slots and "12:30" not in slots
        assert len(slots) == 18

    def test_normalize_slots_sorts_and_dedupes(self):
        assert normalize_slots(["09:30", "09:00", "09:30"]) == ["09:00", "09:30"]

    def test_normalize_slots_rejects_garbage(self):
        with pytest.raises(ValidationError):
            normalize_slots(["25:00"])
        with pytest.raises(ValidationError):
            normalize_slots(["9:30"])

    def test_claim_blocks_cover_interval(self):
        blocks = claim_blocks(datetime(2024, 6, 1, 10, 0), 15, 5)
        assert blocks == [
            datetime(2024, 6, 1, 10, 0),
            datetime(2024, 6, 1, 10, 5),
            datetime(2024, 6, 1, 10, 10),
        ]


class TestSlotService:

    async def test_unknown_doctor(self, db_session):
        with pytest.raises(NotFoundError):
            await SlotService(db_session).list_available_slots(999, DAY)

    async def test_patient_is_not_a_doctor(self, db_session, patient):
        with pytest.raises(NotFoundError):
            await SlotService(db_session).list_available_slots(patient.id, DAY)

    async def test_default_slots_when_no_calendar(self, db_session, doctor):
        slots = await SlotService(db_session).list_available_slots(doctor.id, DAY)
        assert slots == list(DEFAULT_SLOTS)

    async def test_calendar_slots_replace_default(self, db_session, doctor):
        db_session.add(Calendar(doctor_id=doctor.id, date=DAY, slots=["14:00", "09:00"], versions=[]))
        await db_session.commit()

        slots = await SlotService(db_session).list_available_slots(doctor.id, DAY)
        assert slots == ["09:00", "14:00"]

    async def test_slots_covered_by_active_appointments_are_excluded(
        self, db_session, doctor, patient, appointment_factory
    ):
        # 10:00-11:00 covers both 10:00 and 10:30
        await appointment_factory(patient, doctor, datetime(2024, 6, 1, 10, 0), duration=60)
        await appointment_factory(
            patient, doctor, datetime(2024, 6, 1, 14, 0), status=AppointmentStatus.CONFIRMED
        )
        await appointment_factory(
            patient, doctor, datetime(2024, 6, 1, 15, 0), status=AppointmentStatus.CANCELLED
        )

        overview = await SlotService(db_session).get_slot_overview(doctor.id, DAY)
        available = overview["availableSlots"]
        assert "10:00" not in available
        assert "10:30" not in available
        assert "14:00" not in available
        assert "11:00" in available
        assert "15:00" in available
        assert overview["bookedSlots"] == ["10:00", "14:00"]

    async def test_no_available_slot_overlaps_a_booking(
        self, db_session, doctor, patient, appointment_factory
    ):
        booked = [
            (datetime(2024, 6, 1, 8, 15), 45),
            (datetime(2024, 6, 1, 13, 25), 10),
            (datetime(2024, 6, 1, 16, 50), 70),
        ]
        for start, duration in booked:
            await appointment_factory(patient, doctor, start, duration=duration)

        slots = await SlotService(db_session).list_available_slots(doctor.id, DAY)
        for slot in slots:
            hour, minute = map(int, slot.split(":"))
            slot_start = datetime(2024, 6, 1, hour, minute)
            for start, duration in booked:
                assert not (start <= slot_start < start + timedelta(minutes=duration))

    async def test_touching_intervals_do_not_conflict(
        self, db_session, doctor, patient, appointment_factory
    ):
        await appointment_factory(patient, doctor, datetime(2024, 6, 1, 10, 0))
        service = SlotService(db_session)

        await service.validate_no_conflict(doctor.id, datetime(2024, 6, 1, 10, 30), 30)
        await service.validate_no_conflict(doctor.id, datetime(2024, 6, 1, 9, 30), 30)
        with pytest.raises(ConflictError):
            await service.validate_no_conflict(doctor.id, datetime(2024, 6, 1, 10, 15), 30)

    async def test_booking_window_rules(self, db_session):
        service = SlotService(db_session)
        service.validate_booking_window(datetime(2024, 6, 1, 10, 5), 25)
        with pytest.raises(ValidationError):
            service.validate_booking_window(datetime(2024, 6, 1, 10, 7), 30)
        with pytest.raises(ValidationError):
            service.validate_booking_window(datetime(2024, 6, 1, 10, 0), 22)
        with pytest.raises(ValidationError):
            service.validate_booking_window(datetime(2024, 6, 1, 10, 0), 0)


class TestAvailableSlotsEndpoint:

    async def test_overview(self, client, doctor, patient, appointment_factory):
        await appointment_factory(patient, doctor, datetime(2024, 6, 1, 10, 0))

        response = await client.get(
            f"/api/v1/appointments/{doctor.id}/available-slots",
            params={"date": "2024-06-01"},
            headers=auth_headers(patient),
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["doctorId"] == doctor.id
        assert data["date"] == "2024-06-01"
        assert "10:00" not in data["availableSlots"]
        assert data["bookedSlots"] == ["10:00"]

    async def test_unknown_doctor(self, client, patient):
        response = await client.get(
            "/api/v1/appointments/4242/available-slots",
            params={"date": "2024-06-01"},
            headers=auth_headers(patient),
        )
        assert response.status_code == 404

    async def test_date_is_required(self, client, doctor, patient):
        response = await client.get(
            f"/api/v1/appointments/{doctor.id}/available-slots",
            headers=auth_headers(patient),
        )
        assert response.status_code == 400
