from medibook.core.security import UserRole

from .conftest import auth_headers


async def create_calendar(client, doctor, day="2024-06-01", slots=None):
    return await client.post(
        "/api/v1/calendars",
        json={"date": day, "slots": slots if slots is not None else ["09:00", "09:30"]},
        headers=auth_headers(doctor),
    )


class TestCalendars:

    async def test_create_and_get(self, client, doctor):
        response = await create_calendar(client, doctor, slots=["10:00", "09:00", "10:00"])
        assert response.status_code == 201
        calendar = response.json()["data"]
        assert calendar["slots"] == ["09:00", "10:00"]
        assert calendar["confirmed"] is False

        response = await client.get(f"/api/v1/calendars/{calendar['id']}", headers=auth_headers(doctor))
        assert response.status_code == 200
        assert response.json()["data"]["doctorId"] == doctor.id

    async def test_one_calendar_per_date(self, client, doctor):
        await create_calendar(client, doctor)
        response = await create_calendar(client, doctor)
        assert response.status_code == 409

    async def test_invalid_slot(self, client, doctor):
        response = await create_calendar(client, doctor, slots=["9am"])
        assert response.status_code == 400

    async def test_patients_cannot_create(self, client, patient):
        response = await create_calendar(client, patient)
        assert response.status_code == 403

    async def test_calendar_drives_available_slots(self, client, doctor, patient):
        await create_calendar(client, doctor, slots=["14:00", "14:30"])

        response = await client.get(
            f"/api/v1/appointments/{doctor.id}/available-slots",
            params={"date": "2024-06-01"},
            headers=auth_headers(patient),
        )
        assert response.json()["data"]["availableSlots"] == ["14:00", "14:30"]

    async def test_update_keeps_versions(self, client, doctor):
        calendar_id = (await create_calendar(client, doctor)).json()["data"]["id"]

        response = await client.put(
            f"/api/v1/calendars/{calendar_id}/slots",
            json={"slots": ["11:00"]},
            headers=auth_headers(doctor),
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["slots"] == ["11:00"]
        assert len(data["versions"]) == 1
        assert data["versions"][0]["slots"] == ["09:00", "09:30"]

    async def test_confirmed_calendar_is_frozen(self, client, doctor):
        calendar_id = (await create_calendar(client, doctor)).json()["data"]["id"]

        response = await client.post(
            f"/api/v1/calendars/{calendar_id}/confirm", headers=auth_headers(doctor)
        )
        assert response.status_code == 200
        assert response.json()["data"]["confirmed"] is True

        # Confirming again is a no-op
        response = await client.post(
            f"/api/v1/calendars/{calendar_id}/confirm", headers=auth_headers(doctor)
        )
        assert response.status_code == 200

        response = await client.put(
            f"/api/v1/calendars/{calendar_id}/slots",
            json={"slots": ["11:00"]},
            headers=auth_headers(doctor),
        )
        assert response.status_code == 409

    async def test_other_doctor_forbidden_admin_allowed(self, client, doctor, admin, user_factory):
        calendar_id = (await create_calendar(client, doctor)).json()["data"]["id"]
        other = await user_factory(UserRole.DOCTOR)

        response = await client.get(f"/api/v1/calendars/{calendar_id}", headers=auth_headers(other))
        assert response.status_code == 403

        response = await client.get(f"/api/v1/calendars/{calendar_id}", headers=auth_headers(admin))
        assert response.status_code == 200

    async def test_list_and_delete(self, client, doctor, admin, user_factory):
        other = await user_factory(UserRole.DOCTOR)
        first = (await create_calendar(client, doctor, day="2024-06-01")).json()["data"]["id"]
        await create_calendar(client, doctor, day="2024-06-02")
        await create_calendar(client, other, day="2024-06-01")

        response = await client.get("/api/v1/calendars", headers=auth_headers(doctor))
        assert [c["date"] for c in response.json()["data"]] == ["2024-06-01", "2024-06-02"]

        response = await client.get(
            "/api/v1/calendars", params={"doctorId": other.id}, headers=auth_headers(admin)
        )
        assert len(response.json()["data"]) == 1

        response = await client.delete(f"/api/v1/calendars/{first}", headers=auth_headers(doctor))
        assert response.status_code == 200

        response = await client.get(f"/api/v1/calendars/{first}", headers=auth_headers(doctor))
        assert response.status_code == 404
