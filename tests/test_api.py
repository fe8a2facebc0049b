from clinic_booking.core.database import SessionLocal
from clinic_booking.models.appointment import Appointment


def booking_payload(ids, start="2026-03-02T10:00:00", **overrides):
    payload = {
        "patient_id": ids.patient_id,
        "clinic_id": ids.clinic_id,
        "practitioner_id": ids.practitioner_id,
        "appointment_start_datetime": start,
        "duration": 30,
        "appointment_context": "Follow-up",
    }
    payload.update(overrides)
    return payload


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert "X-Process-Time" in response.headers

    def test_info(self, client):
        data = client.get("/api/v1/info").json()
        assert data["timezone"] == "Australia/Melbourne"

    def test_unknown_route(self, client):
        response = client.get("/api/v1/nowhere")
        assert response.status_code == 404
        assert response.json()["error"] == "Not Found"


class TestAppointmentsApi:

    def test_book_appointment(self, client, seeded, sink):
        response = client.post("/api/v1/appointments", json=booking_payload(seeded))
        assert response.status_code == 201

        data = response.json()
        assert data["status"] == "PENDING"
        assert data["patient_name"] == "Ada Lovelace"
        assert data["practitioner_name"] == "Dr Grace Hopper"
        assert data["appointment_start_datetime"] == "2026-03-02T10:00:00"
        assert data["appointment_end_datetime"] == "2026-03-02T10:30:00"
        assert [event["event"] for _, event in sink.events] == ["newAppointment"]

    def test_book_with_utc_offset(self, client, seeded):
        response = client.post(
            "/api/v1/appointments",
            json=booking_payload(seeded, start="2026-03-02T22:00:00Z"),
        )
        assert response.status_code == 201
        assert response.json()["appointment_start_datetime"] == "2026-03-03T09:00:00"

    def test_lowercase_status_is_accepted(self, client, seeded):
        response = client.post("/api/v1/appointments", json=booking_payload(seeded, status="scheduled"))
        assert response.status_code == 201
        assert response.json()["status"] == "SCHEDULED"

    def test_invalid_input_is_rejected(self, client, seeded):
        response = client.post("/api/v1/appointments", json=booking_payload(seeded, duration=0))
        assert response.status_code == 422

        response = client.post(
            "/api/v1/appointments",
            json=booking_payload(seeded, start="next tuesday"),
        )
        assert response.status_code == 422

    def test_conflict_reason_is_returned(self, client, seeded):
        client.post("/api/v1/appointments", json=booking_payload(seeded))
        response = client.post(
            "/api/v1/appointments",
            json=booking_payload(seeded, patient_id=seeded.patient_id, start="2026-03-02T10:15:00"),
        )

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "Conflict"
        assert body["code"] == "PractitionerBookedError"
        assert "overlaps" in body["message"]

    def test_clinic_association_error(self, client, seeded):
        response = client.post(
            "/api/v1/appointments",
            json=booking_payload(seeded, patient_id=seeded.outsider_id),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "ClinicAssociationError"

    def test_unknown_patient(self, client, seeded):
        response = client.post("/api/v1/appointments", json=booking_payload(seeded, patient_id=9999))
        assert response.status_code == 404
        assert response.json()["code"] == "PatientNotFoundError"

    def test_list_and_fetch(self, client, seeded):
        created = client.post("/api/v1/appointments", json=booking_payload(seeded)).json()

        listed = client.get("/api/v1/appointments", params={"clinic_id": seeded.clinic_id}).json()
        assert [a["id"] for a in listed] == [created["id"]]

        other = client.get("/api/v1/appointments", params={"clinic_id": seeded.other_clinic_id}).json()
        assert other == []

        fetched = client.get(
            f"/api/v1/appointments/{created['id']}", params={"clinic_id": seeded.clinic_id}
        )
        assert fetched.status_code == 200
        assert fetched.json()["appointment_context"] == "Follow-up"

        hidden = client.get(
            f"/api/v1/appointments/{created['id']}", params={"clinic_id": seeded.other_clinic_id}
        )
        assert hidden.status_code == 404

        by_practitioner = client.get(
            f"/api/v1/appointments/practitioners/{seeded.practitioner_id}",
            params={"clinic_id": seeded.clinic_id},
        ).json()
        assert len(by_practitioner) == 1

    def test_cancel_frees_the_slot(self, client, seeded, sink):
        created = client.post("/api/v1/appointments", json=booking_payload(seeded)).json()

        response = client.patch(
            f"/api/v1/appointments/{created['id']}/status",
            json={"clinic_id": seeded.clinic_id, "status": "cancelled"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "CANCELLED"
        assert sink.events[-1][1]["event"] == "appointmentUpdated"

        free = client.get(
            f"/api/v1/practitioners/{seeded.practitioner_id}/availability",
            params={"date": "2026-03-02"},
        ).json()
        assert free == [{"start_time": "09:00:00", "end_time": "17:00:00"}]

        reactivate = client.patch(
            f"/api/v1/appointments/{created['id']}/status",
            json={"clinic_id": seeded.clinic_id, "status": "PENDING"},
        )
        assert reactivate.status_code == 400

    def test_reschedule(self, client, seeded):
        created = client.post("/api/v1/appointments", json=booking_payload(seeded)).json()

        response = client.patch(
            f"/api/v1/appointments/{created['id']}/reschedule",
            json={
                "clinic_id": seeded.clinic_id,
                "appointment_start_datetime": "2026-03-03T14:00:00",
                "duration": 45,
            },
        )
        assert response.status_code == 200
        assert response.json()["appointment_start_datetime"] == "2026-03-03T14:00:00"

        with SessionLocal() as session:
            stored = session.query(Appointment).filter(Appointment.id == created["id"]).one()
            assert stored.duration == 45


class TestPractitionersApi:

    def test_free_slots(self, client, seeded):
        client.post("/api/v1/appointments", json=booking_payload(seeded))

        response = client.get(
            f"/api/v1/practitioners/{seeded.practitioner_id}/availability",
            params={"date": "2026-03-02", "clinic_id": seeded.clinic_id},
        )
        assert response.status_code == 200
        assert response.json() == [
            {"start_time": "09:00:00", "end_time": "10:00:00"},
            {"start_time": "10:30:00", "end_time": "17:00:00"},
        ]

    def test_free_slots_unknown_practitioner(self, client, seeded):
        response = client.get("/api/v1/practitioners/9999/availability", params={"date": "2026-03-02"})
        assert response.status_code == 404

    def test_block_range_and_list(self, client, seeded):
        response = client.post(
            f"/api/v1/practitioners/{seeded.practitioner_id}/blocks",
            json={
                "start_datetime": "2026-03-02T09:00:00",
                "end_datetime": "2026-03-04T17:00:00",
                "is_blocked": True,
            },
        )
        assert response.status_code == 200
        rows = response.json()
        assert [row["date"] for row in rows] == ["2026-03-02", "2026-03-03", "2026-03-04"]
        assert all(row["reason"] == "BLOCKED_BY_ADMIN" for row in rows)

        blocked = client.get(
            f"/api/v1/practitioners/{seeded.practitioner_id}/blocked", params={"date": "2026-03-03"}
        ).json()
        assert len(blocked) == 1

        free = client.get(
            f"/api/v1/practitioners/{seeded.practitioner_id}/availability", params={"date": "2026-03-02"}
        ).json()
        assert free == []

    def test_block_slot(self, client, seeded):
        response = client.post(
            f"/api/v1/practitioners/{seeded.practitioner_id}/slots",
            json={"date": "2026-03-02", "start_time": "12:00:00", "end_time": "13:00:00"},
        )
        assert response.status_code == 200
        assert response.json()["clinic_id"] == seeded.clinic_id

        booked = client.post(
            "/api/v1/appointments", json=booking_payload(seeded, start="2026-03-02T12:30:00")
        )
        assert booked.status_code == 409
        assert booked.json()["code"] == "PractitionerUnavailableError"

    def test_block_slot_for_another_clinic(self, client, seeded):
        response = client.post(
            f"/api/v1/practitioners/{seeded.practitioner_id}/slots",
            json={
                "date": "2026-03-02",
                "start_time": "12:00:00",
                "end_time": "13:00:00",
                "clinic_id": seeded.other_clinic_id,
            },
        )
        assert response.status_code == 400
        assert response.json()["code"] == "ClinicAssociationError"

    def test_set_recurring_availability(self, client, seeded):
        response = client.put(
            "/api/v1/practitioners/availability",
            json={
                "practitioner_id": seeded.practitioner_id,
                "day_of_week": "WEDNESDAY",
                "start_time": "10:00:00",
                "end_time": "14:00:00",
            },
        )
        assert response.status_code == 200
        assert response.json()["day_of_week"] == "WEDNESDAY"

        free = client.get(
            f"/api/v1/practitioners/{seeded.practitioner_id}/availability", params={"date": "2026-03-04"}
        ).json()
        assert free == [{"start_time": "10:00:00", "end_time": "14:00:00"}]

    def test_set_availability_rejects_bad_window(self, client, seeded):
        response = client.put(
            "/api/v1/practitioners/availability",
            json={
                "practitioner_id": seeded.practitioner_id,
                "date": "2026-03-02",
                "start_time": "14:00:00",
                "end_time": "10:00:00",
            },
        )
        assert response.status_code == 422
