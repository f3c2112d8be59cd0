"""API tests for the /scheduling endpoints."""

import pytest


@pytest.fixture
def provider_id(client):
    response = client.post("/scheduling/providers", json={"name": "Facilities Team A"})
    assert response.status_code == 201
    return response.json()["id"]


@pytest.fixture
def slot_id(client, provider_id):
    response = client.post(
        f"/scheduling/providers/{provider_id}/slots",
        json={"day_of_week": 1, "start_time": "08:00", "end_time": "12:00"},
    )
    assert response.status_code == 201
    return response.json()["id"]


def create_assignment(client, provider_id, start, end, day="2024-01-01", **extra):
    payload = {
        "service_provider_id": provider_id,
        "ranges": [{"date": day, "start": start, "end": end}],
        **extra,
    }
    return client.post("/scheduling/assignments", json=payload)


class TestProvidersAndSlots:
    def test_slot_response(self, client, provider_id):
        response = client.post(
            f"/scheduling/providers/{provider_id}/slots",
            json={"day_of_week": 3, "start_time": "13:00", "end_time": "17:30"},
        )

        assert response.json()["formatted_time_range"] == "13:00 - 17:30"

    def test_invalid_slot_is_rejected(self, client, provider_id):
        response = client.post(
            f"/scheduling/providers/{provider_id}/slots",
            json={"day_of_week": 7, "start_time": "13:00", "end_time": "12:00"},
        )

        assert response.status_code == 422

    def test_sub_minute_slot_is_rejected(self, client, provider_id):
        response = client.post(
            f"/scheduling/providers/{provider_id}/slots",
            json={"day_of_week": 1, "start_time": "08:00:00", "end_time": "08:00:30"},
        )

        assert response.status_code == 422

    def test_slot_for_unknown_provider(self, client):
        response = client.post(
            "/scheduling/providers/999/slots",
            json={"day_of_week": 1, "start_time": "08:00", "end_time": "12:00"},
        )

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "NotFound"


class TestAvailability:
    def test_slot_capacity(self, client, provider_id, slot_id):
        create_assignment(client, provider_id, "09:00", "10:00")

        response = client.get(f"/scheduling/slots/{slot_id}/capacity", params={"date": "2024-01-01"})

        body = response.json()
        assert response.status_code == 200
        assert (body["total_minutes"], body["booked_minutes"], body["available_minutes"]) == (240, 60, 180)
        assert [(g["start"], g["end"]) for g in body["gaps"]] == [("08:00:00", "09:00:00"), ("10:00:00", "12:00:00")]

    def test_provider_day_availability(self, client, provider_id, slot_id):
        response = client.get(
            f"/scheduling/providers/{provider_id}/availability",
            params={"date": "2024-01-01", "min_duration": 90},
        )

        body = response.json()
        assert body["day_of_week"] == 1
        assert body["time_slots"][0]["next_available"] == {"start": "08:00:00", "end": "09:30:00"}

    def test_overlap_check(self, client, provider_id):
        existing = create_assignment(client, provider_id, "10:00", "11:00").json()

        response = client.post(
            f"/scheduling/providers/{provider_id}/overlap-check",
            json={"date": "2024-01-01", "start_time": "10:30", "end_time": "11:00"},
        )

        assert response.json()["has_overlap"] is True
        assert response.json()["conflicts"][0]["assignment_id"] == existing["id"]

        response = client.post(
            f"/scheduling/providers/{provider_id}/overlap-check",
            json={"date": "2024-01-01", "start_time": "11:00", "end_time": "12:00"},
        )
        assert response.json() == {"has_overlap": False, "conflicts": []}

    def test_multi_slot_overlap_weekday_mismatch(self, client, provider_id, slot_id):
        response = client.post(
            f"/scheduling/providers/{provider_id}/multi-slot-overlap-check",
            json={"date": "2024-01-02", "time_slot_ids": [slot_id]},
        )

        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "InvalidInput"


class TestAllocationAndBooking:
    def test_auto_select_previews_plan(self, client, provider_id, slot_id):
        create_assignment(client, provider_id, "09:00", "10:00")

        response = client.post(
            f"/scheduling/providers/{provider_id}/auto-select",
            json={"start_date": "2024-01-01", "duration_minutes": 90},
        )

        plan = response.json()
        assert plan["is_sufficient"] is True
        assert plan["entries"][0]["start"] == "10:00:00"
        assert plan["entries"][0]["end"] == "11:30:00"

    def test_auto_assign_books_plan(self, client, provider_id, slot_id):
        response = client.post(
            f"/scheduling/providers/{provider_id}/auto-assign",
            json={"start_date": "2024-01-01", "duration_minutes": 300, "issue_id": 5},
        )

        body = response.json()
        assert response.status_code == 201
        assert body["scheduled_date"] == "2024-01-01"
        assert body["scheduled_end_date"] == "2024-01-08"
        assert body["span_days"] == 8
        assert body["assigned_start_time"] is None
        assert len(body["time_ranges"]) == 2

    def test_auto_assign_refuses_insufficient_plan(self, client, provider_id):
        response = client.post(
            f"/scheduling/providers/{provider_id}/auto-assign",
            json={"start_date": "2024-01-01", "duration_minutes": 60, "max_days": 3},
        )

        assert response.status_code == 422

    def test_conflicting_assignment_returns_409(self, client, provider_id):
        create_assignment(client, provider_id, "09:00", "10:00")

        response = create_assignment(client, provider_id, "09:30", "10:30")

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["error"] == "TimeConflict"
        assert detail["conflicts"][0]["start"] == "09:00:00"

    def test_assign_slots(self, client, provider_id, slot_id):
        response = client.post(
            f"/scheduling/providers/{provider_id}/assign-slots",
            json={
                "scheduled_date": "2024-01-01",
                "time_slot_ids": [slot_id],
                "assigned_start_time": "09:00",
                "assigned_end_time": "10:00",
                "allocated_duration_minutes": 60,
            },
        )

        assert response.status_code == 201
        assert response.json()["assigned_start_time"] == "09:00:00"

    def test_reschedule(self, client, provider_id):
        assignment = create_assignment(client, provider_id, "09:00", "10:00").json()

        response = client.put(
            f"/scheduling/assignments/{assignment['id']}/schedule",
            json={
                "service_provider_id": provider_id,
                "ranges": [{"date": "2024-01-01", "start": "09:30", "end": "10:30"}],
            },
        )

        assert response.status_code == 200
        assert response.json()["assigned_start_time"] == "09:30:00"


class TestLifecycleAndExtensions:
    def test_transition_and_duration(self, client, provider_id):
        assignment = create_assignment(
            client, provider_id, "09:00", "10:00", allocated_duration_minutes=60
        ).json()
        url = f"/scheduling/assignments/{assignment['id']}"

        started = client.post(f"{url}/transition", json={"event": "start"})

        assert started.json()["status"] == "in_progress"
        assert started.json()["duration"]["can_request_extension"] is True

        invalid = client.post(f"{url}/transition", json={"event": "approve"})
        assert invalid.status_code == 409
        assert invalid.json()["detail"]["current_status"] == "in_progress"

        timeline = client.get(f"{url}/timeline").json()
        assert [t["action"] for t in timeline] == ["assigned", "started"]

    def test_unknown_event_is_rejected(self, client, provider_id):
        assignment = create_assignment(client, provider_id, "09:00", "10:00").json()

        response = client.post(
            f"/scheduling/assignments/{assignment['id']}/transition", json={"event": "teleport"}
        )

        assert response.status_code == 422

    def test_extension_flow(self, client, provider_id):
        assignment = create_assignment(client, provider_id, "09:00", "10:00").json()
        url = f"/scheduling/assignments/{assignment['id']}"
        client.post(f"{url}/transition", json={"event": "start"})

        created = client.post(f"{url}/extensions", json={"requested_minutes": 30, "reason": "More damage"})
        assert created.status_code == 201

        approved = client.post(f"/scheduling/extensions/{created.json()['id']}/approve", json={})
        assert approved.json()["status"] == "approved"

        detail = client.get(url).json()
        assert detail["time_ranges"][0]["occupied_end"] == "10:30:00"
        assert detail["duration"]["approved_extension_minutes"] == 30

        listed = client.get(f"{url}/extensions", params={"status": "approved"}).json()
        assert [e["id"] for e in listed] == [created.json()["id"]]

    def test_missing_assignment(self, client):
        response = client.get("/scheduling/assignments/999")

        assert response.status_code == 404

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}
