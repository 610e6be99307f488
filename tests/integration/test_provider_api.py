import pytest

from tests.fixtures.scheduling_fixtures import provider_headers, subject_headers

BASE = "/api/v1/providers"


class TestProviderScheduleAPI:
    @pytest.mark.asyncio
    async def test_get_weekly_schedule(self, client, provider):
        response = await client.get(f"{BASE}/{provider.id}/schedule")

        assert response.status_code == 200
        data = response.json()
        assert data["kind"] == "weekly"
        assert data["slot_duration_minutes"] == 30
        assert [d["weekday"] for d in data["days"]] == [
            "monday",
            "tuesday",
            "wednesday",
            "thursday",
            "friday",
            "saturday",
        ]
        assert data["days"][-1]["enabled"] is False

    @pytest.mark.asyncio
    async def test_get_legacy_schedule(self, client, legacy_provider):
        response = await client.get(f"{BASE}/{legacy_provider.id}/schedule")

        data = response.json()
        assert data["kind"] == "legacy"
        assert data["days"] == []
        assert data["legacy_available_days"] == ["monday", "wednesday"]

    @pytest.mark.asyncio
    async def test_update_schedule(self, client, provider):
        response = await client.put(
            f"{BASE}/{provider.id}/schedule",
            json={
                "days": [
                    {"weekday": "monday", "open_time": "08:00", "close_time": "12:00"},
                    {"weekday": "sunday", "open_time": "10:00", "close_time": "14:00"},
                ],
                "slot_duration_minutes": 60,
            },
            headers=provider_headers(provider.id),
        )

        assert response.status_code == 200
        assert [d["weekday"] for d in response.json()["days"]] == ["monday", "sunday"]
        assert response.json()["slot_duration_minutes"] == 60

        slots = await client.get(
            f"/api/v1/scheduling/providers/{provider.id}/slots", params={"date": "2024-06-16"}
        )
        assert [s["start_time"] for s in slots.json()["slots"]] == [
            "10:00:00",
            "11:00:00",
            "12:00:00",
            "13:00:00",
        ]

    @pytest.mark.asyncio
    async def test_update_by_other_actor(self, client, provider):
        body = {"slot_duration_minutes": 15}

        as_subject = await client.put(
            f"{BASE}/{provider.id}/schedule", json=body, headers=subject_headers()
        )
        as_other = await client.put(
            f"{BASE}/{provider.id}/schedule", json=body, headers=provider_headers(provider.id + 1)
        )

        assert as_subject.status_code == 403
        assert as_other.status_code == 403

    @pytest.mark.asyncio
    async def test_duplicate_weekday_rejected(self, client, provider):
        response = await client.put(
            f"{BASE}/{provider.id}/schedule",
            json={
                "days": [
                    {"weekday": "monday", "open_time": "08:00", "close_time": "12:00"},
                    {"weekday": "monday", "open_time": "13:00", "close_time": "17:00"},
                ]
            },
            headers=provider_headers(provider.id),
        )

        assert response.status_code == 422


class TestBlockedTimesAPI:
    @pytest.mark.asyncio
    async def test_block_and_unblock(self, client, provider):
        headers = provider_headers(provider.id)
        slots_url = f"/api/v1/scheduling/providers/{provider.id}/slots"

        response = await client.post(
            f"{BASE}/{provider.id}/blocked-times",
            json={
                "blocked_date": "2024-06-10",
                "start_time": "12:00",
                "end_time": "13:00",
                "reason": "Lunch meeting",
            },
            headers=headers,
        )
        assert response.status_code == 201
        blocked_uuid = response.json()["uuid"]

        slots = (await client.get(slots_url, params={"date": "2024-06-10"})).json()["slots"]
        assert [s["start_time"] for s in slots if not s["is_free"]] == ["12:00:00", "12:30:00"]

        listed = await client.get(f"{BASE}/{provider.id}/blocked-times")
        assert [b["uuid"] for b in listed.json()] == [blocked_uuid]

        response = await client.delete(
            f"{BASE}/{provider.id}/blocked-times/{blocked_uuid}", headers=headers
        )
        assert response.status_code == 204

        slots = (await client.get(slots_url, params={"date": "2024-06-10"})).json()["slots"]
        assert all(s["is_free"] for s in slots)

    @pytest.mark.asyncio
    async def test_inverted_range(self, client, provider):
        response = await client.post(
            f"{BASE}/{provider.id}/blocked-times",
            json={"blocked_date": "2024-06-10", "start_time": "13:00", "end_time": "12:00"},
            headers=provider_headers(provider.id),
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_remove_unknown(self, client, provider):
        response = await client.delete(
            f"{BASE}/{provider.id}/blocked-times/0b6c3a3e-7d0f-4a51-9d43-000000000000",
            headers=provider_headers(provider.id),
        )

        assert response.status_code == 404
