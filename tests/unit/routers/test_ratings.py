"""Rating endpoint tests."""

from __future__ import annotations

from typing import Any

import pytest

from tests.unit.routers.conftest import (
    register_worker,
    set_application_status,
    setup_accepted_application,
)


async def _completed_application(client) -> dict[str, Any]:
    ctx = await setup_accepted_application(client)
    response = await set_application_status(
        client, ctx["task_id"], ctx["application_id"], ctx["employer_headers"], "COMPLETED"
    )
    assert response.status_code == 200, response.text
    return ctx


async def _rate(client, application_id, headers, stars):
    return await client.post(
        "/api/ratings/submit",
        json={"applicationId": application_id, "stars": stars},
        headers=headers,
    )


class TestSubmitRating:
    """Tests for POST /api/ratings/submit."""

    @pytest.mark.unit
    async def test_employer_rates_worker(self, client):
        ctx = await _completed_application(client)

        response = await _rate(client, ctx["application_id"], ctx["employer_headers"], 5)

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Rating submitted successfully"
        assert body["data"]["raterType"] == "EMPLOYER"
        assert body["data"]["newAverageRating"] == 5.0

        worker = await client.get(
            f"/api/workers/{ctx['worker_id']}", headers=ctx["worker_headers"]
        )
        assert worker.json()["data"]["averageRating"] == 5.0

    @pytest.mark.unit
    async def test_worker_rates_employer(self, client):
        ctx = await _completed_application(client)

        response = await _rate(client, ctx["application_id"], ctx["worker_headers"], 3)

        assert response.status_code == 201
        assert response.json()["data"]["raterType"] == "WORKER"

        employer = await client.get(
            f"/api/employers/{ctx['employer_id']}", headers=ctx["employer_headers"]
        )
        assert employer.json()["data"]["averageRating"] == 3.0

    @pytest.mark.unit
    @pytest.mark.parametrize("stars", [0, 6, 4.5, "5", True, None])
    async def test_invalid_stars(self, client, stars):
        ctx = await _completed_application(client)
        response = await _rate(client, ctx["application_id"], ctx["employer_headers"], stars)
        assert response.status_code == 400
        assert response.json()["error"] == "Validation error"

    @pytest.mark.unit
    async def test_duplicate_rating(self, client):
        ctx = await _completed_application(client)
        await _rate(client, ctx["application_id"], ctx["employer_headers"], 4)

        response = await _rate(client, ctx["application_id"], ctx["employer_headers"], 2)

        assert response.status_code == 409
        assert response.json()["error"] == "Rating already submitted"

        worker = await client.get(
            f"/api/workers/{ctx['worker_id']}", headers=ctx["worker_headers"]
        )
        assert worker.json()["data"]["averageRating"] == 4.0

    @pytest.mark.unit
    async def test_rating_from_complete_counts_as_employer_rating(self, client):
        ctx = await setup_accepted_application(client)
        await client.post(
            f"/api/bronze-tasks/{ctx['task_id']}/complete",
            json={"workerId": ctx["worker_id"], "rating": 5},
            headers=ctx["employer_headers"],
        )

        response = await _rate(client, ctx["application_id"], ctx["employer_headers"], 1)
        assert response.status_code == 409

    @pytest.mark.unit
    async def test_task_not_completed(self, client):
        ctx = await setup_accepted_application(client)
        response = await _rate(client, ctx["application_id"], ctx["employer_headers"], 4)
        assert response.status_code == 400
        assert response.json()["error"] == "Can only rate completed tasks"

    @pytest.mark.unit
    async def test_outsider_cannot_rate(self, client):
        ctx = await _completed_application(client)
        _other_id, other_headers = await register_worker(client)
        response = await _rate(client, ctx["application_id"], other_headers, 4)
        assert response.status_code == 403

    @pytest.mark.unit
    async def test_unknown_application(self, client):
        ctx = await _completed_application(client)
        response = await _rate(client, "app-missing", ctx["employer_headers"], 4)
        assert response.status_code == 404


class TestRatingQueries:
    """Tests for pending, can-rate, overview and user rating lists."""

    @pytest.mark.unit
    async def test_pending_and_can_rate(self, client):
        ctx = await _completed_application(client)

        pending = await client.get("/api/ratings/pending", headers=ctx["worker_headers"])
        assert pending.status_code == 200
        entries = pending.json()["data"]["pendingRatings"]
        assert [e["applicationId"] for e in entries] == [ctx["application_id"]]
        assert entries[0]["rateeId"] == ctx["employer_id"]

        can_rate = await client.get(
            f"/api/ratings/can-rate/{ctx['application_id']}", headers=ctx["worker_headers"]
        )
        assert can_rate.json()["data"] == {
            "canRate": True,
            "raterType": "WORKER",
            "taskTitle": "Enter 200 invoices",
        }

        await _rate(client, ctx["application_id"], ctx["worker_headers"], 4)

        pending = await client.get("/api/ratings/pending", headers=ctx["worker_headers"])
        assert pending.json()["data"]["count"] == 0
        can_rate = await client.get(
            f"/api/ratings/can-rate/{ctx['application_id']}", headers=ctx["worker_headers"]
        )
        assert can_rate.json()["data"]["canRate"] is False
        assert can_rate.json()["data"]["existingRating"] == 4

    @pytest.mark.unit
    async def test_can_rate_before_completion(self, client):
        ctx = await setup_accepted_application(client)
        response = await client.get(
            f"/api/ratings/can-rate/{ctx['application_id']}", headers=ctx["employer_headers"]
        )
        assert response.json()["data"] == {"canRate": False, "reason": "Task not completed yet"}

    @pytest.mark.unit
    async def test_user_ratings_and_overview(self, client):
        ctx = await _completed_application(client)
        await _rate(client, ctx["application_id"], ctx["employer_headers"], 4)

        ratings = await client.get(
            f"/api/ratings/{ctx['worker_id']}",
            params={"userType": "worker"},
            headers=ctx["worker_headers"],
        )
        assert ratings.status_code == 200
        data = ratings.json()["data"]
        assert data["totalRatings"] == 1
        assert data["averageRating"] == 4.0
        assert data["ratingDistribution"]["4"] == 1
        assert data["ratings"][0]["raterType"] == "EMPLOYER"

        overview = await client.get(
            f"/api/ratings/overview/{ctx['employer_id']}",
            params={"userType": "EMPLOYER"},
            headers=ctx["employer_headers"],
        )
        assert overview.status_code == 200
        assert overview.json()["data"]["isNewUser"] is True
        assert overview.json()["data"]["displayRating"] is None

    @pytest.mark.unit
    async def test_user_type_required(self, client):
        ctx = await _completed_application(client)
        response = await client.get(
            f"/api/ratings/{ctx['worker_id']}", headers=ctx["worker_headers"]
        )
        assert response.status_code == 400


class TestRatingAdmin:
    """Tests for the admin-only rating endpoints."""

    @pytest.mark.unit
    async def test_statistics(self, client, admin_headers):
        ctx = await _completed_application(client)
        await _rate(client, ctx["application_id"], ctx["employer_headers"], 5)
        await _rate(client, ctx["application_id"], ctx["worker_headers"], 3)

        response = await client.get("/api/ratings/statistics", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["totalRatings"] == 2
        assert data["platformAverageRating"] == 4.0
        assert data["ratingDistribution"]["5"] == 1
        assert data["ratingDistribution"]["3"] == 1

    @pytest.mark.unit
    async def test_statistics_requires_admin(self, client):
        ctx = await _completed_application(client)
        response = await client.get("/api/ratings/statistics", headers=ctx["employer_headers"])
        assert response.status_code == 403

    @pytest.mark.unit
    async def test_hiding_rating_recomputes_average(self, client, admin_headers):
        ctx = await _completed_application(client)
        rated = await _rate(client, ctx["application_id"], ctx["employer_headers"], 2)
        rating_id = rated.json()["data"]["id"]

        details = await client.get(f"/api/ratings/details/{rating_id}", headers=admin_headers)
        assert details.status_code == 200
        assert details.json()["data"]["ratedWorkerId"] == ctx["worker_id"]

        hidden = await client.put(
            f"/api/ratings/{rating_id}/visibility",
            json={"isVisible": False},
            headers=admin_headers,
        )
        assert hidden.status_code == 200
        assert hidden.json()["data"]["newAverageRating"] is None

        worker = await client.get(
            f"/api/workers/{ctx['worker_id']}", headers=ctx["worker_headers"]
        )
        assert worker.json()["data"]["averageRating"] is None

        listed = await client.get(
            f"/api/ratings/{ctx['worker_id']}",
            params={"userType": "WORKER"},
            headers=ctx["worker_headers"],
        )
        assert listed.json()["data"]["totalRatings"] == 0

    @pytest.mark.unit
    async def test_visibility_validation(self, client, admin_headers):
        ctx = await _completed_application(client)
        rated = await _rate(client, ctx["application_id"], ctx["employer_headers"], 2)
        rating_id = rated.json()["data"]["id"]

        response = await client.put(
            f"/api/ratings/{rating_id}/visibility",
            json={"isVisible": "no"},
            headers=admin_headers,
        )
        assert response.status_code == 400

        missing = await client.put(
            "/api/ratings/rt-missing/visibility",
            json={"isVisible": True},
            headers=admin_headers,
        )
        assert missing.status_code == 404
