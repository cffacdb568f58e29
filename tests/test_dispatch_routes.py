"""Integration tests for POST /api/jobs (job dispatch).

Covers reservation + persistence + trigger:
- Success consumes credits and creates a pending job
- Insufficient credits returns 402 with available/required and creates nothing
- Validation, authentication, ownership and free-tier failures have no side effects
- Trigger failure leaves the job pending with credits consumed
"""

from uuid import UUID, uuid4

import pytest
from sqlalchemy import func, select

from adforge.models.job import Job, JobStatus
from adforge.models.usage_event import UsageEvent


async def count_jobs(session, user_id) -> int:
    result = await session.execute(select(func.count(Job.id)).where(Job.user_id == user_id))
    return result.scalar()


async def balance(uow_factory, user_id) -> int:
    async with await uow_factory() as uow:
        return await uow.profiles.get_balance(user_id)


@pytest.mark.asyncio
class TestCreateJob:
    async def test_success_consumes_credits_and_creates_pending_job(
        self, test_client, uow_factory, make_profile, make_image, auth_headers, fake_trigger
    ):
        profile = await make_profile(credits=10)
        scene = await make_image(profile.id, "scene.png")
        product = await make_image(profile.id, "product.png")

        response = await test_client.post(
            "/api/jobs",
            json={
                "image_ids": [str(scene.id), str(product.id)],
                "prompt": "Put the product on the kitchen counter",
                "model": "openai-high-portrait",
            },
            headers=auth_headers(profile.id),
        )

        assert response.status_code == 201, response.text
        body = response.json()
        assert body["status"] == "pending"
        assert body["credits_used"] == 7
        assert await balance(uow_factory, profile.id) == 3

        async with await uow_factory() as uow:
            job = await uow.jobs.get_by_id(UUID(body["job_id"]))
            events = await uow.usage_events.list_for_user(profile.id)
        assert job.status == JobStatus.PENDING
        assert job.image_ids == [str(scene.id), str(product.id)]
        assert job.model == "openai-high-portrait"
        assert job.credits_used == 7
        assert [(e.delta, e.reason) for e in events] == [(-7, "job_consume")]
        assert events[0].event_metadata["job_id"] == str(job.id)
        assert fake_trigger.triggered == [job.id]

    async def test_insufficient_credits(
        self, test_client, session, make_profile, make_image, auth_headers, fake_trigger
    ):
        profile = await make_profile(credits=5)
        image = await make_image(profile.id)

        response = await test_client.post(
            "/api/jobs",
            json={"image_ids": [str(image.id)], "prompt": "x", "model": "openai-high-square"},
            headers=auth_headers(profile.id),
        )

        assert response.status_code == 402
        assert response.json() == {"error": "Insufficient credits", "available": 5, "required": 7}
        assert await count_jobs(session, profile.id) == 0
        events = await session.execute(select(UsageEvent).where(UsageEvent.user_id == profile.id))
        assert events.scalars().all() == []
        assert fake_trigger.triggered == []

    async def test_output_count_multiplies_cost(
        self, test_client, uow_factory, make_profile, auth_headers
    ):
        profile = await make_profile(credits=10)

        response = await test_client.post(
            "/api/jobs",
            json={"prompt": "x", "model": "openai-low-square", "n": 3},
            headers=auth_headers(profile.id),
        )

        assert response.status_code == 201
        assert response.json()["credits_used"] == 2
        assert await balance(uow_factory, profile.id) == 8

    async def test_aspect_ratio_only_defaults_to_medium_tier(
        self, test_client, uow_factory, make_profile, auth_headers
    ):
        profile = await make_profile(credits=10)

        response = await test_client.post(
            "/api/jobs",
            json={"prompt": "x", "aspect_ratio": "landscape"},
            headers=auth_headers(profile.id),
        )

        assert response.status_code == 201
        async with await uow_factory() as uow:
            job = await uow.jobs.get_by_id(UUID(response.json()["job_id"]))
        assert job.model == "openai-medium-landscape"
        assert job.credits_used == 1

    async def test_missing_token(self, test_client):
        response = await test_client.post("/api/jobs", json={"prompt": "x"})
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    async def test_expired_token(self, test_client, make_profile, auth_headers):
        profile = await make_profile()
        response = await test_client.post(
            "/api/jobs", json={"prompt": "x"}, headers=auth_headers(profile.id, exp=1)
        )
        assert response.status_code == 401

    async def test_wrong_audience(self, test_client, make_profile, auth_headers):
        profile = await make_profile()
        response = await test_client.post(
            "/api/jobs", json={"prompt": "x"}, headers=auth_headers(profile.id, aud="anon")
        )
        assert response.status_code == 401

    async def test_foreign_image_is_not_found(
        self, test_client, uow_factory, session, make_profile, make_image, auth_headers
    ):
        owner = await make_profile(credits=10)
        intruder = await make_profile(credits=10)
        image = await make_image(owner.id)

        response = await test_client.post(
            "/api/jobs",
            json={"image_ids": [str(image.id)], "prompt": "x", "model": "gemini"},
            headers=auth_headers(intruder.id),
        )

        assert response.status_code == 404
        assert await balance(uow_factory, intruder.id) == 10
        assert await count_jobs(session, intruder.id) == 0

    async def test_unknown_image_is_not_found(
        self, test_client, uow_factory, make_profile, auth_headers
    ):
        profile = await make_profile(credits=10)

        response = await test_client.post(
            "/api/jobs",
            json={"image_ids": [str(uuid4())], "prompt": "x"},
            headers=auth_headers(profile.id),
        )

        assert response.status_code == 404
        assert await balance(uow_factory, profile.id) == 10

    @pytest.mark.parametrize(
        "payload",
        [
            {"prompt": ""},
            {"prompt": "   "},
            {"prompt": "x" * 2001},
            {"prompt": "x", "model": "dall-e-3"},
            {"prompt": "x", "aspect_ratio": "panorama"},
            {"prompt": "x", "n": 5},
            {"prompt": "x", "style": "vaporwave"},
            {"prompt": "x", "image_ids": [str(uuid4()) for _ in range(11)]},
        ],
    )
    async def test_validation_errors(
        self, test_client, uow_factory, make_profile, auth_headers, payload
    ):
        profile = await make_profile(credits=10)

        response = await test_client.post("/api/jobs", json=payload, headers=auth_headers(profile.id))

        assert response.status_code == 400, response.text
        assert "error" in response.json()
        assert await balance(uow_factory, profile.id) == 10

    async def test_duplicate_image_ids_rejected(
        self, test_client, make_profile, make_image, auth_headers
    ):
        profile = await make_profile(credits=10)
        image = await make_image(profile.id)

        response = await test_client.post(
            "/api/jobs",
            json={"image_ids": [str(image.id), str(image.id)], "prompt": "x"},
            headers=auth_headers(profile.id),
        )

        assert response.status_code == 400

    async def test_unknown_profile(self, test_client, auth_headers):
        response = await test_client.post(
            "/api/jobs", json={"prompt": "x"}, headers=auth_headers(uuid4())
        )
        assert response.status_code == 404

    async def test_trigger_failure_keeps_job_pending_and_credits_consumed(
        self, test_client, uow_factory, session, make_profile, auth_headers, fake_trigger
    ):
        profile = await make_profile(credits=10)
        fake_trigger.fail = True

        response = await test_client.post(
            "/api/jobs", json={"prompt": "x", "model": "gemini"}, headers=auth_headers(profile.id)
        )

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "Failed to start job"
        assert await balance(uow_factory, profile.id) == 9
        async with await uow_factory() as uow:
            job = await uow.jobs.get_by_id(UUID(body["job_id"]))
        assert job.status == JobStatus.PENDING


@pytest.mark.asyncio
class TestFreeTier:
    async def test_daily_limit(self, test_client, uow_factory, make_profile, auth_headers, settings):
        profile = await make_profile(credits=100)
        async with await uow_factory() as uow:
            for _ in range(settings.free_daily_job_limit):
                await uow.jobs.add(Job(user_id=profile.id, prompt="p", model="gemini", credits_used=1))

        response = await test_client.post(
            "/api/jobs", json={"prompt": "x", "model": "gemini"}, headers=auth_headers(profile.id)
        )

        assert response.status_code == 429
        assert response.json()["limit"] == settings.free_daily_job_limit
        assert await balance(uow_factory, profile.id) == 100

    async def test_active_subscription_bypasses_limit(
        self, test_client, uow_factory, make_profile, auth_headers, settings
    ):
        profile = await make_profile(credits=100, subscription_status="active")
        async with await uow_factory() as uow:
            for _ in range(settings.free_daily_job_limit):
                await uow.jobs.add(Job(user_id=profile.id, prompt="p", model="gemini", credits_used=1))

        response = await test_client.post(
            "/api/jobs", json={"prompt": "x", "model": "gemini"}, headers=auth_headers(profile.id)
        )

        assert response.status_code == 201
