"""Tests for Recommendation CRUD operations."""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from costguard.core.errors import ConcurrentExecution, StoreError
from costguard.core.time import utcnow
from costguard.crud import recommendation as recommendation_crud
from costguard.models.recommendation import RecommendationStatus
from costguard.services.recommender import build_recommendation


class TestRecommendationCRUD:
    """Test CRUD operations for Recommendation model."""

    @pytest.mark.asyncio
    async def test_create_recommendations(self, db_session: AsyncSession, make_detection):
        """Test inserting a batch of recommendations."""
        items = [build_recommendation(make_detection()), build_recommendation(make_detection())]

        created = await recommendation_crud.create_recommendations(db_session, items)

        assert len(created) == 2
        assert all(r.id is not None for r in created)
        assert created[0].status == RecommendationStatus.PENDING.value
        assert created[0].impact_level == "high"
        assert created[0].claimed_by is None

    @pytest.mark.asyncio
    async def test_create_empty_batch(self, db_session: AsyncSession):
        assert await recommendation_crud.create_recommendations(db_session, []) == []

    @pytest.mark.asyncio
    async def test_duplicate_live_detection_rejected(self, db_session: AsyncSession, make_detection):
        """Test that the partial unique index rejects a second live row for one detection."""
        detection = make_detection()
        await recommendation_crud.create_recommendations(db_session, [build_recommendation(detection)])

        with pytest.raises(StoreError, match="live recommendation already exists"):
            await recommendation_crud.create_recommendations(db_session, [build_recommendation(detection)])

        assert await recommendation_crud.get_active_detection_ids(db_session, [detection.id]) == {detection.id}

    @pytest.mark.asyncio
    async def test_get_recommendation_by_id(self, db_session: AsyncSession, make_detection):
        """Test retrieving a recommendation by ID."""
        [created] = await recommendation_crud.create_recommendations(
            db_session, [build_recommendation(make_detection())]
        )

        found = await recommendation_crud.get_recommendation_by_id(db_session, created.id)
        missing = await recommendation_crud.get_recommendation_by_id(db_session, uuid.uuid4())

        assert found is not None
        assert found.detection_id == created.detection_id
        assert missing is None

    @pytest.mark.asyncio
    async def test_get_recommendations_filters(self, db_session: AsyncSession, make_detection):
        """Test listing with status, scenario and pagination filters."""
        await recommendation_crud.create_recommendations(
            db_session,
            [
                build_recommendation(make_detection()),
                build_recommendation(make_detection()),
                build_recommendation(
                    make_detection(scenario_id="unattached_volume", resource_type="volumes", action="delete_volume")
                ),
            ],
        )

        pending = await recommendation_crud.get_recommendations(db_session, statuses=[RecommendationStatus.PENDING])
        volumes = await recommendation_crud.get_recommendations(db_session, resource_type="volumes")
        rds = await recommendation_crud.get_recommendations(db_session, scenario_id="idle_rds")
        page = await recommendation_crud.get_recommendations(db_session, skip=1, limit=1)
        approved = await recommendation_crud.get_recommendations(db_session, statuses=["approved"])

        assert len(pending) == 3
        assert len(volumes) == 1
        assert len(rds) == 2
        assert len(page) == 1
        assert approved == []

    @pytest.mark.asyncio
    async def test_conditional_update(self, db_session: AsyncSession, make_detection):
        """Test that a stale expected status makes the update fail."""
        [created] = await recommendation_crud.create_recommendations(
            db_session, [build_recommendation(make_detection())]
        )

        updated = await recommendation_crud.update_recommendation(
            db_session, created, {"status": "approved"}, expected_status="pending"
        )
        assert updated.status == "approved"

        with pytest.raises(ConcurrentExecution):
            await recommendation_crud.update_recommendation(
                db_session, created, {"status": "rejected"}, expected_status="pending"
            )

    @pytest.mark.asyncio
    async def test_delete_recommendation(self, db_session: AsyncSession, make_detection):
        [created] = await recommendation_crud.create_recommendations(
            db_session, [build_recommendation(make_detection())]
        )

        await recommendation_crud.delete_recommendation(db_session, created)

        assert await recommendation_crud.get_recommendation_by_id(db_session, created.id, refresh=True) is None


class TestExecutionLease:
    """Test claiming and releasing the execution lease."""

    async def _approved(self, db_session: AsyncSession, make_detection):
        [created] = await recommendation_crud.create_recommendations(
            db_session, [build_recommendation(make_detection())]
        )
        return await recommendation_crud.update_recommendation(db_session, created, {"status": "approved"})

    @pytest.mark.asyncio
    async def test_only_one_worker_wins(self, db_session: AsyncSession, make_detection):
        recommendation = await self._approved(db_session, make_detection)
        now = utcnow()

        first = await recommendation_crud.claim_for_execution(db_session, recommendation.id, "worker-a", now, 60)
        second = await recommendation_crud.claim_for_execution(db_session, recommendation.id, "worker-b", now, 60)
        again = await recommendation_crud.claim_for_execution(db_session, recommendation.id, "worker-a", now, 60)

        assert (first, second, again) == (True, False, True)

    @pytest.mark.asyncio
    async def test_expired_lease_can_be_taken(self, db_session: AsyncSession, make_detection):
        recommendation = await self._approved(db_session, make_detection)
        now = utcnow()
        await recommendation_crud.claim_for_execution(db_session, recommendation.id, "worker-a", now, 60)

        later = now + timedelta(seconds=61)
        assert await recommendation_crud.claim_for_execution(db_session, recommendation.id, "worker-b", later, 60)

    @pytest.mark.asyncio
    async def test_release_only_by_holder(self, db_session: AsyncSession, make_detection):
        recommendation = await self._approved(db_session, make_detection)
        now = utcnow()
        await recommendation_crud.claim_for_execution(db_session, recommendation.id, "worker-a", now, 60)

        await recommendation_crud.release_claim(db_session, recommendation.id, "worker-b")
        held = await recommendation_crud.get_recommendation_by_id(db_session, recommendation.id, refresh=True)
        assert held.claimed_by == "worker-a"

        await recommendation_crud.release_claim(db_session, recommendation.id, "worker-a")
        released = await recommendation_crud.get_recommendation_by_id(db_session, recommendation.id, refresh=True)
        assert released.claimed_by is None
        assert released.claim_expires_at is None

    @pytest.mark.asyncio
    async def test_pending_cannot_be_claimed(self, db_session: AsyncSession, make_detection):
        [created] = await recommendation_crud.create_recommendations(
            db_session, [build_recommendation(make_detection())]
        )

        assert not await recommendation_crud.claim_for_execution(db_session, created.id, "worker-a", utcnow(), 60)

    @pytest.mark.asyncio
    async def test_driver_errors_become_store_errors(self, db_session: AsyncSession, make_detection, monkeypatch):
        recommendation = await self._approved(db_session, make_detection)
        recommendation_id = recommendation.id

        async def locked(*args, **kwargs):
            raise OperationalError("UPDATE recommendations", {}, Exception("database is locked"))

        monkeypatch.setattr(db_session, "execute", locked)

        with pytest.raises(StoreError, match="claim recommendation"):
            await recommendation_crud.claim_for_execution(db_session, recommendation_id, "worker-a", utcnow(), 60)
        with pytest.raises(StoreError, match="release claim"):
            await recommendation_crud.release_claim(db_session, recommendation_id, "worker-a")


class TestAggregates:
    """Test summary and savings lookups."""

    @pytest.mark.asyncio
    async def test_status_aggregates(self, db_session: AsyncSession, make_detection):
        await recommendation_crud.create_recommendations(
            db_session,
            [
                build_recommendation(make_detection(potential_savings=100)),
                build_recommendation(make_detection(potential_savings=50)),
            ],
        )

        rows = await recommendation_crud.get_status_aggregates(db_session)

        assert rows == [("pending", "rds_instances", "idle_rds", 2, 150.0)]

    @pytest.mark.asyncio
    async def test_savings_by_detection_ids(self, db_session: AsyncSession, make_detection):
        detection = make_detection(potential_savings=75)
        await recommendation_crud.create_recommendations(db_session, [build_recommendation(detection)])

        savings = await recommendation_crud.get_savings_by_detection_ids(db_session, [detection.id, "other", None])

        assert savings == {detection.id: 75.0}
