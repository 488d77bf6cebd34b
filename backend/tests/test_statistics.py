"""
Tests for dashboard statistics.
"""
import pytest

from services.events import StatusChanged
from services.statistics import StatisticsCacheInvalidator, StatisticsService


@pytest.fixture
def stats(store, resolver, clock):
    return StatisticsService(store, resolver, cache_ttl_seconds=0, now=clock.now)


class TestStatusCounts:
    """Counts per status and chart data."""

    @pytest.mark.asyncio
    async def test_zero_filled(self, stats):
        counts = await stats.status_counts()
        assert len(counts) == 7
        assert all(v == 0 for v in counts.values())

    @pytest.mark.asyncio
    async def test_counts_and_chart(self, stats, seed):
        await seed(status="pending_a")
        await seed(status="pending_a")
        await seed(status="finalized")

        counts = await stats.status_counts()
        assert counts["pending_a"] == 2
        assert counts["finalized"] == 1
        assert counts["pending_b"] == 0

        chart = await stats.workflow_chart_data()
        assert chart["labels"] == ["Pending Interviewer Review", "Finalized"]
        assert chart["data"] == [2, 1]
        assert chart["colors"] == ["#ff9800", "#4caf50"]


class TestVisibleRecords:
    """Per-role record visibility."""

    @pytest.mark.asyncio
    async def test_interviewer_sees_own_queues(self, stats, seed):
        await seed(status="pending_a")
        await seed(status="rejected_by_b")
        await seed(status="pending_b")
        await seed(status="finalized")

        visible = await stats.visible_records("int1")
        assert sorted(r.status for r in visible) == ["pending_a", "rejected_by_b"]
        assert len(await stats.visible_records("admin")) == 4
        assert await stats.visible_records("guest") == []

    @pytest.mark.asyncio
    async def test_status_filter_outside_role(self, stats, seed):
        await seed(status="pending_b")
        assert await stats.visible_records("int1", status="pending_b") == []
        assert len(await stats.visible_records("sup1", status="pending_b")) == 1


class TestUserStatistics:
    """Role dashboards."""

    @pytest.mark.asyncio
    async def test_interviewer(self, stats, seed, service):
        r1 = await seed(status="pending_a", assigned_user_id="int1")
        await seed(status="pending_a")
        await seed(status="rejected_by_b", assigned_user_id="int1")
        await seed(status="pending_a", assigned_user_id="int2")
        await service.execute(r1.id, "approve_to_supervisor", "int1")

        s = await stats.user_statistics("int1")
        assert s == {
            "Pending Review": 1,
            "Rejected Items": 1,
            "Completed Today": 1,
            "Total Assigned": 1,
        }

    @pytest.mark.asyncio
    async def test_supervisor(self, stats, seed, make_service):
        service = make_service(draws=[10, 90])
        a = await seed(status="pending_b", assigned_user_id="sup1")
        b = await seed(status="pending_b", assigned_user_id="sup1")
        await seed(status="rejected_by_c", assigned_user_id="sup1")
        await service.execute(a.id, "apply_sampling_gate", "sup1")
        await service.execute(b.id, "apply_sampling_gate", "sup1")

        s = await stats.user_statistics("sup1")
        assert s["Pending Approval"] == 0
        assert s["Returned by Examiner"] == 1
        assert s["Sampled Today"] == 2
        assert s["Finalized by Sampling Today"] == 1

    @pytest.mark.asyncio
    async def test_examiner(self, stats, seed, service):
        a = await seed(status="pending_c", assigned_user_id="exa1")
        b = await seed(status="pending_c", assigned_user_id="exa1")
        await service.execute(a.id, "final_approval", "exa1")
        await service.execute(b.id, "reject_to_supervisor", "exa1", "district mismatch")

        s = await stats.user_statistics("exa1")
        assert s == {"Final Review": 0, "Finalized Today": 1, "Rejected Today": 1}

    @pytest.mark.asyncio
    async def test_administrator(self, stats, seed):
        await seed(status="pending_a")
        await seed(status="rejected_by_c")
        await seed(status="finalized_by_sampling")

        s = await stats.user_statistics("admin")
        assert s["Total Records"] == 3
        assert s["Active Users"] == 4
        assert s["Rejected"] == 1
        assert s["Finalized"] == 1

    @pytest.mark.asyncio
    async def test_no_role(self, stats, seed):
        await seed()
        assert await stats.user_statistics("guest") == {"Total Records": 1}


class TestPerformanceMetrics:
    """Throughput and sampling split."""

    @pytest.mark.asyncio
    async def test_metrics(self, stats, seed, make_service, clock):
        service = make_service(draws=[10, 95])
        a = await seed(status="pending_b")
        b = await seed(status="pending_b")
        await seed(status="pending_a")
        await seed(status="pending_a")

        clock.advance(hours=4)
        await service.execute(a.id, "apply_sampling_gate", "sup1")
        await service.execute(b.id, "apply_sampling_gate", "sup1")

        m = await stats.performance_metrics()
        assert m["total_records"] == 4
        assert m["completed_records"] == 1
        assert m["completion_rate"] == 25.0
        assert m["avg_processing_hours"] == 4.0
        assert m["sampling"] == {
            "total_sampled": 2,
            "finalized_by_sampling": 1,
            "sent_to_examiner": 1,
            "finalized_rate": 50.0,
        }

    @pytest.mark.asyncio
    async def test_empty_store(self, stats):
        m = await stats.performance_metrics()
        assert m["completion_rate"] == 0.0
        assert m["avg_processing_hours"] is None


class TestDailyActivityAndStuck:
    """Time-based views."""

    @pytest.mark.asyncio
    async def test_daily_activity_zero_filled(self, stats, seed, clock):
        await seed()
        await seed()
        activity = await stats.daily_activity(30)
        assert len(activity["labels"]) == 30
        assert activity["labels"][-1] == clock.now().date().isoformat()
        assert activity["data"][-1] == 2
        assert sum(activity["data"]) == 2

    @pytest.mark.asyncio
    async def test_stuck_records(self, stats, seed, clock):
        waiting_b = await seed(status="pending_b")
        await seed(status="pending_a")
        await seed(status="finalized")
        clock.advance(hours=25)

        stuck = await stats.stuck_records()
        assert [s["record_id"] for s in stuck] == [waiting_b.id]
        assert stuck[0]["threshold_hours"] == 24


class TestStatisticsCache:
    """TTL cache and event-driven invalidation."""

    @pytest.mark.asyncio
    async def test_cached_until_invalidated(self, store, resolver, clock, seed):
        stats = StatisticsService(store, resolver, cache_ttl_seconds=300, now=clock.now)
        await seed()
        assert (await stats.status_counts())["pending_a"] == 1

        await seed()
        assert (await stats.status_counts())["pending_a"] == 1

        StatisticsCacheInvalidator(stats).emit(StatusChanged("r", "pending_a", "pending_b", "int1"))
        assert (await stats.status_counts())["pending_a"] == 2

    @pytest.mark.asyncio
    async def test_cached_counts_are_copies(self, store, resolver, clock):
        stats = StatisticsService(store, resolver, cache_ttl_seconds=300, now=clock.now)
        counts = await stats.status_counts()
        counts["pending_a"] = 99
        assert (await stats.status_counts())["pending_a"] == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
