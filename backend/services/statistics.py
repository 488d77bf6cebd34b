"""
Survey Review Hub - Record Query & Statistics

Read-side aggregation over the record store for dashboards:
- status_counts / workflow_chart_data: records per status
- visible_records: what a principal may see
- user_statistics: role-specific counters ("Pending Review", "Finalized Today", ...)
- performance_metrics: processing time, completion rate, sampling split
- daily_activity: imported records per day

Aggregates are cached for ``stats_cache_ttl_seconds``.
StatisticsCacheInvalidator clears the cache when a status changes.
"""

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from dateutil import parser as date_parser

from .events import EventSink, StatusChanged
from .record_store import RecordStore
from .records import SurveyRecord
from .review_config import get_stuck_threshold_hours
from .roles import RoleResolver
from .workflow_engine import (
    WORKFLOW_STATES,
    WorkflowAction,
    WorkflowEngine,
    WorkflowRole,
    WorkflowStatus,
)

logger = logging.getLogger(__name__)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = date_parser.parse(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_same_day(value: Optional[str], day: datetime) -> bool:
    parsed = _parse_ts(value)
    return parsed is not None and parsed.date() == day.date()


class StatisticsService:
    """Dashboard statistics. All aggregate methods are async and cached."""

    def __init__(
        self,
        store: RecordStore,
        resolver: RoleResolver,
        cache_ttl_seconds: int = 300,
        now: Optional[Callable[[], datetime]] = None
    ):
        self.store = store
        self.resolver = resolver
        self.cache_ttl_seconds = cache_ttl_seconds
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._cache: Dict[str, tuple] = {}
        self._lock = threading.Lock()

    # ==================== CACHE ====================

    def _cached(self, key: str) -> Optional[Any]:
        if self.cache_ttl_seconds <= 0:
            return None
        with self._lock:
            hit = self._cache.get(key)
        if hit is None:
            return None
        stored_at, value = hit
        if time.monotonic() - stored_at > self.cache_ttl_seconds:
            return None
        return value

    def _remember(self, key: str, value: Any) -> Any:
        if self.cache_ttl_seconds > 0:
            with self._lock:
                self._cache[key] = (time.monotonic(), value)
        return value

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
        logger.debug("Statistics cache cleared")

    # ==================== COUNTS ====================

    async def status_counts(self) -> Dict[str, int]:
        cached = self._cached("status_counts")
        if cached is not None:
            return dict(cached)

        counts = {status: 0 for status in WorkflowEngine.get_all_statuses()}
        for record in await self.store.list_records():
            if record.status in counts:
                counts[record.status] += 1
        return dict(self._remember("status_counts", counts))

    async def workflow_chart_data(self) -> Dict[str, List]:
        """Labels, counts and colours of the non-empty statuses, for a pie chart."""
        counts = await self.status_counts()
        chart = {"labels": [], "data": [], "colors": []}
        for status, count in counts.items():
            if count <= 0:
                continue
            state = WORKFLOW_STATES[status]
            chart["labels"].append(state.label)
            chart["data"].append(count)
            chart["colors"].append(state.color)
        return chart

    async def visible_records(self, user_id: Optional[str], status: Optional[str] = None) -> List[SurveyRecord]:
        """Records ``user_id`` may view, optionally narrowed to one status."""
        if status is not None and not self.resolver.can_view(user_id, status):
            return []
        records = await self.store.list_records(status=status)
        return [r for r in records if self.resolver.can_view(user_id, r.status)]

    async def stuck_records(self) -> List[Dict[str, Any]]:
        """Non-terminal records that have sat in their status past the threshold."""
        now = self._now()
        stuck = []
        for record in await self.store.list_records():
            if record.is_terminal:
                continue
            since = _parse_ts(record.last_modified_at or record.created_at)
            if since is None:
                continue
            hours = (now - since).total_seconds() / 3600
            threshold = get_stuck_threshold_hours(record.status)
            if hours >= threshold:
                stuck.append({
                    "record_id": record.id,
                    "status": record.status,
                    "assigned_user_id": record.assigned_user_id,
                    "hours_in_status": round(hours, 1),
                    "threshold_hours": threshold,
                })
        stuck.sort(key=lambda s: s["hours_in_status"], reverse=True)
        return stuck

    # ==================== PER-ROLE DASHBOARD ====================

    async def user_statistics(self, user_id: Optional[str]) -> Dict[str, Any]:
        if self.resolver.is_administrator(user_id):
            return await self._admin_stats()

        role = self.resolver.role_of(user_id)
        records = await self.store.list_records()
        today = self._now()

        if role == WorkflowRole.INTERVIEWER.value:
            return self._interviewer_stats(user_id, records, today)
        if role == WorkflowRole.SUPERVISOR.value:
            return self._supervisor_stats(user_id, records, today)
        if role == WorkflowRole.EXAMINER.value:
            return self._examiner_stats(user_id, records, today)

        return {"Total Records": len(records)}

    @staticmethod
    def _owned_or_unassigned(record: SurveyRecord, user_id: str) -> bool:
        return record.assigned_user_id in (user_id, None)

    @staticmethod
    def _acted_today(record: SurveyRecord, user_id: str, action: str, today: datetime) -> bool:
        return any(
            entry.actor_user_id == user_id
            and entry.action == action
            and _is_same_day(entry.timestamp, today)
            for entry in record.audit_trail
        )

    def _interviewer_stats(self, user_id: str, records: List[SurveyRecord], today: datetime) -> Dict[str, int]:
        return {
            "Pending Review": sum(
                1 for r in records
                if r.status == WorkflowStatus.PENDING_A.value and self._owned_or_unassigned(r, user_id)
            ),
            "Rejected Items": sum(
                1 for r in records
                if r.status == WorkflowStatus.REJECTED_BY_B.value and r.assigned_user_id == user_id
            ),
            "Completed Today": sum(
                1 for r in records
                if self._acted_today(r, user_id, WorkflowAction.APPROVE_TO_SUPERVISOR.value, today)
            ),
            "Total Assigned": sum(
                1 for r in records
                if r.status in (WorkflowStatus.PENDING_A.value, WorkflowStatus.REJECTED_BY_B.value)
                and r.assigned_user_id == user_id
            ),
        }

    def _supervisor_stats(self, user_id: str, records: List[SurveyRecord], today: datetime) -> Dict[str, int]:
        sampled_today = [
            r for r in records
            if self._acted_today(r, user_id, WorkflowAction.APPLY_SAMPLING_GATE.value, today)
        ]
        return {
            "Pending Approval": sum(
                1 for r in records
                if r.status == WorkflowStatus.PENDING_B.value and self._owned_or_unassigned(r, user_id)
            ),
            "Returned by Examiner": sum(
                1 for r in records
                if r.status == WorkflowStatus.REJECTED_BY_C.value and self._owned_or_unassigned(r, user_id)
            ),
            "Sampled Today": len(sampled_today),
            "Finalized by Sampling Today": sum(
                1 for r in sampled_today if r.status == WorkflowStatus.FINALIZED_BY_SAMPLING.value
            ),
        }

    def _examiner_stats(self, user_id: str, records: List[SurveyRecord], today: datetime) -> Dict[str, int]:
        return {
            "Final Review": sum(
                1 for r in records
                if r.status == WorkflowStatus.PENDING_C.value and self._owned_or_unassigned(r, user_id)
            ),
            "Finalized Today": sum(
                1 for r in records
                if self._acted_today(r, user_id, WorkflowAction.FINAL_APPROVAL.value, today)
            ),
            "Rejected Today": sum(
                1 for r in records
                if self._acted_today(r, user_id, WorkflowAction.REJECT_TO_SUPERVISOR.value, today)
            ),
        }

    async def _admin_stats(self) -> Dict[str, Any]:
        counts = await self.status_counts()
        roles = self.resolver.role_statistics()
        return {
            "Total Records": sum(counts.values()),
            "Active Users": sum(r["user_count"] for r in roles.values()),
            "Pending A": counts[WorkflowStatus.PENDING_A.value],
            "Pending B": counts[WorkflowStatus.PENDING_B.value],
            "Pending C": counts[WorkflowStatus.PENDING_C.value],
            "Rejected": counts[WorkflowStatus.REJECTED_BY_B.value] + counts[WorkflowStatus.REJECTED_BY_C.value],
            "Finalized": counts[WorkflowStatus.FINALIZED.value] + counts[WorkflowStatus.FINALIZED_BY_SAMPLING.value],
        }

    # ==================== PERFORMANCE ====================

    async def performance_metrics(self) -> Dict[str, Any]:
        cached = self._cached("performance_metrics")
        if cached is not None:
            return cached

        records = await self.store.list_records()
        total = len(records)
        completed = [r for r in records if r.completed_at]

        durations = []
        for record in completed:
            start, end = _parse_ts(record.created_at), _parse_ts(record.completed_at)
            if start and end:
                durations.append((end - start).total_seconds() / 3600)

        sampled = finalized_by_sampling = 0
        for record in records:
            for entry in record.audit_trail:
                if entry.action != WorkflowAction.APPLY_SAMPLING_GATE.value:
                    continue
                sampled += 1
                if entry.new_value == WorkflowStatus.FINALIZED_BY_SAMPLING.value:
                    finalized_by_sampling += 1

        metrics = {
            "total_records": total,
            "completed_records": len(completed),
            "completion_rate": round(len(completed) / total * 100, 1) if total else 0.0,
            "avg_processing_hours": round(sum(durations) / len(durations), 2) if durations else None,
            "sampling": {
                "total_sampled": sampled,
                "finalized_by_sampling": finalized_by_sampling,
                "sent_to_examiner": sampled - finalized_by_sampling,
                "finalized_rate": round(finalized_by_sampling / sampled * 100, 1) if sampled else 0.0,
            },
        }
        return self._remember("performance_metrics", metrics)

    async def daily_activity(self, days: int = 30) -> Dict[str, List]:
        """Imported records per day over the last ``days`` days, zero-filled."""
        cache_key = f"daily_activity:{days}"
        cached = self._cached(cache_key)
        if cached is not None:
            return cached

        today = self._now().date()
        buckets = {(today - timedelta(days=offset)).isoformat(): 0 for offset in range(days - 1, -1, -1)}
        for record in await self.store.list_records():
            created = _parse_ts(record.created_at)
            if created is None:
                continue
            key = created.date().isoformat()
            if key in buckets:
                buckets[key] += 1

        activity = {"labels": list(buckets.keys()), "data": list(buckets.values())}
        return self._remember(cache_key, activity)


class StatisticsCacheInvalidator(EventSink):
    """Event sink that drops cached aggregates after every status change."""

    def __init__(self, statistics: StatisticsService):
        self.statistics = statistics

    def emit(self, event: StatusChanged) -> None:
        self.statistics.clear_cache()
