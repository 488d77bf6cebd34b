"""
Survey Review Hub - Survey Import Job

Turns raw survey responses into review records:
1. Reads responses from a ResponseSource
2. Skips responses already imported (same survey id + response id)
3. Creates the record in the initial status with an ``imported`` audit entry
4. Hands it to an interviewer through the assignment policy
5. Optionally writes to the record store (or runs in dry-run mode)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from ..assignment import AssignmentPolicy
from ..audit_trail import AuditEntry
from ..clock import SystemClock
from ..errors import DuplicateRecordError, RecordStoreError
from ..record_store import RecordStore
from ..records import SurveyRecord
from ..workflow_engine import INITIAL_STATUS
from .sources import ResponseSource, SurveyResponse

logger = logging.getLogger(__name__)


class ImportMode(str, Enum):
    """Import execution modes."""
    DRY_RUN = "dry_run"     # Validate and report without writing
    REAL = "real"           # Actually write to the record store


@dataclass
class ImportStats:
    """Statistics for an import run."""
    total_processed: int = 0
    total_imported: int = 0
    total_skipped: int = 0
    total_errors: int = 0

    by_survey: Dict[str, int] = field(default_factory=dict)
    by_assignee: Dict[str, int] = field(default_factory=dict)

    errors: List[Dict[str, Any]] = field(default_factory=list)

    def record_import(self, survey_id: str, assigned_user_id: Optional[str]) -> None:
        self.total_processed += 1
        self.total_imported += 1
        self.by_survey[survey_id] = self.by_survey.get(survey_id, 0) + 1
        assignee = assigned_user_id or "unassigned"
        self.by_assignee[assignee] = self.by_assignee.get(assignee, 0) + 1

    def record_skip(self, reason: str, response_key: str) -> None:
        self.total_processed += 1
        self.total_skipped += 1
        logger.info(f"Skipped response {response_key}: {reason}")

    def record_error(self, error: str, response_key: str) -> None:
        self.total_processed += 1
        self.total_errors += 1
        self.errors.append({
            "response": response_key,
            "error": error,
            "timestamp": datetime.now(timezone.utc).isoformat()
        })
        logger.error(f"Error importing {response_key}: {error}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_processed": self.total_processed,
            "total_imported": self.total_imported,
            "total_skipped": self.total_skipped,
            "total_errors": self.total_errors,
            "by_survey": self.by_survey,
            "by_assignee": self.by_assignee,
            "errors": self.errors[:100],
            "error_count": len(self.errors)
        }


@dataclass
class ImportResult:
    """Result of an import job run."""
    mode: str
    source_name: str
    started_at: str
    completed_at: str
    duration_seconds: float
    stats: ImportStats
    sample_records: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "source_name": self.source_name,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "duration_seconds": self.duration_seconds,
            "stats": self.stats.to_dict(),
            "sample_records": self.sample_records[:20],
        }


def _response_key(response: SurveyResponse) -> str:
    return f"{response.survey_id}/{response.response_id}"


class SurveyImporter:
    """Creates one review record per new survey response."""

    def __init__(
        self,
        store: RecordStore,
        assignment_policy: AssignmentPolicy,
        clock: Optional[SystemClock] = None
    ):
        self.store = store
        self.assignment_policy = assignment_policy
        self.clock = clock or SystemClock()

    def build_record(
        self,
        response: SurveyResponse,
        actor: Optional[str] = None,
        preview: bool = False
    ) -> SurveyRecord:
        """
        New record in the initial status; nothing is written. With
        ``preview`` the owner is only previewed, so the assignment rotation
        does not move.
        """
        if not response.survey_id or not response.response_id:
            raise ValueError("survey_id and response_id are required")

        now = self.clock.now_iso()
        record = SurveyRecord(
            external_survey_id=response.survey_id,
            external_response_id=response.response_id,
            payload=dict(response.answers),
            status=INITIAL_STATUS,
            assigned_user_id=(
                self.assignment_policy.preview_owner(INITIAL_STATUS) if preview
                else self.assignment_policy.assign_owner(INITIAL_STATUS)
            ),
            created_at=now,
            last_modified_at=now,
        )
        record.append_audit_entry(
            AuditEntry.imported(response.survey_id, response.response_id, actor, now)
        )
        return record

    async def import_response(self, response: SurveyResponse, actor: Optional[str] = None) -> Optional[SurveyRecord]:
        """
        Import one response. Returns the stored record, or None when the
        response was imported before.
        """
        existing = await self.store.find_by_provenance(response.survey_id, response.response_id)
        if existing is not None:
            return None

        record = self.build_record(response, actor)
        try:
            stored = await self.store.insert(record)
        except DuplicateRecordError:
            # Lost a race with a concurrent import of the same response
            return None

        logger.info(
            "Imported response %s as record %s (assigned to %s)",
            _response_key(response), stored.id, stored.assigned_user_id
        )
        return stored


class ImportJob:
    """
    Batch import of a response source.

    Usage:
        source = JsonFileResponseSource("/path/to/export.json")
        job = ImportJob(source, importer)
        result = await job.run(mode=ImportMode.DRY_RUN)

        if result.stats.total_errors == 0:
            result = await job.run(mode=ImportMode.REAL)
    """

    def __init__(self, source: ResponseSource, importer: SurveyImporter, actor: Optional[str] = None):
        self.source = source
        self.importer = importer
        self.actor = actor

    async def run(
        self,
        mode: ImportMode = ImportMode.DRY_RUN,
        survey_filter: Optional[str] = None,
        limit: Optional[int] = None
    ) -> ImportResult:
        started_at = datetime.now(timezone.utc)
        stats = ImportStats()
        sample_records = []

        logger.info(f"Starting survey import in {mode.value} mode from {self.source.get_source_name()}")

        for response in self.source.iter_responses(survey_filter, limit):
            key = _response_key(response)
            try:
                if mode == ImportMode.REAL:
                    record = await self.importer.import_response(response, self.actor)
                else:
                    existing = await self.importer.store.find_by_provenance(response.survey_id, response.response_id)
                    record = None
                    if existing is None:
                        record = self.importer.build_record(response, self.actor, preview=True)

                if record is None:
                    stats.record_skip("Already imported", key)
                    continue

                if len(sample_records) < 20:
                    sample_records.append(record.to_summary())
                stats.record_import(response.survey_id, record.assigned_user_id)

            except (RecordStoreError, ValueError) as e:
                stats.record_error(str(e), key)

        completed_at = datetime.now(timezone.utc)
        duration = (completed_at - started_at).total_seconds()

        logger.info(
            f"Survey import completed: {stats.total_imported} imported, "
            f"{stats.total_skipped} skipped, {stats.total_errors} errors "
            f"in {duration:.2f}s"
        )

        return ImportResult(
            mode=mode.value,
            source_name=self.source.get_source_name(),
            started_at=started_at.isoformat(),
            completed_at=completed_at.isoformat(),
            duration_seconds=duration,
            stats=stats,
            sample_records=sample_records,
        )
