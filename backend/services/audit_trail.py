"""
Survey Review Hub - Audit Trail

Append-only, ordered log of events attached to a survey record.

Entries are embedded in the record document, so a status change and its audit
entry are persisted by the same versioned save. Ordering is by ``sequence``
(append position), never by timestamp, because several entries may share a
timestamp at coarse resolution.

No update or delete is exposed; trimming old entries is an out-of-band
administrative concern.
"""

import copy
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .errors import RecordConflictError, RecordNotFoundError
from .workflow_engine import WorkflowEngine, WORKFLOW_TRANSITIONS, INITIAL_STATUS

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    """Non-transition audit actions. Transitions use their action name."""
    IMPORTED = "imported"
    DATA_EDIT = "data_edit"
    USER_ASSIGNMENT = "user_assignment"


ACTION_LABELS = {
    AuditAction.IMPORTED.value: "Data Imported",
    AuditAction.DATA_EDIT.value: "Data Edited",
    AuditAction.USER_ASSIGNMENT.value: "User Assigned",
}
ACTION_LABELS.update({action: t.label for action, t in WORKFLOW_TRANSITIONS.items()})


@dataclass(frozen=True)
class AuditEntry:
    """Immutable record of one event on a survey record."""
    timestamp: str
    actor_user_id: Optional[str]
    action: str
    old_value: Any = None
    new_value: Any = None
    notes: str = ""
    sequence: int = -1

    # Factories

    @classmethod
    def status_change(
        cls,
        action: str,
        old_status: str,
        new_status: str,
        actor_user_id: Optional[str],
        timestamp: str,
        notes: str = ""
    ) -> "AuditEntry":
        return cls(timestamp, actor_user_id, action, old_status, new_status, notes or "")

    @classmethod
    def data_edit(
        cls,
        field_name: str,
        old_value: Any,
        new_value: Any,
        actor_user_id: Optional[str],
        timestamp: str,
        notes: str = ""
    ) -> "AuditEntry":
        return cls(
            timestamp,
            actor_user_id,
            AuditAction.DATA_EDIT.value,
            {"field": field_name, "value": copy.deepcopy(old_value)},
            {"field": field_name, "value": copy.deepcopy(new_value)},
            notes or "",
        )

    @classmethod
    def user_assignment(
        cls,
        old_user_id: Optional[str],
        new_user_id: Optional[str],
        actor_user_id: Optional[str],
        timestamp: str,
        notes: str = ""
    ) -> "AuditEntry":
        return cls(timestamp, actor_user_id, AuditAction.USER_ASSIGNMENT.value, old_user_id, new_user_id, notes or "")

    @classmethod
    def imported(
        cls,
        survey_id: str,
        response_id: str,
        actor_user_id: Optional[str],
        timestamp: str,
        notes: str = "Data imported from survey source"
    ) -> "AuditEntry":
        return cls(
            timestamp,
            actor_user_id,
            AuditAction.IMPORTED.value,
            None,
            {"survey_id": survey_id, "response_id": response_id},
            notes,
        )

    # Serialization

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "timestamp": self.timestamp,
            "actor_user_id": self.actor_user_id,
            "action": self.action,
            "old_value": copy.deepcopy(self.old_value),
            "new_value": copy.deepcopy(self.new_value),
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEntry":
        return cls(
            timestamp=data.get("timestamp", ""),
            actor_user_id=data.get("actor_user_id"),
            action=data.get("action", ""),
            old_value=data.get("old_value"),
            new_value=data.get("new_value"),
            notes=data.get("notes") or "",
            sequence=data.get("sequence", -1),
        )

    def with_sequence(self, sequence: int) -> "AuditEntry":
        return replace(self, sequence=sequence)

    # Display

    @property
    def is_status_change(self) -> bool:
        return self.action in WORKFLOW_TRANSITIONS

    def get_formatted_action(self) -> str:
        return ACTION_LABELS.get(self.action, self.action.replace("_", " ").capitalize())

    def get_action_description(self) -> str:
        if self.is_status_change:
            return 'Status changed from "{}" to "{}"'.format(
                WorkflowEngine.get_status_label(self.old_value),
                WorkflowEngine.get_status_label(self.new_value),
            )
        if self.action == AuditAction.USER_ASSIGNMENT.value:
            return 'Assignment changed from "{}" to "{}"'.format(
                self.old_value or "Unassigned",
                self.new_value or "Unassigned",
            )
        if self.action == AuditAction.DATA_EDIT.value:
            field_name = (self.new_value or {}).get("field", "")
            return f'Survey data field "{field_name}" was modified'
        if self.action == AuditAction.IMPORTED.value:
            return "Data imported from survey source"
        return self.notes or "Action performed"

    def get_formatted_display(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "timestamp": self.timestamp,
            "actor_user_id": self.actor_user_id,
            "action": self.get_formatted_action(),
            "description": self.get_action_description(),
            "notes": self.notes,
        }


# =============================================================================
# AUDIT TRAIL SERVICE
# =============================================================================

class AuditTrail:
    """
    Append/list access to the audit trail of stored records.

    Workflow transitions do not go through ``append``; the review service
    writes their entries in the same save as the status change.
    """

    def __init__(self, store, max_conflict_retries: int = 3):
        self.store = store
        self.max_conflict_retries = max_conflict_retries

    async def append(self, record_id: str, entry: AuditEntry) -> AuditEntry:
        """
        Append ``entry`` to the record's trail. Besides storage outages it
        fails for a record that does not exist, and when every attempt loses
        a version race; appending never overwrites a concurrent write.

        Raises:
            RecordNotFoundError: record does not exist
            StorageUnavailableError: store unreachable
            RecordConflictError: retries exhausted under contention
        """
        for attempt in range(self.max_conflict_retries + 1):
            record = await self.store.get(record_id)
            if record is None:
                raise RecordNotFoundError(record_id)

            expected_version = record.version
            appended = record.append_audit_entry(entry)
            try:
                await self.store.save(record, expected_version=expected_version)
                return appended
            except RecordConflictError:
                logger.debug("Audit append conflict on %s (attempt %d)", record_id, attempt + 1)

        raise RecordConflictError(record_id, None)

    async def list(self, record_id: str) -> Tuple[AuditEntry, ...]:
        """Entries in append order. Raises RecordNotFoundError if absent."""
        record = await self.store.get(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return tuple(sorted(record.audit_trail, key=lambda e: e.sequence))


def calculate_time_in_status(record, status: str, now: Optional[datetime] = None) -> Optional[float]:
    """Seconds a record spent in ``status`` during its most recent visit."""
    # The initial status is entered on import, not through a transition
    enter_time = record.created_at if status == INITIAL_STATUS else None
    exit_time = None

    for entry in record.audit_trail:
        if not entry.is_status_change:
            continue
        if entry.new_value == status:
            enter_time = entry.timestamp
            exit_time = None
        elif entry.old_value == status and enter_time:
            exit_time = entry.timestamp

    if not enter_time:
        return None

    enter_dt = datetime.fromisoformat(enter_time)
    if exit_time:
        exit_dt = datetime.fromisoformat(exit_time)
    else:
        exit_dt = now or datetime.now(timezone.utc)
    return (exit_dt - enter_dt).total_seconds()
