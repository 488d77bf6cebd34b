"""
Survey Review Hub - Error Types

Two layers:
- Store exceptions raised by record store implementations
  (conflict, duplicate, unavailable).
- WorkflowError values returned by the review service. The review service
  never raises for a domain failure; it returns a typed result instead.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any


# =============================================================================
# RECORD STORE EXCEPTIONS
# =============================================================================

class RecordStoreError(Exception):
    """Base class for record store failures."""


class RecordNotFoundError(RecordStoreError):
    """Record id does not exist in the store."""

    def __init__(self, record_id: str):
        super().__init__(f"Record {record_id} not found")
        self.record_id = record_id


class RecordConflictError(RecordStoreError):
    """Stored version did not match the expected version."""

    def __init__(self, record_id: str, expected_version: Optional[int], actual_version: Optional[int] = None):
        super().__init__(
            f"Version conflict on record {record_id}: expected {expected_version}, found {actual_version}"
        )
        self.record_id = record_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class DuplicateRecordError(RecordStoreError):
    """A record with the same id or provenance already exists."""


class StorageUnavailableError(RecordStoreError):
    """The backing store could not be reached or timed out."""


# =============================================================================
# WORKFLOW ERROR VALUES
# =============================================================================

class WorkflowErrorCode(str, Enum):
    RECORD_NOT_FOUND = "record_not_found"
    UNKNOWN_ACTION = "unknown_action"
    INVALID_TRANSITION = "invalid_transition"
    FORBIDDEN = "forbidden"
    NOTE_REQUIRED = "note_required"
    CONFLICT = "conflict"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    VALIDATION_ERROR = "validation_error"


# Client errors never mutate state; the caller may correct and resubmit.
CLIENT_ERROR_CODES = frozenset({
    WorkflowErrorCode.RECORD_NOT_FOUND,
    WorkflowErrorCode.UNKNOWN_ACTION,
    WorkflowErrorCode.INVALID_TRANSITION,
    WorkflowErrorCode.FORBIDDEN,
    WorkflowErrorCode.NOTE_REQUIRED,
    WorkflowErrorCode.VALIDATION_ERROR,
})


@dataclass(frozen=True)
class WorkflowError:
    """A typed failure returned by the review service."""
    code: WorkflowErrorCode
    message: str
    record_id: Optional[str] = None
    current_status: Optional[str] = None
    available_actions: List[str] = field(default_factory=list)

    @property
    def is_client_error(self) -> bool:
        return self.code in CLIENT_ERROR_CODES

    @property
    def is_retryable(self) -> bool:
        return self.code == WorkflowErrorCode.CONFLICT

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
        }
        if self.record_id is not None:
            data["record_id"] = self.record_id
        if self.code == WorkflowErrorCode.INVALID_TRANSITION:
            data["current_status"] = self.current_status
            data["available_actions"] = list(self.available_actions)
        return data

    # Constructors

    @classmethod
    def record_not_found(cls, record_id: str) -> "WorkflowError":
        return cls(WorkflowErrorCode.RECORD_NOT_FOUND, f"Record {record_id} not found", record_id=record_id)

    @classmethod
    def unknown_action(cls, record_id: str, action: str) -> "WorkflowError":
        return cls(WorkflowErrorCode.UNKNOWN_ACTION, f"Unknown action '{action}'", record_id=record_id)

    @classmethod
    def invalid_transition(
        cls,
        record_id: str,
        action: str,
        current_status: str,
        available_actions: List[str]
    ) -> "WorkflowError":
        return cls(
            WorkflowErrorCode.INVALID_TRANSITION,
            f"Action '{action}' is not valid for status '{current_status}'",
            record_id=record_id,
            current_status=current_status,
            available_actions=list(available_actions),
        )

    @classmethod
    def forbidden(cls, record_id: Optional[str]) -> "WorkflowError":
        # Generic on purpose: no role names in the message
        return cls(WorkflowErrorCode.FORBIDDEN, "You are not permitted to perform this action", record_id=record_id)

    @classmethod
    def note_required(cls, record_id: str, action: str) -> "WorkflowError":
        return cls(WorkflowErrorCode.NOTE_REQUIRED, f"A note is required for '{action}'", record_id=record_id)

    @classmethod
    def conflict(cls, record_id: str) -> "WorkflowError":
        return cls(
            WorkflowErrorCode.CONFLICT,
            f"Record {record_id} was modified concurrently; retry the request",
            record_id=record_id,
        )

    @classmethod
    def storage_unavailable(cls, record_id: Optional[str], detail: str = "") -> "WorkflowError":
        message = "Record storage is unavailable"
        if detail:
            message = f"{message}: {detail}"
        return cls(WorkflowErrorCode.STORAGE_UNAVAILABLE, message, record_id=record_id)

    @classmethod
    def validation_error(cls, record_id: Optional[str], message: str) -> "WorkflowError":
        return cls(WorkflowErrorCode.VALIDATION_ERROR, message, record_id=record_id)
