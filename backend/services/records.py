"""
Survey Review Hub - Survey Record Model

A survey record is one imported response moving through the review pipeline.
Stored as a single document (payload, status, assignment and audit trail
together) so one versioned write covers a whole transition.
"""

import copy
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .audit_trail import AuditEntry
from .workflow_engine import WorkflowEngine, INITIAL_STATUS


@dataclass
class SurveyRecord:
    """A unit of work moving through the review pipeline."""
    external_survey_id: str
    external_response_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    status: str = INITIAL_STATUS
    assigned_user_id: Optional[str] = None
    created_at: Optional[str] = None
    last_modified_at: Optional[str] = None
    completed_at: Optional[str] = None
    audit_trail: List[AuditEntry] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    # Incremented by the store on every successful save
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return WorkflowEngine.is_terminal(self.status)

    @property
    def title(self) -> str:
        return f"Survey {self.external_survey_id} - Response {self.external_response_id}"

    def append_audit_entry(self, entry: AuditEntry) -> AuditEntry:
        """Append ``entry`` at the next sequence position and return it."""
        sequenced = entry.with_sequence(len(self.audit_trail))
        self.audit_trail.append(sequenced)
        return sequenced

    def copy(self) -> "SurveyRecord":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "external_survey_id": self.external_survey_id,
            "external_response_id": self.external_response_id,
            "payload": copy.deepcopy(self.payload),
            "status": self.status,
            "assigned_user_id": self.assigned_user_id,
            "created_at": self.created_at,
            "last_modified_at": self.last_modified_at,
            "completed_at": self.completed_at,
            "audit_trail": [entry.to_dict() for entry in self.audit_trail],
            "version": self.version,
        }

    def to_summary(self) -> Dict[str, Any]:
        """List-view fields (no payload, no audit trail)."""
        return {
            "id": self.id,
            "title": self.title,
            "external_survey_id": self.external_survey_id,
            "external_response_id": self.external_response_id,
            "status": self.status,
            "status_label": WorkflowEngine.get_status_label(self.status),
            "assigned_user_id": self.assigned_user_id,
            "created_at": self.created_at,
            "last_modified_at": self.last_modified_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SurveyRecord":
        return cls(
            id=data["id"],
            external_survey_id=data.get("external_survey_id", ""),
            external_response_id=data.get("external_response_id", ""),
            payload=copy.deepcopy(data.get("payload") or {}),
            status=data.get("status") or INITIAL_STATUS,
            assigned_user_id=data.get("assigned_user_id"),
            created_at=data.get("created_at"),
            last_modified_at=data.get("last_modified_at"),
            completed_at=data.get("completed_at"),
            audit_trail=[AuditEntry.from_dict(e) for e in data.get("audit_trail") or []],
            version=data.get("version", 0),
        )
