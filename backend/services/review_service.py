"""
Survey Review Hub - Review Service (Transition Engine)

Executes workflow transitions and other record mutations against the record
store.

execute(record_id, action, actor, notes) runs, in order:
1. Load the record                      -> record_not_found
2. Resolve the action                   -> unknown_action
3. Check the current status             -> invalid_transition
4. Check the actor's role               -> forbidden
5. Check the note requirement           -> note_required
6. Compute the next status (sampling gate draws here)
7-8. Save status, timestamps, owner and ONE audit entry with a single
     version-checked write
9. Emit StatusChanged
10. Return the outcome

A version conflict at step 7 repeats steps 1-6 against the reloaded record,
up to ``max_conflict_retries`` times, then gives ``conflict``. No failure ever
leaves a status change without its audit entry or the reverse.

Every public method returns a TransitionResult; domain failures are values.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .assignment import AssignmentPolicy
from .audit_trail import AuditEntry
from .clock import SystemClock
from .errors import (
    RecordConflictError,
    RecordNotFoundError,
    StorageUnavailableError,
    WorkflowError,
    WorkflowErrorCode,
)
from .events import EventSink, NullEventSink, StatusChanged
from .record_store import RecordStore
from .records import SurveyRecord
from .review_config import ReviewConfig
from .roles import RoleResolver
from .sampling import RandomSource, SamplingDecision, SamplingGate, SystemRandomSource
from .workflow_engine import WorkflowEngine, _key

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security")


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class TransitionResult:
    """Either a value or a WorkflowError, never both."""
    value: Any = None
    error: Optional[WorkflowError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any = None) -> "TransitionResult":
        return cls(value=value)

    @classmethod
    def failure(cls, error: WorkflowError) -> "TransitionResult":
        return cls(error=error)


@dataclass
class TransitionOutcome:
    record_id: str
    action: str
    old_status: str
    new_status: str
    assigned_user_id: Optional[str]
    available_actions: List[str]
    audit_entry: AuditEntry
    record: SurveyRecord
    sampling: Optional[SamplingDecision] = None
    # Set when the event sink raised; the transition itself is committed
    event_delivery_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "record_id": self.record_id,
            "action": self.action,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "new_status_label": WorkflowEngine.get_status_label(self.new_status),
            "assigned_user_id": self.assigned_user_id,
            "available_actions": list(self.available_actions),
            "audit_entry": self.audit_entry.to_dict(),
            "version": self.record.version,
        }
        if self.sampling is not None:
            data["sampling"] = self.sampling.to_dict()
        if self.event_delivery_error:
            data["event_delivery_error"] = self.event_delivery_error
        return data


@dataclass
class _TransitionPlan:
    action: str
    old_status: str
    new_status: str
    audit_entry: AuditEntry
    sampling: Optional[SamplingDecision] = None


@dataclass
class _EditPlan:
    entries: List[AuditEntry] = field(default_factory=list)


# =============================================================================
# REVIEW SERVICE
# =============================================================================

class ReviewService:
    """
    Transition engine plus the other gated record operations
    (payload edits, manual reassignment, deletion).
    """

    def __init__(
        self,
        store: RecordStore,
        resolver: RoleResolver,
        assignment_policy: AssignmentPolicy,
        config: Optional[ReviewConfig] = None,
        event_sink: Optional[EventSink] = None,
        random_source: Optional[RandomSource] = None,
        clock: Optional[SystemClock] = None
    ):
        self.store = store
        self.resolver = resolver
        self.assignment_policy = assignment_policy
        self.config = config or ReviewConfig()
        self.event_sink = event_sink or NullEventSink()
        self.sampling_gate = SamplingGate(random_source or SystemRandomSource())
        self.clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Commit loop
    # -------------------------------------------------------------------------

    async def _commit(self, record_id: str, prepare: Callable[[SurveyRecord], Any]) -> TransitionResult:
        """
        Load the record, let ``prepare`` validate and mutate it, then save with
        a version check. ``prepare`` returns a WorkflowError to abort, None for
        a no-op (nothing saved), or a plan object that is returned with the
        saved record.
        """
        attempts = self.config.max_conflict_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                record = await self.store.get(record_id)
            except StorageUnavailableError as e:
                return TransitionResult.failure(WorkflowError.storage_unavailable(record_id, str(e)))

            if record is None:
                return TransitionResult.failure(WorkflowError.record_not_found(record_id))

            expected_version = record.version
            plan = prepare(record)
            if isinstance(plan, WorkflowError):
                return TransitionResult.failure(plan)
            if plan is None:
                return TransitionResult.success((record, None))

            try:
                saved = await self.store.save(record, expected_version=expected_version)
            except RecordConflictError:
                logger.info(
                    "Concurrent modification of record %s (attempt %d/%d), re-validating",
                    record_id, attempt, attempts
                )
                continue
            except RecordNotFoundError:
                return TransitionResult.failure(WorkflowError.record_not_found(record_id))
            except StorageUnavailableError as e:
                logger.error("Storage unavailable while saving record %s: %s", record_id, e)
                return TransitionResult.failure(WorkflowError.storage_unavailable(record_id, str(e)))

            return TransitionResult.success((saved, plan))

        logger.warning("Giving up on record %s after %d conflicting attempts", record_id, attempts)
        return TransitionResult.failure(WorkflowError.conflict(record_id))

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _plan_transition(
        self,
        record: SurveyRecord,
        action: str,
        actor: Optional[str],
        notes: str
    ):
        transition = WorkflowEngine.get_transition(action)
        if transition is None:
            return WorkflowError.unknown_action(record.id, action)

        if record.status not in transition.from_states:
            logger.warning(
                "Invalid review transition: record=%s, current=%s, action=%s",
                record.id, record.status, action
            )
            return WorkflowError.invalid_transition(
                record.id, action, record.status, WorkflowEngine.available_actions(record.status)
            )

        if not self.resolver.can_transition(actor, transition.required_role):
            security_logger.warning(
                "Forbidden transition attempt: actor=%s, record=%s, status=%s, action=%s",
                actor, record.id, record.status, action
            )
            return WorkflowError.forbidden(record.id)

        if WorkflowEngine.requires_note(action, self.config.require_note_on_rejection) and not notes.strip():
            return WorkflowError.note_required(record.id, action)

        sampling = None
        audit_notes = notes
        if transition.is_sampling:
            sampling = self.sampling_gate.decide(self.config.sampling_percentage)
            new_status = sampling.outcome
            audit_notes = " | ".join(n for n in (notes, sampling.to_notes()) if n.strip())
        else:
            new_status = transition.to_state

        now = self.clock.now_iso()
        old_status = record.status

        record.status = new_status
        record.last_modified_at = now
        if WorkflowEngine.is_terminal(new_status):
            record.completed_at = now
        # A conflict retry plans again and takes the next rotation slot
        record.assigned_user_id = self.assignment_policy.assign_owner(new_status)

        entry = record.append_audit_entry(
            AuditEntry.status_change(action, old_status, new_status, actor, now, audit_notes)
        )
        return _TransitionPlan(action, old_status, new_status, entry, sampling)

    async def execute(
        self,
        record_id: str,
        action: str,
        actor: Optional[str],
        notes: Optional[str] = None
    ) -> TransitionResult:
        """Run one named transition. Value on success: TransitionOutcome."""
        action_key = _key(action)
        notes_text = notes or ""

        result = await self._commit(
            record_id,
            lambda record: self._plan_transition(record, action_key, actor, notes_text),
        )
        if not result.ok:
            return result

        saved, plan = result.value
        outcome = TransitionOutcome(
            record_id=saved.id,
            action=plan.action,
            old_status=plan.old_status,
            new_status=plan.new_status,
            assigned_user_id=saved.assigned_user_id,
            available_actions=WorkflowEngine.available_actions(plan.new_status),
            audit_entry=plan.audit_entry,
            record=saved,
            sampling=plan.sampling,
        )

        logger.info(
            "Review transition: record=%s, %s -> %s (action=%s, actor=%s, assigned=%s)",
            saved.id, plan.old_status, plan.new_status, plan.action, actor, saved.assigned_user_id
        )

        outcome.event_delivery_error = self._emit(StatusChanged(
            record_id=saved.id,
            old_status=plan.old_status,
            new_status=plan.new_status,
            actor=actor,
            action=plan.action,
            assigned_user_id=saved.assigned_user_id,
            occurred_at=plan.audit_entry.timestamp,
        ))
        return TransitionResult.success(outcome)

    def _emit(self, event: StatusChanged) -> Optional[str]:
        try:
            self.event_sink.emit(event)
        except Exception as e:
            logger.error("Status change event delivery failed for record %s: %s", event.record_id, e)
            return str(e)
        return None

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------

    async def get_record(self, record_id: str, actor: Optional[str]) -> TransitionResult:
        try:
            record = await self.store.get(record_id)
        except StorageUnavailableError as e:
            return TransitionResult.failure(WorkflowError.storage_unavailable(record_id, str(e)))
        if record is None:
            return TransitionResult.failure(WorkflowError.record_not_found(record_id))
        if not self.resolver.can_view(actor, record.status):
            return TransitionResult.failure(WorkflowError.forbidden(record_id))
        return TransitionResult.success(record)

    async def available_actions_for(self, record_id: str, actor: Optional[str]) -> TransitionResult:
        """Actions valid for the record's status that ``actor`` may perform."""
        result = await self.get_record(record_id, actor)
        if not result.ok:
            return result
        record = result.value
        actions = [
            action for action in WorkflowEngine.available_actions(record.status)
            if self.resolver.can_transition(actor, WorkflowEngine.get_transition(action).required_role)
        ]
        return TransitionResult.success(actions)

    # -------------------------------------------------------------------------
    # Payload edits
    # -------------------------------------------------------------------------

    def _plan_payload_edit(
        self,
        record: SurveyRecord,
        actor: Optional[str],
        changes: Dict[str, Any],
        notes: str
    ):
        if not WorkflowEngine.is_editable(record.status):
            return WorkflowError(
                code=WorkflowErrorCode.INVALID_TRANSITION,
                message=f"Survey data cannot be edited in status '{record.status}'",
                record_id=record.id,
                current_status=record.status,
                available_actions=WorkflowEngine.available_actions(record.status),
            )
        if not self.resolver.can_edit_payload(actor, record.status):
            security_logger.warning(
                "Forbidden payload edit attempt: actor=%s, record=%s, status=%s",
                actor, record.id, record.status
            )
            return WorkflowError.forbidden(record.id)

        now = self.clock.now_iso()
        plan = _EditPlan()
        for field_name, new_value in changes.items():
            old_value = record.payload.get(field_name)
            if field_name in record.payload and old_value == new_value:
                continue
            record.payload[field_name] = new_value
            plan.entries.append(record.append_audit_entry(
                AuditEntry.data_edit(field_name, old_value, new_value, actor, now, notes)
            ))

        if not plan.entries:
            return None

        record.last_modified_at = now
        return plan

    async def edit_payload(
        self,
        record_id: str,
        actor: Optional[str],
        changes: Dict[str, Any],
        notes: Optional[str] = None
    ) -> TransitionResult:
        """
        Update survey answers. One data_edit audit entry per changed field,
        all saved together. Value on success: the saved SurveyRecord.
        """
        if not isinstance(changes, dict) or not changes:
            return TransitionResult.failure(
                WorkflowError.validation_error(record_id, "changes must be a non-empty mapping")
            )

        notes_text = (notes or "").strip()
        result = await self._commit(
            record_id,
            lambda record: self._plan_payload_edit(record, actor, changes, notes_text),
        )
        if not result.ok:
            return result

        saved, plan = result.value
        if plan is not None:
            logger.info(
                "Survey data edited: record=%s, fields=%s, actor=%s",
                record_id, [e.new_value["field"] for e in plan.entries], actor
            )
        return TransitionResult.success(saved)

    # -------------------------------------------------------------------------
    # Administrative operations
    # -------------------------------------------------------------------------

    def _plan_reassign(
        self,
        record: SurveyRecord,
        actor: Optional[str],
        user_id: Optional[str],
        notes: str
    ):
        if not self.resolver.is_administrator(actor):
            security_logger.warning("Forbidden reassignment attempt: actor=%s, record=%s", actor, record.id)
            return WorkflowError.forbidden(record.id)

        if record.is_terminal:
            return WorkflowError(
                code=WorkflowErrorCode.INVALID_TRANSITION,
                message=f"Records in status '{record.status}' cannot be reassigned",
                record_id=record.id,
                current_status=record.status,
            )

        owning_role = WorkflowEngine.get_owning_role(record.status)
        if user_id is not None and self.resolver.role_of(user_id) != owning_role:
            return WorkflowError.validation_error(
                record.id, f"User {user_id} cannot own records in status '{record.status}'"
            )

        if record.assigned_user_id == user_id:
            return None

        now = self.clock.now_iso()
        entry = record.append_audit_entry(
            AuditEntry.user_assignment(record.assigned_user_id, user_id, actor, now, notes)
        )
        record.assigned_user_id = user_id
        record.last_modified_at = now
        return entry

    async def reassign(
        self,
        record_id: str,
        actor: Optional[str],
        user_id: Optional[str],
        notes: Optional[str] = None
    ) -> TransitionResult:
        """Administrator-only manual owner change. Value: the saved record."""
        notes_text = (notes or "").strip()
        result = await self._commit(
            record_id,
            lambda record: self._plan_reassign(record, actor, user_id, notes_text),
        )
        if not result.ok:
            return result
        saved, entry = result.value
        if entry is not None:
            logger.info("Record %s reassigned %s -> %s by %s", record_id, entry.old_value, entry.new_value, actor)
        return TransitionResult.success(saved)

    async def delete_record(self, record_id: str, actor: Optional[str]) -> TransitionResult:
        """Administrator-only deletion, outside the transition vocabulary."""
        if not self.resolver.is_administrator(actor):
            security_logger.warning("Forbidden delete attempt: actor=%s, record=%s", actor, record_id)
            return TransitionResult.failure(WorkflowError.forbidden(record_id))
        try:
            deleted = await self.store.delete(record_id)
        except StorageUnavailableError as e:
            return TransitionResult.failure(WorkflowError.storage_unavailable(record_id, str(e)))
        if not deleted:
            return TransitionResult.failure(WorkflowError.record_not_found(record_id))
        logger.info("Record %s deleted by administrator %s", record_id, actor)
        return TransitionResult.success(True)
