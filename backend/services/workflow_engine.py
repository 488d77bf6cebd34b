"""
Survey Review Hub - Review Workflow Definition

This module implements the static state machine for the three-stage survey
review pipeline (interviewer -> supervisor -> examiner).

The workflow definition is pure data with no direct HTTP or DB calls.
All structural checks are deterministic and can be covered by unit tests.
Execution against stored records (permissions, notes, sampling, persistence)
lives in services/review_service.py.

Pipeline:
- pending_a: Imported response awaiting interviewer review
- pending_b: Awaiting supervisor review (approve, reject or sampling gate)
- pending_c: Awaiting examiner review
- rejected_by_b / rejected_by_c: Returned for rework
- finalized / finalized_by_sampling: Terminal
"""

from enum import Enum
from dataclasses import dataclass
from typing import Optional, Dict, List, Tuple, FrozenSet, Any
import logging

logger = logging.getLogger(__name__)


# =============================================================================
# ROLES, STATUSES & ACTIONS
# =============================================================================

class WorkflowRole(str, Enum):
    """
    Sequential reviewer roles. Administrator is an override flag on the
    principal, not a workflow role.
    """
    INTERVIEWER = "interviewer"
    SUPERVISOR = "supervisor"
    EXAMINER = "examiner"


class WorkflowStatus(str, Enum):
    """Workflow status values for survey records."""
    PENDING_A = "pending_a"                          # Interviewer review
    PENDING_B = "pending_b"                          # Supervisor review
    PENDING_C = "pending_c"                          # Examiner review
    REJECTED_BY_B = "rejected_by_b"                  # Returned to interviewer
    REJECTED_BY_C = "rejected_by_c"                  # Returned to supervisor
    FINALIZED = "finalized"
    FINALIZED_BY_SAMPLING = "finalized_by_sampling"


class WorkflowAction(str, Enum):
    """Named transitions a reviewer can request."""
    APPROVE_TO_SUPERVISOR = "approve_to_supervisor"
    APPROVE_TO_EXAMINER = "approve_to_examiner"
    REJECT_TO_INTERVIEWER = "reject_to_interviewer"
    REJECT_TO_SUPERVISOR = "reject_to_supervisor"
    APPLY_SAMPLING_GATE = "apply_sampling_gate"
    FINAL_APPROVAL = "final_approval"
    RESUBMIT_TO_SUPERVISOR = "resubmit_to_supervisor"


INITIAL_STATUS = WorkflowStatus.PENDING_A.value

# Actions that return a record for rework; governed by the
# "require note on rejection" policy toggle.
REJECTION_ACTIONS = frozenset({
    WorkflowAction.REJECT_TO_INTERVIEWER.value,
    WorkflowAction.REJECT_TO_SUPERVISOR.value,
})


@dataclass(frozen=True)
class StateDefinition:
    """Static metadata for one workflow state."""
    status: str
    label: str
    allowed_roles: FrozenSet[str]
    is_terminal: bool = False
    editable: bool = False
    color: str = "#607d8b"

    @property
    def owning_role(self) -> Optional[str]:
        # Each non-terminal state is owned by exactly one role
        return next(iter(self.allowed_roles), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "label": self.label,
            "allowed_roles": sorted(self.allowed_roles),
            "is_terminal": self.is_terminal,
            "editable": self.editable,
            "color": self.color,
        }


@dataclass(frozen=True)
class TransitionDefinition:
    """
    Static metadata for one named transition.

    Ordinary transitions carry a single ``to_state``. The sampling gate carries
    ``sampling_outcomes`` instead: (status when sampled, status otherwise).
    """
    action: str
    label: str
    from_states: FrozenSet[str]
    required_role: str
    to_state: Optional[str] = None
    sampling_outcomes: Optional[Tuple[str, str]] = None
    requires_note: bool = False

    @property
    def is_sampling(self) -> bool:
        return self.sampling_outcomes is not None

    @property
    def target_states(self) -> Tuple[str, ...]:
        if self.sampling_outcomes:
            return self.sampling_outcomes
        return (self.to_state,)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "label": self.label,
            "from_states": sorted(self.from_states),
            "to_states": list(self.target_states),
            "required_role": self.required_role,
            "requires_note": self.requires_note,
            "is_sampling": self.is_sampling,
        }


# =============================================================================
# WORKFLOW DEFINITION TABLES
# =============================================================================

WORKFLOW_STATES: Dict[str, StateDefinition] = {
    WorkflowStatus.PENDING_A.value: StateDefinition(
        status=WorkflowStatus.PENDING_A.value,
        label="Pending Interviewer Review",
        allowed_roles=frozenset({WorkflowRole.INTERVIEWER.value}),
        editable=True,
        color="#ff9800",
    ),
    WorkflowStatus.PENDING_B.value: StateDefinition(
        status=WorkflowStatus.PENDING_B.value,
        label="Pending Supervisor Review",
        allowed_roles=frozenset({WorkflowRole.SUPERVISOR.value}),
        color="#2196f3",
    ),
    WorkflowStatus.PENDING_C.value: StateDefinition(
        status=WorkflowStatus.PENDING_C.value,
        label="Pending Examiner Review",
        allowed_roles=frozenset({WorkflowRole.EXAMINER.value}),
        color="#9c27b0",
    ),
    WorkflowStatus.REJECTED_BY_B.value: StateDefinition(
        status=WorkflowStatus.REJECTED_BY_B.value,
        label="Rejected by Supervisor",
        allowed_roles=frozenset({WorkflowRole.INTERVIEWER.value}),
        editable=True,
        color="#f44336",
    ),
    WorkflowStatus.REJECTED_BY_C.value: StateDefinition(
        status=WorkflowStatus.REJECTED_BY_C.value,
        label="Rejected by Examiner",
        allowed_roles=frozenset({WorkflowRole.SUPERVISOR.value}),
        color="#e91e63",
    ),
    WorkflowStatus.FINALIZED.value: StateDefinition(
        status=WorkflowStatus.FINALIZED.value,
        label="Finalized",
        allowed_roles=frozenset(),
        is_terminal=True,
        color="#4caf50",
    ),
    WorkflowStatus.FINALIZED_BY_SAMPLING.value: StateDefinition(
        status=WorkflowStatus.FINALIZED_BY_SAMPLING.value,
        label="Finalized by Sampling",
        allowed_roles=frozenset(),
        is_terminal=True,
        color="#8bc34a",
    ),
}

# Ordered: available_actions() lists transitions in this order
WORKFLOW_TRANSITIONS: Dict[str, TransitionDefinition] = {
    WorkflowAction.APPROVE_TO_SUPERVISOR.value: TransitionDefinition(
        action=WorkflowAction.APPROVE_TO_SUPERVISOR.value,
        label="Approve and send to Supervisor",
        from_states=frozenset({WorkflowStatus.PENDING_A.value, WorkflowStatus.REJECTED_BY_B.value}),
        to_state=WorkflowStatus.PENDING_B.value,
        required_role=WorkflowRole.INTERVIEWER.value,
    ),
    WorkflowAction.APPROVE_TO_EXAMINER.value: TransitionDefinition(
        action=WorkflowAction.APPROVE_TO_EXAMINER.value,
        label="Approve and send to Examiner",
        from_states=frozenset({WorkflowStatus.PENDING_B.value, WorkflowStatus.REJECTED_BY_C.value}),
        to_state=WorkflowStatus.PENDING_C.value,
        required_role=WorkflowRole.SUPERVISOR.value,
    ),
    WorkflowAction.REJECT_TO_INTERVIEWER.value: TransitionDefinition(
        action=WorkflowAction.REJECT_TO_INTERVIEWER.value,
        label="Reject and return to Interviewer",
        from_states=frozenset({WorkflowStatus.PENDING_B.value, WorkflowStatus.REJECTED_BY_C.value}),
        to_state=WorkflowStatus.REJECTED_BY_B.value,
        required_role=WorkflowRole.SUPERVISOR.value,
        requires_note=True,
    ),
    WorkflowAction.REJECT_TO_SUPERVISOR.value: TransitionDefinition(
        action=WorkflowAction.REJECT_TO_SUPERVISOR.value,
        label="Reject and return to Supervisor",
        from_states=frozenset({WorkflowStatus.PENDING_C.value}),
        to_state=WorkflowStatus.REJECTED_BY_C.value,
        required_role=WorkflowRole.EXAMINER.value,
        requires_note=True,
    ),
    WorkflowAction.APPLY_SAMPLING_GATE.value: TransitionDefinition(
        action=WorkflowAction.APPLY_SAMPLING_GATE.value,
        label="Apply Sampling Gate",
        from_states=frozenset({WorkflowStatus.PENDING_B.value, WorkflowStatus.REJECTED_BY_C.value}),
        sampling_outcomes=(WorkflowStatus.FINALIZED_BY_SAMPLING.value, WorkflowStatus.PENDING_C.value),
        required_role=WorkflowRole.SUPERVISOR.value,
    ),
    WorkflowAction.FINAL_APPROVAL.value: TransitionDefinition(
        action=WorkflowAction.FINAL_APPROVAL.value,
        label="Final Approval",
        from_states=frozenset({WorkflowStatus.PENDING_C.value}),
        to_state=WorkflowStatus.FINALIZED.value,
        required_role=WorkflowRole.EXAMINER.value,
    ),
    WorkflowAction.RESUBMIT_TO_SUPERVISOR.value: TransitionDefinition(
        action=WorkflowAction.RESUBMIT_TO_SUPERVISOR.value,
        label="Resubmit to Supervisor",
        from_states=frozenset({WorkflowStatus.REJECTED_BY_B.value}),
        to_state=WorkflowStatus.PENDING_B.value,
        required_role=WorkflowRole.INTERVIEWER.value,
    ),
}


def _key(value: Any) -> Optional[str]:
    """Accept enum members or raw strings."""
    if isinstance(value, Enum):
        return value.value
    return value


# =============================================================================
# WORKFLOW DEFINITION QUERIES
# =============================================================================

class WorkflowEngine:
    """
    Read-only queries over the static review workflow tables.

    Nothing here depends on a specific record or user, so the same answers
    serve runtime validation and UI affordance listing.
    """

    @staticmethod
    def get_state(status: str) -> Optional[StateDefinition]:
        return WORKFLOW_STATES.get(_key(status))

    @staticmethod
    def get_transition(action: str) -> Optional[TransitionDefinition]:
        return WORKFLOW_TRANSITIONS.get(_key(action))

    @staticmethod
    def available_actions(status: str) -> List[str]:
        """Actions whose from_states contain ``status``, in table order."""
        status_key = _key(status)
        return [
            action for action, transition in WORKFLOW_TRANSITIONS.items()
            if status_key in transition.from_states
        ]

    @staticmethod
    def possible_next_states(status: str) -> List[str]:
        next_states: List[str] = []
        for action in WorkflowEngine.available_actions(status):
            for target in WORKFLOW_TRANSITIONS[action].target_states:
                if target not in next_states:
                    next_states.append(target)
        return next_states

    @staticmethod
    def can_transition(
        current_status: Optional[str],
        action: str
    ) -> Tuple[bool, Optional[str], str]:
        """
        Structural check of a transition (no permissions, no notes).

        Returns:
            (can_transition, next_status, reason)
            next_status is None for the sampling gate, whose destination is
            only known after the draw.
        """
        status_key = _key(current_status)
        action_key = _key(action)

        transition = WORKFLOW_TRANSITIONS.get(action_key)
        if transition is None:
            return (False, None, f"Unknown action '{action_key}'")

        if status_key not in WORKFLOW_STATES:
            return (False, None, f"Unknown status '{status_key}'")

        if status_key not in transition.from_states:
            valid = WorkflowEngine.available_actions(status_key)
            return (False, None, f"Action '{action_key}' not valid for status '{status_key}'. Valid: {valid}")

        return (True, transition.to_state, "Transition allowed")

    @staticmethod
    def requires_note(action: str, require_note_on_rejection: bool = True) -> bool:
        """Whether ``action`` needs a justification under the given policy."""
        transition = WORKFLOW_TRANSITIONS.get(_key(action))
        if transition is None:
            return False
        if transition.action in REJECTION_ACTIONS:
            return transition.requires_note and require_note_on_rejection
        return transition.requires_note

    @staticmethod
    def is_terminal(status: str) -> bool:
        state = WORKFLOW_STATES.get(_key(status))
        return bool(state and state.is_terminal)

    @staticmethod
    def is_editable(status: str) -> bool:
        state = WORKFLOW_STATES.get(_key(status))
        return bool(state and state.editable)

    @staticmethod
    def get_owning_role(status: str) -> Optional[str]:
        state = WORKFLOW_STATES.get(_key(status))
        if state is None or state.is_terminal:
            return None
        return state.owning_role

    @staticmethod
    def get_status_label(status: str) -> str:
        state = WORKFLOW_STATES.get(_key(status))
        return state.label if state else str(_key(status))

    @staticmethod
    def get_terminal_statuses() -> List[str]:
        return [s for s, state in WORKFLOW_STATES.items() if state.is_terminal]

    @staticmethod
    def get_all_statuses() -> List[str]:
        return [s.value for s in WorkflowStatus]

    @staticmethod
    def get_all_actions() -> List[str]:
        return [a.value for a in WorkflowAction]

    @staticmethod
    def describe_workflow() -> Dict[str, Any]:
        """JSON-friendly dump of the workflow for UI affordance listing."""
        return {
            "initial_status": INITIAL_STATUS,
            "states": [
                dict(state.to_dict(), actions=WorkflowEngine.available_actions(status))
                for status, state in WORKFLOW_STATES.items()
            ],
            "transitions": [t.to_dict() for t in WORKFLOW_TRANSITIONS.values()],
        }

    @staticmethod
    def generate_mermaid_diagram(sampling_percentage: int = 30) -> str:
        """Render the workflow as a Mermaid stateDiagram-v2."""
        lines = ["stateDiagram-v2", f"    [*] --> {INITIAL_STATUS} : Import"]

        for transition in WORKFLOW_TRANSITIONS.values():
            for from_state in sorted(transition.from_states):
                if transition.is_sampling:
                    sampled, not_sampled = transition.sampling_outcomes
                    lines.append(f"    {from_state} --> {sampled} : Sampling ({sampling_percentage}%)")
                    lines.append(f"    {from_state} --> {not_sampled} : Sampling ({100 - sampling_percentage}%)")
                else:
                    lines.append(f"    {from_state} --> {transition.to_state} : {transition.label}")

        for status in WorkflowEngine.get_terminal_statuses():
            lines.append(f"    {status} --> [*]")

        return "\n".join(lines) + "\n"
