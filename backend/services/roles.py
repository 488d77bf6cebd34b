"""
Survey Review Hub - Roles & Capabilities

Maps principals to a single workflow role and answers view/act questions.

- A user holds at most one workflow role (interviewer, supervisor, examiner).
- Administrator is a cross-cutting override flag, not a workflow role.
- Non-administrators may only view/act on statuses owned by their role;
  terminal statuses are read-only for them.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

from .workflow_engine import WorkflowEngine, WorkflowRole, WORKFLOW_STATES, _key

logger = logging.getLogger(__name__)


ROLE_DISPLAY_NAMES = {
    WorkflowRole.INTERVIEWER.value: "Interviewer",
    WorkflowRole.SUPERVISOR.value: "Supervisor",
    WorkflowRole.EXAMINER.value: "Examiner",
}

ROLE_DESCRIPTIONS = {
    WorkflowRole.INTERVIEWER.value: "Reviews and corrects imported responses",
    WorkflowRole.SUPERVISOR.value: "Approves, rejects or samples interviewer work",
    WorkflowRole.EXAMINER.value: "Performs the final review",
}


class PrincipalDirectory(ABC):
    """Source of truth for who holds which role."""

    @abstractmethod
    def role_of(self, user_id: str) -> Optional[str]:
        pass

    @abstractmethod
    def users_with_role(self, role: str) -> List[str]:
        pass

    @abstractmethod
    def is_administrator(self, user_id: str) -> bool:
        pass

    def user_exists(self, user_id: str) -> bool:
        return self.role_of(user_id) is not None or self.is_administrator(user_id)


@dataclass
class Principal:
    user_id: str
    display_name: str = ""
    role: Optional[str] = None
    is_administrator: bool = False


class InMemoryPrincipalDirectory(PrincipalDirectory):
    """Thread-safe in-process directory with role management."""

    def __init__(self):
        self._users: Dict[str, Principal] = {}
        self._lock = threading.Lock()

    def add_user(
        self,
        user_id: str,
        role: Optional[str] = None,
        display_name: str = "",
        is_administrator: bool = False
    ) -> Principal:
        role_key = _key(role)
        if role_key is not None and role_key not in ROLE_DISPLAY_NAMES:
            raise ValueError(f"Invalid workflow role: {role_key}")
        principal = Principal(user_id, display_name or user_id, role_key, is_administrator)
        with self._lock:
            self._users[user_id] = principal
        return principal

    def assign_role(self, user_id: str, role: str) -> bool:
        """Give ``user_id`` a workflow role, replacing any previous one."""
        role_key = _key(role)
        if role_key not in ROLE_DISPLAY_NAMES:
            return False
        with self._lock:
            principal = self._users.get(user_id)
            if principal is None:
                return False
            principal.role = role_key
        logger.info("Assigned role %s to user %s", role_key, user_id)
        return True

    def remove_role(self, user_id: str) -> bool:
        with self._lock:
            principal = self._users.get(user_id)
            if principal is None or principal.role is None:
                return False
            principal.role = None
        logger.info("Removed workflow role from user %s", user_id)
        return True

    def set_administrator(self, user_id: str, is_administrator: bool = True) -> bool:
        with self._lock:
            principal = self._users.get(user_id)
            if principal is None:
                return False
            principal.is_administrator = is_administrator
        return True

    def get_user(self, user_id: str) -> Optional[Principal]:
        with self._lock:
            return self._users.get(user_id)

    def role_of(self, user_id: str) -> Optional[str]:
        principal = self.get_user(user_id)
        return principal.role if principal else None

    def users_with_role(self, role: str) -> List[str]:
        role_key = _key(role)
        with self._lock:
            return sorted(uid for uid, p in self._users.items() if p.role == role_key)

    def is_administrator(self, user_id: str) -> bool:
        principal = self.get_user(user_id)
        return bool(principal and principal.is_administrator)


class RoleResolver:
    """Answers capability questions for the review service and API."""

    def __init__(self, directory: PrincipalDirectory):
        self.directory = directory

    def role_of(self, user_id: Optional[str]) -> Optional[str]:
        if not user_id:
            return None
        return self.directory.role_of(user_id)

    def is_administrator(self, user_id: Optional[str]) -> bool:
        return bool(user_id) and self.directory.is_administrator(user_id)

    def can_view(self, user_id: Optional[str], status: str) -> bool:
        if self.is_administrator(user_id):
            return True
        state = WORKFLOW_STATES.get(_key(status))
        if state is None:
            return False
        role = self.role_of(user_id)
        return role is not None and role in state.allowed_roles

    def can_transition(self, user_id: Optional[str], required_role: str) -> bool:
        if self.is_administrator(user_id):
            return True
        role = self.role_of(user_id)
        return role is not None and role == _key(required_role)

    def can_edit_payload(self, user_id: Optional[str], status: str) -> bool:
        """Payload edits: editable status, and owning role or administrator."""
        return WorkflowEngine.is_editable(status) and self.can_view(user_id, status)

    def visible_statuses(self, user_id: Optional[str]) -> List[str]:
        return [s for s in WorkflowEngine.get_all_statuses() if self.can_view(user_id, s)]

    def role_statistics(self) -> Dict[str, Dict]:
        stats = {}
        for role, display_name in ROLE_DISPLAY_NAMES.items():
            users = self.directory.users_with_role(role)
            stats[role] = {
                "display_name": display_name,
                "description": ROLE_DESCRIPTIONS[role],
                "user_count": len(users),
                "users": users,
            }
        return stats

