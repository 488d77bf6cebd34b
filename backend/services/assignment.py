"""
Survey Review Hub - Assignment Policies

After every transition the record is handed to one holder of the new status's
owning role. Terminal statuses have no owner.

Policies:
- RoundRobinAssignmentPolicy (default): rotates across current role holders
- FirstAvailableAssignmentPolicy: always the first holder (legacy behaviour)
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional

from .roles import PrincipalDirectory
from .workflow_engine import WorkflowEngine

logger = logging.getLogger(__name__)


class AssignmentStrategy:
    ROUND_ROBIN = "round_robin"
    FIRST_AVAILABLE = "first_available"


class AssignmentPolicy(ABC):
    """Selects the principal responsible for a record in a given status."""

    def __init__(self, directory: PrincipalDirectory):
        self.directory = directory

    def assign_owner(self, new_status: str) -> Optional[str]:
        return self._owner_for(new_status, advance=True)

    def preview_owner(self, new_status: str) -> Optional[str]:
        """The owner ``assign_owner`` would pick next, without consuming the slot."""
        return self._owner_for(new_status, advance=False)

    def _owner_for(self, new_status: str, advance: bool) -> Optional[str]:
        role = WorkflowEngine.get_owning_role(new_status)
        if role is None:
            return None

        holders = self.directory.users_with_role(role)
        if not holders:
            logger.warning("No users hold role %s; record in %s left unassigned", role, new_status)
            return None

        return self._select(role, holders, advance)

    @abstractmethod
    def _select(self, role: str, holders: list, advance: bool = True) -> str:
        pass


class FirstAvailableAssignmentPolicy(AssignmentPolicy):
    """First holder returned by the directory. No load balancing."""

    def _select(self, role: str, holders: list, advance: bool = True) -> str:
        return holders[0]


class RoundRobinAssignmentPolicy(AssignmentPolicy):
    """
    Rotates through the current holders of each role.

    One counter per role, guarded by a lock so concurrent transitions never
    hand out the same slot twice. Holders are sorted so the rotation is stable
    while the role membership is unchanged.
    """

    def __init__(self, directory: PrincipalDirectory):
        super().__init__(directory)
        self._counters: Dict[str, int] = {}
        self._lock = threading.Lock()

    def _select(self, role: str, holders: list, advance: bool = True) -> str:
        ordered = sorted(holders)
        with self._lock:
            position = self._counters.get(role, 0)
            if advance:
                self._counters[role] = position + 1
        return ordered[position % len(ordered)]


def create_assignment_policy(strategy: str, directory: PrincipalDirectory) -> AssignmentPolicy:
    if strategy == AssignmentStrategy.FIRST_AVAILABLE:
        return FirstAvailableAssignmentPolicy(directory)
    if strategy == AssignmentStrategy.ROUND_ROBIN:
        return RoundRobinAssignmentPolicy(directory)
    raise ValueError(f"Unknown assignment strategy: {strategy}")
