"""
Shared fixtures for the Survey Review Hub test suite.

Every fixture is in-memory: no MongoDB, no wall clock, no OS randomness.
"""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from services.assignment import RoundRobinAssignmentPolicy
from services.audit_trail import AuditEntry
from services.clock import FixedClock
from services.events import InMemoryEventSink
from services.record_store import InMemoryRecordStore
from services.records import SurveyRecord
from services.review_config import ReviewConfig
from services.review_service import ReviewService
from services.roles import InMemoryPrincipalDirectory, RoleResolver
from services.sampling import SequenceRandomSource
from services.workflow_engine import INITIAL_STATUS


@pytest.fixture
def directory():
    d = InMemoryPrincipalDirectory()
    d.add_user("int1", role="interviewer", display_name="Interviewer One")
    d.add_user("int2", role="interviewer", display_name="Interviewer Two")
    d.add_user("sup1", role="supervisor", display_name="Supervisor One")
    d.add_user("exa1", role="examiner", display_name="Examiner One")
    d.add_user("admin", display_name="Administrator", is_administrator=True)
    d.add_user("guest", display_name="No Role")
    return d


@pytest.fixture
def resolver(directory):
    return RoleResolver(directory)


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def events():
    return InMemoryEventSink()


@pytest.fixture
def make_service(store, directory, resolver, clock, events):
    """Factory: ReviewService with scripted sampling draws."""
    def _make(draws=(), config=None, record_store=None, event_sink=None):
        return ReviewService(
            store=record_store or store,
            resolver=resolver,
            assignment_policy=RoundRobinAssignmentPolicy(directory),
            config=config or ReviewConfig(sampling_percentage=70),
            event_sink=event_sink or events,
            random_source=SequenceRandomSource(draws),
            clock=clock,
        )
    return _make


@pytest.fixture
def service(make_service):
    return make_service()


@pytest.fixture
def seed(store, clock):
    """Async factory: insert a record directly in the given status."""
    counter = {"n": 0}

    async def _seed(status=INITIAL_STATUS, assigned_user_id=None, payload=None):
        counter["n"] += 1
        now = clock.now_iso()
        record = SurveyRecord(
            external_survey_id="836511",
            external_response_id=str(counter["n"]),
            payload=dict(payload or {"Q1": "yes", "Q2": "3"}),
            status=status,
            assigned_user_id=assigned_user_id,
            created_at=now,
            last_modified_at=now,
        )
        record.append_audit_entry(AuditEntry.imported("836511", str(counter["n"]), None, now))
        return await store.insert(record)

    return _seed

