"""
Tests for the review service (transition engine).

Covers the full pipeline: validation order, role gating, note enforcement,
sampling, terminal immutability, audit/status atomicity, storage failures,
event delivery and the gated record operations.
"""
import logging

import pytest

from services.errors import StorageUnavailableError, WorkflowErrorCode
from services.events import EventSink
from services.review_config import ReviewConfig
from services.workflow_engine import WorkflowAction, WorkflowEngine


class UnavailableOnSave:
    """Store wrapper whose writes always fail."""

    def __init__(self, inner):
        self.inner = inner
        self.save_calls = 0

    async def get(self, record_id):
        return await self.inner.get(record_id)

    async def save(self, record, expected_version=None):
        self.save_calls += 1
        raise StorageUnavailableError("connection refused")


class UnavailableStore:
    async def get(self, record_id):
        raise StorageUnavailableError("server selection timeout")


class ExplodingSink(EventSink):
    def emit(self, event):
        raise RuntimeError("notification service down")


class TestRoundTrip:
    """A record travels the whole pipeline."""

    @pytest.mark.asyncio
    async def test_import_to_finalized(self, make_service, seed, store, events):
        service = make_service(draws=[90])
        record = await seed(assigned_user_id="int1")

        r1 = await service.execute(record.id, "approve_to_supervisor", "int1")
        assert r1.ok
        assert r1.value.new_status == "pending_b"
        assert r1.value.assigned_user_id == "sup1"

        r2 = await service.execute(record.id, "apply_sampling_gate", "sup1")
        assert r2.ok
        assert r2.value.new_status == "pending_c"
        assert r2.value.assigned_user_id == "exa1"
        assert "drew 90" in r2.value.audit_entry.notes

        r3 = await service.execute(record.id, "final_approval", "exa1")
        assert r3.ok
        assert r3.value.new_status == "finalized"
        assert r3.value.assigned_user_id is None
        assert r3.value.available_actions == []

        stored = await store.get(record.id)
        assert stored.status == "finalized"
        assert stored.completed_at is not None
        # imported + three transitions
        assert len(stored.audit_trail) == 4
        assert [e.action for e in stored.audit_trail[1:]] == [
            "approve_to_supervisor", "apply_sampling_gate", "final_approval",
        ]
        assert [(e.old_status, e.new_status) for e in events.events] == [
            ("pending_a", "pending_b"), ("pending_b", "pending_c"), ("pending_c", "finalized"),
        ]

    @pytest.mark.asyncio
    async def test_rejection_loop(self, service, seed, store):
        record = await seed(status="pending_b")

        r = await service.execute(record.id, "reject_to_interviewer", "sup1", "Q2 is inconsistent")
        assert r.ok
        assert r.value.new_status == "rejected_by_b"
        assert r.value.assigned_user_id in ("int1", "int2")

        r = await service.execute(record.id, "resubmit_to_supervisor", "int1")
        assert r.ok
        assert r.value.new_status == "pending_b"

        stored = await store.get(record.id)
        assert stored.audit_trail[1].notes == "Q2 is inconsistent"

    @pytest.mark.asyncio
    async def test_outcome_to_dict(self, make_service, seed):
        service = make_service(draws=[10])
        record = await seed(status="pending_b")
        r = await service.execute(record.id, WorkflowAction.APPLY_SAMPLING_GATE, "sup1")
        data = r.value.to_dict()
        assert data["new_status"] == "finalized_by_sampling"
        assert data["sampling"] == {"draw": 10, "percentage": 70, "outcome": "finalized_by_sampling"}
        assert data["version"] == 2


class TestSamplingGate:
    """Sampling outcomes and their audit trace."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("draw,expected", [
        (1, "finalized_by_sampling"),
        (70, "finalized_by_sampling"),
        (71, "pending_c"),
        (100, "pending_c"),
    ])
    async def test_threshold(self, make_service, seed, draw, expected):
        service = make_service(draws=[draw])
        record = await seed(status="pending_b")
        r = await service.execute(record.id, "apply_sampling_gate", "sup1")
        assert r.ok
        assert r.value.new_status == expected
        assert r.value.sampling.draw == draw

    @pytest.mark.asyncio
    async def test_finalized_by_sampling_is_terminal(self, make_service, seed, store):
        service = make_service(draws=[5])
        record = await seed(status="rejected_by_c")
        r = await service.execute(record.id, "apply_sampling_gate", "sup1")
        assert r.value.new_status == "finalized_by_sampling"
        assert r.value.available_actions == []
        stored = await store.get(record.id)
        assert stored.completed_at is not None
        assert stored.assigned_user_id is None

    @pytest.mark.asyncio
    async def test_audit_notes_record_draw_and_percentage(self, make_service, seed):
        service = make_service(draws=[42], config=ReviewConfig(sampling_percentage=30))
        record = await seed(status="pending_b")
        r = await service.execute(record.id, "apply_sampling_gate", "sup1", "batch 7")
        notes = r.value.audit_entry.notes
        assert notes.startswith("batch 7")
        assert "drew 42" in notes
        assert "30%" in notes
        assert "sent to examiner" in notes


class TestValidationOrder:
    """Errors are reported in pipeline order and never mutate the record."""

    @pytest.mark.asyncio
    async def test_record_not_found(self, service):
        r = await service.execute("missing", "approve_to_supervisor", "int1")
        assert not r.ok
        assert r.error.code == WorkflowErrorCode.RECORD_NOT_FOUND

    @pytest.mark.asyncio
    async def test_unknown_action(self, service, seed, store):
        record = await seed()
        r = await service.execute(record.id, "teleport", "admin")
        assert r.error.code == WorkflowErrorCode.UNKNOWN_ACTION
        assert (await store.get(record.id)).version == record.version

    @pytest.mark.asyncio
    async def test_invalid_transition_carries_status_and_actions(self, service, seed):
        record = await seed()
        r = await service.execute(record.id, "final_approval", "exa1")
        assert r.error.code == WorkflowErrorCode.INVALID_TRANSITION
        assert r.error.current_status == "pending_a"
        assert r.error.available_actions == ["approve_to_supervisor"]
        assert r.error.to_dict()["available_actions"] == ["approve_to_supervisor"]

    @pytest.mark.asyncio
    async def test_invalid_transition_reported_before_forbidden(self, service, seed):
        record = await seed()
        r = await service.execute(record.id, "final_approval", "int1")
        assert r.error.code == WorkflowErrorCode.INVALID_TRANSITION

    @pytest.mark.asyncio
    async def test_forbidden_reported_before_note_required(self, service, seed):
        record = await seed(status="pending_b")
        r = await service.execute(record.id, "reject_to_interviewer", "int1")
        assert r.error.code == WorkflowErrorCode.FORBIDDEN


class TestRoleGating:
    """Only the required role (or an administrator) may act."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("actor", ["int1", "exa1", "guest", None, "stranger"])
    async def test_wrong_actor_forbidden_and_nothing_changes(self, service, seed, store, events, actor):
        record = await seed(status="pending_b", assigned_user_id="sup1")
        before = (await store.get(record.id)).to_dict()

        r = await service.execute(record.id, "approve_to_examiner", actor)
        assert r.error.code == WorkflowErrorCode.FORBIDDEN

        assert (await store.get(record.id)).to_dict() == before
        assert events.events == []

    @pytest.mark.asyncio
    async def test_forbidden_message_names_no_roles(self, service, seed):
        record = await seed(status="pending_b")
        r = await service.execute(record.id, "approve_to_examiner", "int1")
        for role in ("interviewer", "supervisor", "examiner"):
            assert role not in r.error.message.lower()

    @pytest.mark.asyncio
    async def test_forbidden_attempt_logged_on_security_logger(self, service, seed, caplog):
        record = await seed(status="pending_c")
        with caplog.at_level(logging.WARNING, logger="security"):
            await service.execute(record.id, "final_approval", "sup1")
        assert any(r.name == "security" and "sup1" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_administrator_override(self, service, seed):
        record = await seed(status="pending_c")
        r = await service.execute(record.id, "final_approval", "admin")
        assert r.ok
        assert r.value.new_status == "finalized"
        assert r.value.audit_entry.actor_user_id == "admin"


class TestNoteEnforcement:
    """Rejections need a justification."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("notes", [None, "", "   "])
    async def test_missing_note(self, service, seed, store, notes):
        record = await seed(status="pending_c")
        r = await service.execute(record.id, "reject_to_supervisor", "exa1", notes)
        assert r.error.code == WorkflowErrorCode.NOTE_REQUIRED
        assert (await store.get(record.id)).status == "pending_c"

    @pytest.mark.asyncio
    async def test_note_is_stored_as_supplied(self, service, seed):
        record = await seed(status="pending_c")
        r = await service.execute(record.id, "reject_to_supervisor", "exa1", "  wrong district code ")
        assert r.ok
        assert r.value.audit_entry.notes == "  wrong district code "

    @pytest.mark.asyncio
    async def test_policy_toggle_off(self, make_service, seed):
        service = make_service(config=ReviewConfig(require_note_on_rejection=False))
        record = await seed(status="pending_c")
        r = await service.execute(record.id, "reject_to_supervisor", "exa1")
        assert r.ok
        assert r.value.new_status == "rejected_by_c"


class TestTerminalImmutability:
    """Finalized records accept no transition, not even from an administrator."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["finalized", "finalized_by_sampling"])
    async def test_every_action_rejected(self, service, seed, store, status):
        record = await seed(status=status)
        for action in WorkflowEngine.get_all_actions():
            r = await service.execute(record.id, action, "admin", "note")
            assert r.error.code == WorkflowErrorCode.INVALID_TRANSITION
            assert r.error.available_actions == []
        assert (await store.get(record.id)).version == record.version


class TestAtomicity:
    """Status and audit trail move together or not at all."""

    @pytest.mark.asyncio
    async def test_exactly_one_audit_entry_per_transition(self, service, seed, store):
        record = await seed()
        before = len(record.audit_trail)
        r = await service.execute(record.id, "approve_to_supervisor", "int1")
        stored = await store.get(record.id)
        assert len(stored.audit_trail) == before + 1
        entry = stored.audit_trail[-1]
        assert entry == r.value.audit_entry
        assert (entry.old_value, entry.new_value) == ("pending_a", "pending_b")
        assert entry.sequence == before

    @pytest.mark.asyncio
    async def test_storage_failure_leaves_record_unchanged(self, make_service, seed, store, events):
        flaky = UnavailableOnSave(store)
        service = make_service(record_store=flaky)
        record = await seed()
        before = (await store.get(record.id)).to_dict()

        r = await service.execute(record.id, "approve_to_supervisor", "int1")
        assert r.error.code == WorkflowErrorCode.STORAGE_UNAVAILABLE
        assert not r.error.is_client_error
        assert flaky.save_calls == 1
        assert (await store.get(record.id)).to_dict() == before
        assert events.events == []

    @pytest.mark.asyncio
    async def test_storage_unreachable_on_load(self, make_service):
        service = make_service(record_store=UnavailableStore())
        r = await service.execute("any", "approve_to_supervisor", "int1")
        assert r.error.code == WorkflowErrorCode.STORAGE_UNAVAILABLE


class TestEventDelivery:
    """Event sink failures never undo a committed transition."""

    @pytest.mark.asyncio
    async def test_failing_sink(self, make_service, seed, store):
        service = make_service(event_sink=ExplodingSink())
        record = await seed()
        r = await service.execute(record.id, "approve_to_supervisor", "int1")
        assert r.ok
        assert "notification service down" in r.value.event_delivery_error
        assert (await store.get(record.id)).status == "pending_b"

    @pytest.mark.asyncio
    async def test_event_payload(self, service, seed, events, clock):
        record = await seed()
        await service.execute(record.id, "approve_to_supervisor", "int1")
        event = events.events[-1]
        assert event.record_id == record.id
        assert event.actor == "int1"
        assert event.action == "approve_to_supervisor"
        assert event.assigned_user_id == "sup1"
        assert event.occurred_at == clock.now_iso()


class TestReadOperations:
    """get_record and available_actions_for."""

    @pytest.mark.asyncio
    async def test_available_actions_for_owner(self, service, seed):
        record = await seed(status="pending_b")
        r = await service.available_actions_for(record.id, "sup1")
        assert r.value == ["approve_to_examiner", "reject_to_interviewer", "apply_sampling_gate"]

    @pytest.mark.asyncio
    async def test_available_actions_for_other_role(self, service, seed):
        record = await seed(status="pending_b")
        r = await service.available_actions_for(record.id, "int1")
        assert r.error.code == WorkflowErrorCode.FORBIDDEN

    @pytest.mark.asyncio
    async def test_available_actions_on_terminal_record(self, service, seed):
        record = await seed(status="finalized")
        r = await service.available_actions_for(record.id, "admin")
        assert r.value == []

    @pytest.mark.asyncio
    async def test_get_record_visibility(self, service, seed):
        record = await seed(status="pending_c")
        assert (await service.get_record(record.id, "exa1")).ok
        assert (await service.get_record(record.id, "admin")).ok
        assert (await service.get_record(record.id, "int1")).error.code == WorkflowErrorCode.FORBIDDEN
        assert (await service.get_record("missing", "admin")).error.code == WorkflowErrorCode.RECORD_NOT_FOUND


class TestPayloadEdits:
    """Survey data corrections."""

    @pytest.mark.asyncio
    async def test_one_entry_per_changed_field(self, service, seed, store):
        record = await seed(payload={"Q1": "yes", "Q2": "3"})
        r = await service.edit_payload(record.id, "int1", {"Q1": "no", "Q2": "3", "Q3": "new"}, "phone follow-up")
        assert r.ok
        stored = await store.get(record.id)
        assert stored.payload == {"Q1": "no", "Q2": "3", "Q3": "new"}
        edits = [e for e in stored.audit_trail if e.action == "data_edit"]
        assert [e.new_value["field"] for e in edits] == ["Q1", "Q3"]
        assert edits[0].old_value == {"field": "Q1", "value": "yes"}
        assert edits[0].notes == "phone follow-up"
        assert stored.version == record.version + 1

    @pytest.mark.asyncio
    async def test_no_change_no_write(self, service, seed, store):
        record = await seed(payload={"Q1": "yes"})
        r = await service.edit_payload(record.id, "int1", {"Q1": "yes"})
        assert r.ok
        assert (await store.get(record.id)).version == record.version

    @pytest.mark.asyncio
    async def test_not_editable_status(self, service, seed):
        record = await seed(status="pending_b")
        r = await service.edit_payload(record.id, "admin", {"Q1": "no"})
        assert r.error.code == WorkflowErrorCode.INVALID_TRANSITION
        assert r.error.current_status == "pending_b"

    @pytest.mark.asyncio
    async def test_rework_status_is_editable(self, service, seed):
        record = await seed(status="rejected_by_b")
        assert (await service.edit_payload(record.id, "int2", {"Q1": "no"})).ok

    @pytest.mark.asyncio
    async def test_wrong_role(self, service, seed):
        record = await seed()
        r = await service.edit_payload(record.id, "sup1", {"Q1": "no"})
        assert r.error.code == WorkflowErrorCode.FORBIDDEN

    @pytest.mark.asyncio
    async def test_empty_changes(self, service, seed):
        record = await seed()
        r = await service.edit_payload(record.id, "int1", {})
        assert r.error.code == WorkflowErrorCode.VALIDATION_ERROR


class TestAdministrativeOperations:
    """Reassignment and deletion."""

    @pytest.mark.asyncio
    async def test_reassign(self, service, seed, store):
        record = await seed(assigned_user_id="int1")
        r = await service.reassign(record.id, "admin", "int2", "workload")
        assert r.ok
        stored = await store.get(record.id)
        assert stored.assigned_user_id == "int2"
        entry = stored.audit_trail[-1]
        assert entry.action == "user_assignment"
        assert (entry.old_value, entry.new_value) == ("int1", "int2")

    @pytest.mark.asyncio
    async def test_reassign_requires_administrator(self, service, seed):
        record = await seed(assigned_user_id="int1")
        r = await service.reassign(record.id, "int1", "int2")
        assert r.error.code == WorkflowErrorCode.FORBIDDEN

    @pytest.mark.asyncio
    async def test_reassign_to_wrong_role(self, service, seed):
        record = await seed()
        r = await service.reassign(record.id, "admin", "exa1")
        assert r.error.code == WorkflowErrorCode.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_reassign_terminal(self, service, seed):
        record = await seed(status="finalized")
        r = await service.reassign(record.id, "admin", "int1")
        assert r.error.code == WorkflowErrorCode.INVALID_TRANSITION

    @pytest.mark.asyncio
    async def test_delete(self, service, seed):
        record = await seed()
        assert (await service.delete_record(record.id, "sup1")).error.code == WorkflowErrorCode.FORBIDDEN
        assert (await service.delete_record(record.id, "admin")).ok
        assert (await service.delete_record(record.id, "admin")).error.code == WorkflowErrorCode.RECORD_NOT_FOUND


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
