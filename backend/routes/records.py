"""
Survey Review Hub - Records Router

Survey record queues, workflow transitions, payload edits and
administrative record operations.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
import logging

from services.errors import WorkflowError, WorkflowErrorCode
from services.survey_import import ImportJob, ImportMode, InMemoryResponseSource
from services.workflow_engine import WorkflowEngine

from .auth import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/records", tags=["records"])
workflow_router = APIRouter(prefix="/workflow", tags=["workflow"])

# Review services - set by main app
services = None

def set_dependencies(review_services):
    global services
    services = review_services


ERROR_STATUS_CODES = {
    WorkflowErrorCode.RECORD_NOT_FOUND: 404,
    WorkflowErrorCode.UNKNOWN_ACTION: 400,
    WorkflowErrorCode.INVALID_TRANSITION: 409,
    WorkflowErrorCode.CONFLICT: 409,
    WorkflowErrorCode.FORBIDDEN: 403,
    WorkflowErrorCode.NOTE_REQUIRED: 422,
    WorkflowErrorCode.VALIDATION_ERROR: 422,
    WorkflowErrorCode.STORAGE_UNAVAILABLE: 503,
}


def raise_for_error(error: WorkflowError):
    raise HTTPException(status_code=ERROR_STATUS_CODES.get(error.code, 400), detail=error.to_dict())


def _unwrap(result):
    if not result.ok:
        raise_for_error(result.error)
    return result.value


# ==================== MODELS ====================

class TransitionRequest(BaseModel):
    action: str
    notes: Optional[str] = None


class PayloadEditRequest(BaseModel):
    changes: Dict[str, Any]
    notes: Optional[str] = None


class AssignRequest(BaseModel):
    user_id: Optional[str] = None
    notes: Optional[str] = None


class SurveyExport(BaseModel):
    survey_id: str
    responses: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


class ImportRequest(BaseModel):
    source_name: str = "api_upload"
    surveys: List[SurveyExport]
    dry_run: bool = True


# ==================== QUEUE ENDPOINTS ====================

@router.get("")
async def list_records(
    status: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    user_id: str = Depends(get_current_user)
):
    """Records the current user may view, newest first."""
    if status is not None and WorkflowEngine.get_state(status) is None:
        raise HTTPException(status_code=400, detail=f"Unknown status '{status}'")

    records = await services.statistics.visible_records(user_id, status)
    records.sort(key=lambda r: r.created_at or "", reverse=True)
    return {
        "records": [r.to_summary() for r in records[skip:skip + limit]],
        "total": len(records),
    }


@router.get("/{record_id}")
async def get_record(record_id: str, user_id: str = Depends(get_current_user)):
    record = _unwrap(await services.review.get_record(record_id, user_id))
    data = record.to_dict()
    data["status_label"] = WorkflowEngine.get_status_label(record.status)
    data["editable"] = services.resolver.can_edit_payload(user_id, record.status)
    return data


@router.get("/{record_id}/actions")
async def get_available_actions(record_id: str, user_id: str = Depends(get_current_user)):
    """Transitions the current user can perform on this record."""
    actions = _unwrap(await services.review.available_actions_for(record_id, user_id))
    return {
        "record_id": record_id,
        "actions": [WorkflowEngine.get_transition(a).to_dict() for a in actions],
    }


@router.get("/{record_id}/audit")
async def get_audit_trail(record_id: str, user_id: str = Depends(get_current_user)):
    record = _unwrap(await services.review.get_record(record_id, user_id))
    return {
        "record_id": record_id,
        "entries": [entry.get_formatted_display() for entry in record.audit_trail],
    }


# ==================== WORKFLOW ACTIONS ====================

@router.post("/{record_id}/transition")
async def transition_record(
    record_id: str,
    req: TransitionRequest,
    user_id: str = Depends(get_current_user)
):
    """
    Run a named workflow transition.

    Actions: approve_to_supervisor, approve_to_examiner, reject_to_interviewer,
    reject_to_supervisor, apply_sampling_gate, final_approval,
    resubmit_to_supervisor
    """
    outcome = _unwrap(await services.review.execute(record_id, req.action, user_id, req.notes))
    return outcome.to_dict()


@router.patch("/{record_id}/payload")
async def edit_payload(
    record_id: str,
    req: PayloadEditRequest,
    user_id: str = Depends(get_current_user)
):
    record = _unwrap(await services.review.edit_payload(record_id, user_id, req.changes, req.notes))
    return record.to_dict()


@router.post("/{record_id}/assign")
async def assign_record(
    record_id: str,
    req: AssignRequest,
    user_id: str = Depends(get_current_user)
):
    """Administrator: hand the record to another holder of the owning role."""
    record = _unwrap(await services.review.reassign(record_id, user_id, req.user_id, req.notes))
    services.statistics.clear_cache()
    return record.to_summary()


@router.delete("/{record_id}")
async def delete_record(record_id: str, user_id: str = Depends(get_current_user)):
    _unwrap(await services.review.delete_record(record_id, user_id))
    services.statistics.clear_cache()
    return {"deleted": True, "record_id": record_id}


# ==================== IMPORT ====================

@router.post("/import")
async def import_responses(req: ImportRequest, user_id: str = Depends(get_current_user)):
    """Administrator: import exported survey responses (dry run by default)."""
    if not services.resolver.is_administrator(user_id):
        raise_for_error(WorkflowError.forbidden(None))

    source = InMemoryResponseSource(name=req.source_name)
    for survey in req.surveys:
        for response_id, answers in survey.responses.items():
            source.add_response(survey.survey_id, response_id, answers)

    mode = ImportMode.DRY_RUN if req.dry_run else ImportMode.REAL
    result = await ImportJob(source, services.importer, actor=user_id).run(mode=mode)
    if mode == ImportMode.REAL and result.stats.total_imported:
        services.statistics.clear_cache()
    return result.to_dict()


# ==================== WORKFLOW DEFINITION ====================

@workflow_router.get("")
async def get_workflow_definition():
    """States and transitions of the review workflow."""
    return WorkflowEngine.describe_workflow()


@workflow_router.get("/diagram")
async def get_workflow_diagram():
    return {"mermaid": WorkflowEngine.generate_mermaid_diagram(services.config.sampling_percentage)}
