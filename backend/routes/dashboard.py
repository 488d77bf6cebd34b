"""
Survey Review Hub - Dashboard Router

Statistics, metrics, and reporting.
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from .auth import get_current_user

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

# Review services - set by main app
services = None

def set_dependencies(review_services):
    global services
    services = review_services


def _require_admin(user_id: str):
    if not services.resolver.is_administrator(user_id):
        raise HTTPException(status_code=403, detail="You are not permitted to perform this action")


# ==================== MAIN DASHBOARD ====================

@router.get("/stats")
async def get_dashboard_stats(user_id: str = Depends(get_current_user)):
    """Counters for the current user's role."""
    return {
        "user_id": user_id,
        "role": services.resolver.role_of(user_id),
        "stats": await services.statistics.user_statistics(user_id),
    }


@router.get("/status-counts")
async def get_status_counts(user_id: str = Depends(get_current_user)):
    return await services.statistics.status_counts()


@router.get("/chart")
async def get_workflow_chart(user_id: str = Depends(get_current_user)):
    return await services.statistics.workflow_chart_data()


@router.get("/activity")
async def get_daily_activity(
    days: int = Query(30, ge=1, le=90),
    user_id: str = Depends(get_current_user)
):
    """Imported records per day."""
    return await services.statistics.daily_activity(days)


@router.get("/recent-events")
async def get_recent_events(
    limit: int = Query(20, ge=1, le=200),
    user_id: str = Depends(get_current_user)
):
    events = services.recent_events.events[-limit:]
    return {"events": [e.to_dict() for e in reversed(events)]}


# ==================== ADMIN ====================

@router.get("/performance")
async def get_performance_metrics(user_id: str = Depends(get_current_user)):
    _require_admin(user_id)
    return await services.statistics.performance_metrics()


@router.get("/stuck")
async def get_stuck_records(user_id: str = Depends(get_current_user)):
    """Records waiting longer than their status threshold."""
    _require_admin(user_id)
    stuck = await services.statistics.stuck_records()
    return {"records": stuck, "total": len(stuck)}


@router.get("/roles")
async def get_role_statistics(user_id: str = Depends(get_current_user)):
    _require_admin(user_id)
    return services.resolver.role_statistics()


@router.get("/config")
async def get_review_config(user_id: str = Depends(get_current_user)):
    _require_admin(user_id)
    return services.config.to_public_dict()
