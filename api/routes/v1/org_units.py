"""
api/routes/v1/org_units.py -- Org units visible to the caller.

Routes:
  GET /api/v1/org-units -- units in the caller's accessible set (own unit + descendants)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import OrgUnitResponse
from auth.dependencies import require_policy
from auth.models import RequestContext
from core.policies import ORG_UNITS_VIEW

router = APIRouter()


@router.get("/org-units", response_model=list[OrgUnitResponse])
def list_org_units(
    request: Request,
    context: RequestContext = Depends(require_policy(ORG_UNITS_VIEW)),
) -> list[OrgUnitResponse]:
    """Return the caller's org units ordered by level then name. SuperAdmin sees every unit."""
    units = request.app.state.rbac.accessible_org_units(context.snapshot)
    return [OrgUnitResponse.from_org_unit(u) for u in units]
