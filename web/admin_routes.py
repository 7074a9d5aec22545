"""
Administrator routes: first-run setup, valet management and reports.

Prefix: /api/admin
"""

from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request, status
from pydantic import BaseModel

from valetclock.models.account import ValetAccount
from valetclock.services.admin_service import ProvisionResult, ValetProvisionRequest
from valetclock.services.report_service import DashboardStats, LiveActivity, TimeReport
from .auth_deps import AccessContext, get_valet_app, require_admin

router = APIRouter(prefix="/api/admin", tags=["admin"])


class StatusChange(BaseModel):
    active: Optional[bool] = None  # None toggles


class RoleChange(BaseModel):
    is_admin: Optional[bool] = None  # None toggles


def _valet_public(valet: ValetAccount) -> Dict[str, Any]:
    return valet.model_dump(mode="json")


@router.get("/setup")
async def setup_status(request: Request) -> Dict[str, bool]:
    return {"setup_required": await get_valet_app(request).admin_service.setup_required()}


@router.post("/setup", status_code=status.HTTP_201_CREATED)
async def setup(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    full_name: str = Form(...),
    department: Optional[str] = Form(None),
) -> Dict[str, Any]:
    """Create the first administrator (credential + admins document)"""
    admin = await get_valet_app(request).admin_service.setup_first_admin(email, password, full_name, department)
    return {"success": True, "id": admin.id}


@router.post("/create-valet", response_model=ProvisionResult)
async def create_valet(
    payload: ValetProvisionRequest,
    request: Request,
    ctx: AccessContext = Depends(require_admin),
) -> ProvisionResult:
    return await get_valet_app(request).admin_service.provision_valet(ctx.role, payload)


@router.get("/valets")
async def list_valets(
    request: Request,
    status_filter: str = Query("all", alias="status", pattern="^(all|active|inactive)$"),
    search: Optional[str] = None,
    ctx: AccessContext = Depends(require_admin),
) -> List[Dict[str, Any]]:
    valets = await get_valet_app(request).admin_service.list_valets(ctx.role, status=status_filter, search=search)
    return [_valet_public(v) for v in valets]


@router.post("/valets/{valet_id}/status")
async def change_status(
    valet_id: str,
    payload: StatusChange,
    request: Request,
    ctx: AccessContext = Depends(require_admin),
) -> Dict[str, Any]:
    service = get_valet_app(request).admin_service
    if payload.active is None:
        valet = await service.toggle_valet_status(ctx.role, valet_id)
    else:
        valet = await service.set_valet_active(ctx.role, valet_id, payload.active)
    return _valet_public(valet)


@router.post("/valets/{valet_id}/role")
async def change_role(
    valet_id: str,
    payload: RoleChange,
    request: Request,
    ctx: AccessContext = Depends(require_admin),
) -> Dict[str, Any]:
    service = get_valet_app(request).admin_service
    if payload.is_admin is None:
        valet = await service.toggle_valet_role(ctx.role, valet_id)
    else:
        valet = await service.set_valet_admin(ctx.role, valet_id, payload.is_admin)
    return _valet_public(valet)


@router.delete("/valets/{valet_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_valet(
    valet_id: str,
    request: Request,
    ctx: AccessContext = Depends(require_admin),
) -> None:
    await get_valet_app(request).admin_service.delete_valet(ctx.role, valet_id)


@router.get("/reports", response_model=TimeReport)
async def time_report(
    request: Request,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    valet_id: Optional[str] = None,
    ctx: AccessContext = Depends(require_admin),
) -> TimeReport:
    try:
        return await get_valet_app(request).report_service.time_report(
            ctx.role, start_date=start_date, end_date=end_date, valet_id=valet_id
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/stats", response_model=DashboardStats)
async def dashboard_stats(request: Request, ctx: AccessContext = Depends(require_admin)) -> DashboardStats:
    return await get_valet_app(request).report_service.dashboard_stats(ctx.role)


@router.get("/activity", response_model=LiveActivity, response_model_by_alias=False)
async def live_activity(
    request: Request,
    limit: int = Query(10, ge=1, le=100),
    ctx: AccessContext = Depends(require_admin),
) -> LiveActivity:
    return await get_valet_app(request).report_service.live_activity(ctx.role, limit=limit)
