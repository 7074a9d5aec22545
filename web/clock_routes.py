"""
Clock-in routes for valets.

Prefix: /api/clock
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from valetclock.models.account import ClockLocation
from .auth_deps import AccessContext, get_valet_app, require_valet

router = APIRouter(prefix="/api/clock", tags=["clock"])


class ClockRequest(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy: Optional[float] = None
    address: Optional[str] = None
    short_address: Optional[str] = None
    device_info: Dict[str, Any] = Field(default_factory=dict)


@router.post("")
async def toggle_clock(
    payload: ClockRequest,
    request: Request,
    ctx: AccessContext = Depends(require_valet),
) -> Dict[str, Any]:
    """Clock in or out depending on the last recorded action"""
    location = ClockLocation(
        latitude=payload.latitude,
        longitude=payload.longitude,
        accuracy=payload.accuracy,
        address=payload.address,
        short_address=payload.short_address,
        geocoded=bool(payload.address),
    )
    event = await get_valet_app(request).clock_service.toggle_clock(ctx.role, location, payload.device_info)
    return event.model_dump(mode="json")


@router.get("/history")
async def history(
    request: Request,
    limit: int = Query(50, ge=1, le=500),
    ctx: AccessContext = Depends(require_valet),
) -> List[Dict[str, Any]]:
    events = await get_valet_app(request).clock_service.history(ctx.session.user_id, limit=limit)
    return [e.model_dump(mode="json") for e in events]


@router.get("/today")
async def today(request: Request, ctx: AccessContext = Depends(require_valet)) -> Dict[str, Any]:
    return await get_valet_app(request).clock_service.today_summary(ctx.session.user_id, now=datetime.utcnow())
