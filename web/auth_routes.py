"""
Authentication routes.

Prefix: /auth
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Form, Request, status
from fastapi.responses import JSONResponse

from valetclock.models.auth import DenialReason, LoginErrorCode, Outcome
from .auth_deps import (
    DESTINATION_PATHS,
    AccessContext,
    get_session,
    get_valet_app,
    require_account_page,
)

router = APIRouter(prefix="/auth", tags=["auth"])

_ERROR_STATUS = {
    LoginErrorCode.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    LoginErrorCode.PROVIDER_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    LoginErrorCode.MISSING_EMAIL: status.HTTP_400_BAD_REQUEST,
}

_REASON_STATUS = {
    DenialReason.DEACTIVATED: status.HTTP_403_FORBIDDEN,
    DenialReason.NOT_PROVISIONED: status.HTTP_403_FORBIDDEN,
    DenialReason.LOOKUP_FAILED: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _outcome_body(outcome: Outcome) -> Dict[str, Any]:
    return {
        "success": outcome.success,
        "destination": outcome.destination.value,
        "redirect": DESTINATION_PATHS[outcome.destination],
        "reason": outcome.reason.value if outcome.reason else None,
        "error_code": outcome.error_code.value if outcome.error_code else None,
        "message": outcome.message,
        "offer_password_reset": outcome.offer_password_reset,
    }


def _failure_status(outcome: Outcome) -> int:
    if outcome.reason is not None:
        return _REASON_STATUS.get(outcome.reason, status.HTTP_401_UNAUTHORIZED)
    return _ERROR_STATUS.get(outcome.error_code, status.HTTP_401_UNAUTHORIZED)


@router.post("/login")
async def login(request: Request, email: str = Form(""), password: str = Form("")) -> Any:
    """
    Sign in and report where the user should go next.

    Failures are classified (wrong password, disabled, rate limited, unknown
    email, deactivated, not provisioned) so the client can offer the right
    recovery action.
    """
    valet_app = get_valet_app(request)
    outcome = await valet_app.controller.login(email, password)
    body = _outcome_body(outcome)

    if not outcome.success:
        return JSONResponse(status_code=_failure_status(outcome), content=body)

    session = outcome.session
    role = session.role
    body["token"] = session.token
    body["user"] = {
        "id": session.user_id,
        "email": session.identity.email,
        "kind": role.kind.value,
        "admin_variant": role.admin_variant.value if role.admin_variant else None,
    }
    response = JSONResponse(status_code=status.HTTP_200_OK, content=body)
    response.set_cookie(
        key=valet_app.settings.auth.session_cookie_name,
        value=session.token,
        max_age=valet_app.settings.auth.session_expiry_hours * 3600,
        httponly=True,
        secure=valet_app.settings.app.environment == "production",
        samesite="lax",
    )
    return response


@router.post("/logout")
async def logout(request: Request) -> Any:
    """Sign out; always clears the session cookie"""
    valet_app = get_valet_app(request)
    outcome = await valet_app.controller.logout(get_session(request))
    response = JSONResponse(content=_outcome_body(outcome))
    response.delete_cookie(valet_app.settings.auth.session_cookie_name)
    return response


@router.post("/password-reset")
async def password_reset(request: Request, email: str = Form("")) -> Any:
    outcome = await get_valet_app(request).controller.request_password_reset(email)
    if not outcome.success:
        return JSONResponse(status_code=_failure_status(outcome), content=_outcome_body(outcome))
    return _outcome_body(outcome)


@router.get("/me")
async def me(ctx: AccessContext = Depends(require_account_page)) -> Dict[str, Any]:
    """Account status page; reachable by deactivated valets as well"""
    role = ctx.role
    return {
        "id": ctx.session.user_id,
        "email": ctx.session.identity.email,
        "verdict": ctx.result.verdict.value,
        "kind": role.kind.value,
        "admin_variant": role.admin_variant.value if role.admin_variant else None,
        "is_active": role.is_active,
        "account": role.profile.model_dump(mode="json") if role.profile else None,
        "notices": [{"level": n.level, "message": n.message} for n in ctx.session.pop_notices()],
    }
