"""
FastAPI dependencies for authentication and authorization.

Every protected route evaluates a fresh AccessGuard against the request's
session. Denials become HTTP errors whose detail carries the specific
reason, a user-facing message, pending notices and where to go next.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, status

from valetclock.app import ValetClockApp
from valetclock.models.auth import Destination, GuardResult, ResolvedRole
from valetclock.models.session import Session

DESTINATION_PATHS = {
    Destination.SIGN_IN: "/auth/login",
    Destination.VALET_AREA: "/dashboard",
    Destination.ADMIN_AREA: "/admin",
}


@dataclass
class AccessContext:
    """What a protected route gets: the live session and the guard's decision"""
    session: Session
    result: GuardResult

    @property
    def role(self) -> ResolvedRole:
        return self.result.role


def get_valet_app(request: Request) -> ValetClockApp:
    valet_app = getattr(request.app.state, "valet", None)
    if valet_app is None or valet_app.controller is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service is starting")
    return valet_app


def get_session_token(request: Request) -> Optional[str]:
    """Extract session token from request (Authorization header or cookie)"""
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:].strip()

    valet_app = getattr(request.app.state, "valet", None)
    cookie_name = "valet_session"
    if valet_app is not None and valet_app.settings is not None:
        cookie_name = valet_app.settings.auth.session_cookie_name
    return request.cookies.get(cookie_name)


def get_session(request: Request) -> Optional[Session]:
    return get_valet_app(request).controller.get_session(get_session_token(request))


def denial_detail(result: GuardResult, session: Optional[Session]) -> Dict[str, Any]:
    notices = session.pop_notices() if session is not None else []
    return {
        "verdict": result.verdict.value,
        "reason": result.reason.value if result.reason else None,
        "message": result.message,
        "redirect": DESTINATION_PATHS.get(result.redirect or Destination.SIGN_IN),
        "notices": [{"level": n.level, "message": n.message} for n in notices],
    }


def require_access(require_active_valet: bool = True, require_admin: bool = False):
    """Dependency factory wrapping AccessGuard.evaluate"""

    async def access_checker(request: Request) -> AccessContext:
        valet_app = get_valet_app(request)
        controller = valet_app.controller
        session = controller.get_session(get_session_token(request))

        guard = controller.guard(require_active_valet=require_active_valet, require_admin=require_admin)
        result = await guard.evaluate(session)

        if not result.authorized:
            detail = denial_detail(result, session)
            if session is not None and not session.is_live:
                controller.discard(session)
            code = (
                status.HTTP_401_UNAUTHORIZED
                if result.redirect in (None, Destination.SIGN_IN)
                else status.HTTP_403_FORBIDDEN
            )
            raise HTTPException(status_code=code, detail=detail)

        return AccessContext(session=session, result=result)

    return access_checker


# Pre-configured dependencies
require_valet = require_access()
require_admin = require_access(require_admin=True)
require_account_page = require_access(require_active_valet=False)
