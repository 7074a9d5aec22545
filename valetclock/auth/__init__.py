"""
Authorization core.

- RoleResolver: user id -> Admin / Valet / Unknown
- StatusMonitor: periodic re-validation of live valet sessions
- AccessGuard: per-view verdict with forced logout on denial
- SessionController: login / logout / password reset / forced logout
"""

from .access_guard import AccessGuard, decide
from .role_resolver import RoleResolver
from .session_controller import SessionController
from .status_monitor import StatusMonitor

__all__ = ["AccessGuard", "decide", "RoleResolver", "SessionController", "StatusMonitor"]
