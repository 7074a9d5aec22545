"""Administrative and clock-in services built on the authorization core"""

from .admin_service import AdminService, ValetProvisionRequest, generate_temporary_password
from .clock_service import ClockService

__all__ = ["AdminService", "ValetProvisionRequest", "generate_temporary_password", "ClockService"]
