"""
Authorization value types: resolved roles, verdicts, outcomes and notices.

None of these are persisted; they are recomputed from account documents on
every evaluation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional, Union

from .account import AdministratorAccount, ValetAccount

if TYPE_CHECKING:
    from .session import Session


class RoleKind(str, Enum):
    ADMIN = "admin"
    VALET = "valet"
    UNKNOWN = "unknown"


class AdminVariant(str, Enum):
    """The two ways an identity holds admin privileges"""
    DEDICATED_ADMIN = "dedicated_admin"
    PROMOTED_VALET = "promoted_valet"


class Verdict(str, Enum):
    PENDING = "pending"
    ADMIN = "admin"
    ACTIVE_VALET = "active_valet"
    # Lenient-mode grant for a deactivated valet (account-status pages only)
    INACTIVE_VALET = "inactive_valet"
    DENIED = "denied"


class DenialReason(str, Enum):
    DEACTIVATED = "deactivated"
    NOT_PROVISIONED = "not_provisioned"
    LOOKUP_FAILED = "lookup_failed"
    NOT_ADMIN = "not_admin"
    SIGNED_OUT = "signed_out"
    EXPIRED = "expired"


class Destination(str, Enum):
    ADMIN_AREA = "admin_area"
    VALET_AREA = "valet_area"
    SIGN_IN = "sign_in"


class LoginErrorCode(str, Enum):
    WRONG_PASSWORD = "wrong_password"
    ACCOUNT_DISABLED = "account_disabled"
    RATE_LIMITED = "rate_limited"
    UNKNOWN_EMAIL = "unknown_email"
    MISSING_EMAIL = "missing_email"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    PROVIDER_ERROR = "provider_error"


class ProvisioningErrorCode(str, Enum):
    EMAIL_EXISTS = "email_exists"
    INVALID_EMAIL = "invalid_email"
    WEAK_PASSWORD = "weak_password"
    MISSING_FIELDS = "missing_fields"
    PROVIDER_ERROR = "provider_error"


DENIAL_MESSAGES = {
    DenialReason.DEACTIVATED: "Your account has been deactivated. Please contact your administrator.",
    DenialReason.NOT_PROVISIONED: "Account not found in system. Please contact your administrator.",
    DenialReason.LOOKUP_FAILED: "Unable to verify account status. Please try logging in again.",
    DenialReason.NOT_ADMIN: "You do not have permission to access this area.",
    DenialReason.SIGNED_OUT: "You are not signed in.",
    DenialReason.EXPIRED: "Your session has expired. Please sign in again.",
}

LOGIN_ERROR_MESSAGES = {
    LoginErrorCode.WRONG_PASSWORD: "Incorrect password. If your account was recently reactivated, try resetting your password.",
    LoginErrorCode.ACCOUNT_DISABLED: "This account has been disabled. Please contact your administrator.",
    LoginErrorCode.RATE_LIMITED: "Too many failed attempts. Please wait and try again later.",
    LoginErrorCode.UNKNOWN_EMAIL: "No account exists for this email address.",
    LoginErrorCode.MISSING_EMAIL: "Please enter your email address.",
    LoginErrorCode.PROVIDER_UNAVAILABLE: "The sign-in service is unavailable. Please try again shortly.",
    LoginErrorCode.PROVIDER_ERROR: "Sign-in failed. Please try again.",
}


@dataclass(frozen=True)
class ResolvedRole:
    """Result of a role lookup for one user id"""
    kind: RoleKind
    profile: Optional[Union[AdministratorAccount, ValetAccount]] = None
    lookup_failed: bool = False
    error: Optional[str] = None

    @property
    def user_id(self) -> Optional[str]:
        return self.profile.id if self.profile is not None else None

    @property
    def is_active(self) -> bool:
        if self.kind == RoleKind.ADMIN:
            return True
        if self.kind == RoleKind.VALET:
            return self.profile.is_active
        return False

    @property
    def admin_variant(self) -> Optional[AdminVariant]:
        if self.kind == RoleKind.ADMIN:
            return AdminVariant.DEDICATED_ADMIN
        if self.kind == RoleKind.VALET and self.profile.is_promoted:
            return AdminVariant.PROMOTED_VALET
        return None

    @property
    def is_admin_equivalent(self) -> bool:
        return self.admin_variant is not None

    @property
    def valet(self) -> Optional[ValetAccount]:
        return self.profile if self.kind == RoleKind.VALET else None


@dataclass(frozen=True)
class Notice:
    """User-visible message queued for the next render"""
    level: str
    message: str


@dataclass
class GuardResult:
    """Access Guard decision for one evaluation"""
    verdict: Verdict
    reason: Optional[DenialReason] = None
    role: Optional[ResolvedRole] = None
    redirect: Optional[Destination] = None

    @property
    def authorized(self) -> bool:
        return self.verdict in (Verdict.ADMIN, Verdict.ACTIVE_VALET, Verdict.INACTIVE_VALET)

    @property
    def message(self) -> Optional[str]:
        return DENIAL_MESSAGES.get(self.reason) if self.reason else None


@dataclass
class Outcome:
    """Result of a session lifecycle operation"""
    success: bool
    destination: Destination = Destination.SIGN_IN
    reason: Optional[DenialReason] = None
    error_code: Optional[LoginErrorCode] = None
    message: Optional[str] = None
    session: Optional["Session"] = field(default=None, repr=False)

    @property
    def offer_password_reset(self) -> bool:
        return self.error_code == LoginErrorCode.WRONG_PASSWORD
