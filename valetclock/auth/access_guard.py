"""
Access Guard: the gate in front of every protected view.

A guard instance belongs to one view. It starts Pending, resolves the
session's role, and settles on a verdict:

    Pending -> Admin | ActiveValet | InactiveValet | Denied

Denials caused by the account itself (deactivated, not provisioned, or not
verifiable) run the forced-logout sequence. That sequence is idempotent, so
re-evaluating a denied session never signs it out twice.
"""

from typing import Optional

from ..models.auth import (
    DenialReason,
    Destination,
    GuardResult,
    ResolvedRole,
    RoleKind,
    Verdict,
)
from ..models.session import Session
from ..utils.logger import get_logger
from .role_resolver import RoleResolver
from .status_monitor import TerminateCallback

logger = get_logger(__name__)

# Denials that end the session rather than just redirecting
_TERMINAL_REASONS = {
    DenialReason.DEACTIVATED,
    DenialReason.NOT_PROVISIONED,
    DenialReason.LOOKUP_FAILED,
}


def decide(role: ResolvedRole, require_active_valet: bool = True, require_admin: bool = False) -> GuardResult:
    """Pure verdict computation for a resolved role"""
    if role.lookup_failed:
        return GuardResult(Verdict.DENIED, DenialReason.LOOKUP_FAILED, role, Destination.SIGN_IN)

    if role.kind == RoleKind.ADMIN or role.is_admin_equivalent:
        return GuardResult(Verdict.ADMIN, role=role)

    if role.kind == RoleKind.VALET:
        if role.is_active:
            if require_admin:
                return GuardResult(Verdict.DENIED, DenialReason.NOT_ADMIN, role, Destination.VALET_AREA)
            return GuardResult(Verdict.ACTIVE_VALET, role=role)
        if require_active_valet:
            return GuardResult(Verdict.DENIED, DenialReason.DEACTIVATED, role, Destination.SIGN_IN)
        if require_admin:
            return GuardResult(Verdict.DENIED, DenialReason.NOT_ADMIN, role, Destination.VALET_AREA)
        return GuardResult(Verdict.INACTIVE_VALET, role=role)

    return GuardResult(Verdict.DENIED, DenialReason.NOT_PROVISIONED, role, Destination.SIGN_IN)


class AccessGuard:
    """
    Per-view authorization gate.

    Args:
        resolver: role lookup
        on_terminate: forced-logout sequence (normally SessionController.force_logout)
        require_active_valet: False lets deactivated valets through with
            Verdict.INACTIVE_VALET (account-status pages)
        require_admin: management views; active non-admins are redirected
            to the valet area without being signed out
    """

    def __init__(
        self,
        resolver: RoleResolver,
        on_terminate: TerminateCallback,
        require_active_valet: bool = True,
        require_admin: bool = False,
    ):
        self.resolver = resolver
        self.on_terminate = on_terminate
        self.require_active_valet = require_active_valet
        self.require_admin = require_admin
        self.result = GuardResult(Verdict.PENDING)
        self._session: Optional[Session] = None
        self._generation = 0

    @property
    def verdict(self) -> Verdict:
        return self.result.verdict

    def _settle(self, generation: int, result: GuardResult) -> GuardResult:
        if generation == self._generation:
            self.result = result
        return result

    async def evaluate(self, session: Optional[Session], require_active_valet: Optional[bool] = None) -> GuardResult:
        """
        Compute the verdict for `session`.

        Call again whenever the session reference changes. A lookup that
        completes after a newer evaluation started, or after its session
        ended, is discarded.
        """
        strict = self.require_active_valet if require_active_valet is None else require_active_valet
        self._generation += 1
        generation = self._generation
        self._session = session
        self.result = GuardResult(Verdict.PENDING)

        if session is None:
            return self._settle(generation, GuardResult(Verdict.DENIED, DenialReason.SIGNED_OUT, redirect=Destination.SIGN_IN))

        if not session.is_live:
            reason = session.end_reason or DenialReason.SIGNED_OUT
            return self._settle(generation, GuardResult(Verdict.DENIED, reason, redirect=Destination.SIGN_IN))

        if session.is_expired():
            await self.on_terminate(session, DenialReason.EXPIRED)
            return self._settle(generation, GuardResult(Verdict.DENIED, DenialReason.EXPIRED, redirect=Destination.SIGN_IN))

        role = await self.resolver.resolve_role(session.user_id)

        if generation != self._generation or self._session is not session:
            logger.debug("Discarding superseded role lookup", user_id=session.user_id)
            return self.result

        if not session.is_live:
            # Ended elsewhere (status monitor, logout) while the lookup was in flight
            reason = session.end_reason or DenialReason.SIGNED_OUT
            return self._settle(generation, GuardResult(Verdict.DENIED, reason, role, Destination.SIGN_IN))

        result = decide(role, require_active_valet=strict, require_admin=self.require_admin)
        if result.verdict == Verdict.DENIED and result.reason in _TERMINAL_REASONS:
            logger.warning("Access denied", user_id=session.user_id, reason=result.reason.value)
            await self.on_terminate(session, result.reason)
        return self._settle(generation, result)
