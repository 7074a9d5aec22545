"""
Session lifecycle: login, logout, password reset and forced logout.

The controller owns the session registry (token -> Session) and one
StatusMonitor per valet session. Forced logout is the single termination
path shared by the monitor and every AccessGuard.
"""

from datetime import datetime, timedelta
from typing import Dict, Optional

from ..models.account import utcnow_iso
from ..models.auth import (
    DENIAL_MESSAGES,
    LOGIN_ERROR_MESSAGES,
    DenialReason,
    Destination,
    LoginErrorCode,
    Outcome,
    ResolvedRole,
    RoleKind,
)
from ..models.session import CredentialIdentity, Session
from ..stores.credential_store import CredentialStore
from ..stores.document_store import VALETS_COLLECTION, DocumentStore
from ..utils.exceptions import CredentialError
from ..utils.logger import get_logger
from .access_guard import AccessGuard
from .role_resolver import RoleResolver
from .status_monitor import DEFAULT_POLL_INTERVAL, StatusMonitor

logger = get_logger(__name__)


def _login_error_code(error: CredentialError) -> LoginErrorCode:
    try:
        return LoginErrorCode(error.code)
    except ValueError:
        return LoginErrorCode.PROVIDER_ERROR


def _login_failure(code: LoginErrorCode) -> Outcome:
    return Outcome(
        success=False,
        destination=Destination.SIGN_IN,
        error_code=code,
        message=LOGIN_ERROR_MESSAGES[code],
    )


def _denied(reason: DenialReason) -> Outcome:
    return Outcome(
        success=False,
        destination=Destination.SIGN_IN,
        reason=reason,
        message=DENIAL_MESSAGES[reason],
    )


class SessionController:
    """Orchestrates credential store calls with role lookups"""

    def __init__(
        self,
        credentials: CredentialStore,
        store: DocumentStore,
        resolver: Optional[RoleResolver] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        session_expiry_hours: int = 24,
        ended_session_ttl_seconds: float = 3600,
    ):
        self.credentials = credentials
        self.store = store
        self.resolver = resolver or RoleResolver(store)
        self.poll_interval = poll_interval
        self.session_expiry_hours = session_expiry_hours
        self.ended_session_ttl_seconds = ended_session_ttl_seconds
        self.sessions: Dict[str, Session] = {}
        self._monitors: Dict[str, StatusMonitor] = {}

    # -- registry ------------------------------------------------------------

    def get_session(self, token: Optional[str]) -> Optional[Session]:
        """Look up a session by token; ended sessions are returned until discarded"""
        if not token:
            return None
        return self.sessions.get(token)

    def discard(self, session: Session) -> None:
        """Drop an ended session once its notices were shown"""
        if not session.is_live:
            self.sessions.pop(session.token, None)

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """
        End sessions past their expiry and drop ended sessions whose notice
        went uncollected for longer than `ended_session_ttl_seconds`.

        Returns the number of sessions removed from the registry.
        """
        now = now or datetime.utcnow()
        ttl = timedelta(seconds=self.ended_session_ttl_seconds)
        removed = 0
        for token, session in list(self.sessions.items()):
            if session.is_live and session.is_expired(now):
                await self.force_logout(session, DenialReason.EXPIRED)
            if not session.is_live and now - session.ended_at > ttl:
                self.sessions.pop(token, None)
                removed += 1
        if removed:
            logger.debug("Swept ended sessions", removed=removed, remaining=len(self.sessions))
        return removed

    def monitor_for(self, session: Session) -> Optional[StatusMonitor]:
        return self._monitors.get(session.token)

    def guard(self, require_active_valet: bool = True, require_admin: bool = False) -> AccessGuard:
        """Build an AccessGuard wired to this controller's forced logout"""
        return AccessGuard(
            self.resolver,
            self.force_logout,
            require_active_valet=require_active_valet,
            require_admin=require_admin,
        )

    # -- lifecycle -----------------------------------------------------------

    async def login(self, email: str, password: str) -> Outcome:
        """
        Authenticate, refresh the credential, resolve the role and pick a
        destination. Only Admin / active-valet outcomes carry a session.
        """
        await self.sweep()
        email = (email or "").strip()
        if not email:
            return _login_failure(LoginErrorCode.MISSING_EMAIL)

        try:
            identity = await self.credentials.authenticate(email, password or "")
        except CredentialError as e:
            code = _login_error_code(e)
            logger.info("Login rejected by credential store", email=email, error_code=code.value)
            return _login_failure(code)

        try:
            identity = await self.credentials.refresh_token(identity, force=True)
        except CredentialError as e:
            logger.error("Credential refresh failed after login", user_id=identity.user_id, error=str(e))
            await self._sign_out_quietly(identity)
            return _login_failure(_login_error_code(e))

        role = await self.resolver.resolve_role(identity.user_id)

        if role.lookup_failed:
            await self._sign_out_quietly(identity)
            return _denied(DenialReason.LOOKUP_FAILED)

        if role.kind == RoleKind.UNKNOWN:
            logger.warning("Authenticated identity has no account", user_id=identity.user_id)
            await self._sign_out_quietly(identity)
            return _denied(DenialReason.NOT_PROVISIONED)

        if role.kind == RoleKind.VALET and not role.is_active:
            logger.info("Deactivated valet attempted login", user_id=identity.user_id)
            await self._sign_out_quietly(identity)
            return _denied(DenialReason.DEACTIVATED)

        if role.kind == RoleKind.VALET:
            await self._record_last_login(identity.user_id)

        destination = Destination.ADMIN_AREA if role.is_admin_equivalent else Destination.VALET_AREA
        session = self._open_session(identity, role)
        logger.info(
            "Login succeeded",
            user_id=identity.user_id,
            destination=destination.value,
            admin_variant=role.admin_variant.value if role.admin_variant else None,
        )
        return Outcome(success=True, destination=destination, session=session, message="Login successful!")

    async def logout(self, session: Optional[Session]) -> Outcome:
        """
        Sign out. Local state is always cleared; a provider failure is
        reported in the outcome but never raised.
        """
        if session is None:
            return Outcome(success=True, destination=Destination.SIGN_IN)

        await self._stop_monitor(session)
        session.end(DenialReason.SIGNED_OUT)
        self.sessions.pop(session.token, None)

        try:
            await self.credentials.sign_out(session.identity)
        except Exception as e:
            logger.exception("Credential sign-out failed; local session cleared", user_id=session.user_id, error=str(e))
            return Outcome(
                success=False,
                destination=Destination.SIGN_IN,
                error_code=LoginErrorCode.PROVIDER_ERROR,
                message="Signed out on this device, but the sign-in service could not be reached.",
            )

        logger.info("Logout", user_id=session.user_id)
        return Outcome(success=True, destination=Destination.SIGN_IN)

    async def request_password_reset(self, email: str) -> Outcome:
        email = (email or "").strip()
        if not email:
            return _login_failure(LoginErrorCode.MISSING_EMAIL)
        try:
            await self.credentials.send_password_reset(email)
        except CredentialError as e:
            code = _login_error_code(e)
            logger.info("Password reset rejected", email=email, error_code=code.value)
            return _login_failure(code)
        return Outcome(success=True, destination=Destination.SIGN_IN, message="Password reset email sent!")

    async def force_logout(self, session: Session, reason: DenialReason) -> bool:
        """
        Forced-logout sequence: sign out of the credential store, end the
        local session with a user-visible notice, stop its monitor.

        Returns False when the session had already ended, in which case
        nothing is done.
        """
        if not session.end(reason):
            return False
        logger.warning("Session terminated", user_id=session.user_id, reason=reason.value)
        await self._stop_monitor(session)
        await self._sign_out_quietly(session.identity)
        return True

    async def shutdown(self) -> None:
        """Cancel every status monitor"""
        for token in list(self._monitors):
            monitor = self._monitors.pop(token)
            await monitor.stop()

    # -- helpers -------------------------------------------------------------

    def _open_session(self, identity: CredentialIdentity, role: ResolvedRole) -> Session:
        session = Session.start(identity, role, expiry_hours=self.session_expiry_hours)
        self.sessions[session.token] = session
        monitor = StatusMonitor(session, self.resolver, self.force_logout, interval=self.poll_interval)
        if monitor.start():
            self._monitors[session.token] = monitor
        return session

    async def _stop_monitor(self, session: Session) -> None:
        monitor = self._monitors.pop(session.token, None)
        if monitor is not None:
            await monitor.stop()

    async def _sign_out_quietly(self, identity: CredentialIdentity) -> None:
        try:
            await self.credentials.sign_out(identity)
        except Exception as e:
            logger.exception("Credential sign-out failed", user_id=identity.user_id, error=str(e))

    async def _record_last_login(self, user_id: str) -> None:
        try:
            await self.store.update_document(VALETS_COLLECTION, user_id, {"lastLogin": utcnow_iso()})
        except Exception as e:
            logger.warning("Failed to record last login", user_id=user_id, error=str(e))
