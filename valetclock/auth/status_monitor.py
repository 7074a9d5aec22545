"""
Continuous account-status enforcement for valet sessions.

Every `interval` seconds the monitor re-reads the valet record behind a
live session:

- session past its expiry: terminate (reason EXPIRED) without a read
- confirmed isActive flip true -> false: terminate (reason DEACTIVATED)
- confirmed record absence: terminate (reason NOT_PROVISIONED)
- read failure: keep the session and try again next interval
- anything else: refresh the session's account snapshot

The first read happens one full interval after start.
"""

import asyncio
from contextlib import suppress
from typing import Awaitable, Callable, Optional

from ..models.auth import DenialReason, ResolvedRole, RoleKind
from ..models.session import Session
from ..utils.exceptions import StoreError
from ..utils.logger import get_logger
from .role_resolver import RoleResolver

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL = 30.0

# (session, reason) -> True if this call ended the session
TerminateCallback = Callable[[Session, DenialReason], Awaitable[bool]]


class StatusMonitor:
    """Polls one session's valet record on a fixed interval"""

    def __init__(
        self,
        session: Session,
        resolver: RoleResolver,
        on_terminate: TerminateCallback,
        interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.session = session
        self.resolver = resolver
        self.on_terminate = on_terminate
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """
        Start polling in the running event loop.

        Returns False (and stays inert) for non-valet sessions: dedicated
        administrators have no active/inactive state to re-validate.
        """
        if self.session.role.kind != RoleKind.VALET or not self.session.is_live:
            return False
        if self.running:
            return True
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"status-monitor:{self.session.user_id}"
        )
        logger.debug("Status monitor started", user_id=self.session.user_id, interval=self.interval)
        return True

    async def stop(self) -> None:
        """Cancel the polling task; safe to call repeatedly and from inside the task"""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            # Called from the termination path inside the poll loop; the loop exits on its own
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def check_once(self) -> bool:
        """
        Run one status check.

        Returns True when the session is over (ended here or already ended).
        """
        session = self.session
        if not session.is_live:
            return True

        if session.is_expired():
            logger.info("Session expired", user_id=session.user_id)
            await self.on_terminate(session, DenialReason.EXPIRED)
            return True

        was_active = session.role.is_active
        try:
            valet = await self.resolver.fetch_valet(session.user_id)
        except StoreError as e:
            logger.warning(
                "Status check failed; keeping session",
                user_id=session.user_id,
                error=str(e),
            )
            return False

        # The session may have ended while the read was in flight
        if not session.is_live:
            return True

        if valet is None:
            logger.warning("Valet record no longer exists", user_id=session.user_id)
            await self.on_terminate(session, DenialReason.NOT_PROVISIONED)
            return True

        if was_active and not valet.is_active:
            logger.warning("Valet deactivated during live session", user_id=session.user_id)
            await self.on_terminate(session, DenialReason.DEACTIVATED)
            return True

        session.refresh(ResolvedRole(kind=RoleKind.VALET, profile=valet))
        return False

    async def _run(self) -> None:
        while self.session.is_live:
            await asyncio.sleep(self.interval)
            if not self.session.is_live:
                break
            try:
                if await self.check_once():
                    break
            except Exception as e:
                logger.exception("Status check crashed; keeping session", user_id=self.session.user_id, error=str(e))
        logger.debug("Status monitor stopped", user_id=self.session.user_id)
