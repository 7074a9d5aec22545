"""Explicit session value passed to the resolver, monitor and guard"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from .auth import DENIAL_MESSAGES, DenialReason, Notice, ResolvedRole


@dataclass
class CredentialIdentity:
    """Identity issued by a credential store after authentication"""
    user_id: str
    email: str
    id_token: Optional[str] = None
    refresh_token: Optional[str] = None


@dataclass
class Session:
    """
    One signed-in user on one device.

    Created at sign-in, refreshed by status polling, ended exactly once.
    Ended sessions keep their end reason so the next render can explain why
    the user was signed out.
    """
    identity: CredentialIdentity
    role: ResolvedRole
    token: str = field(default_factory=lambda: secrets.token_urlsafe(32))
    created_at: datetime = field(default_factory=datetime.utcnow)
    expires_at: Optional[datetime] = None
    refreshed_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    end_reason: Optional[DenialReason] = None
    notices: List[Notice] = field(default_factory=list)

    @classmethod
    def start(cls, identity: CredentialIdentity, role: ResolvedRole, expiry_hours: int = 24) -> "Session":
        now = datetime.utcnow()
        return cls(
            identity=identity,
            role=role,
            created_at=now,
            expires_at=now + timedelta(hours=expiry_hours),
        )

    @property
    def user_id(self) -> str:
        return self.identity.user_id

    @property
    def is_live(self) -> bool:
        return self.ended_at is None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.utcnow()) > self.expires_at

    def refresh(self, role: ResolvedRole) -> None:
        """Replace the account snapshot with a newer read"""
        if self.is_live:
            self.role = role
            self.refreshed_at = datetime.utcnow()

    def end(self, reason: DenialReason) -> bool:
        """
        Mark the session ended.

        Returns False when it had already ended, so callers can make their
        own side effects run once.
        """
        if not self.is_live:
            return False
        self.ended_at = datetime.utcnow()
        self.end_reason = reason
        if reason != DenialReason.SIGNED_OUT:
            self.notify("error", DENIAL_MESSAGES[reason])
        return True

    def notify(self, level: str, message: str) -> None:
        self.notices.append(Notice(level=level, message=message))

    def pop_notices(self) -> List[Notice]:
        notices, self.notices = self.notices, []
        return notices
