"""
Credential store interface and the bundled local provider.

The credential store exclusively owns identity and password material. The
application only ever sees a CredentialIdentity (stable user id + email +
opaque tokens).
"""

from __future__ import annotations

import asyncio
import json
import secrets
import shutil
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, Optional
from uuid import uuid4

import bcrypt
from pydantic import EmailStr, TypeAdapter, ValidationError

from ..models.account import utcnow_iso
from ..models.auth import ProvisioningErrorCode
from ..models.session import CredentialIdentity
from ..utils.exceptions import (
    ConfigError,
    CredentialError,
    InvalidCredentialError,
    ProvisioningError,
    RateLimitedError,
    UserDisabledError,
    UserNotFoundError,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

_email_adapter = TypeAdapter(EmailStr)


def normalize_email(email: str) -> str:
    """Validate an email address and return it lower-cased; raises ProvisioningError"""
    try:
        return str(_email_adapter.validate_python((email or "").strip())).lower()
    except ValidationError:
        raise ProvisioningError("Invalid email address", ProvisioningErrorCode.INVALID_EMAIL)


class CredentialStore(ABC):
    """Identity provider consumed by the session lifecycle controller"""

    @abstractmethod
    async def authenticate(self, email: str, password: str) -> CredentialIdentity:
        """
        Verify email/password.

        Raises InvalidCredentialError, UserDisabledError, RateLimitedError,
        UserNotFoundError or CredentialServiceError.
        """

    @abstractmethod
    async def sign_out(self, identity: CredentialIdentity) -> None:
        """End the provider-side session for this identity"""

    @abstractmethod
    async def send_password_reset(self, email: str) -> None:
        """Start the provider's password-reset flow for this email"""

    @abstractmethod
    async def refresh_token(self, identity: CredentialIdentity, force: bool = False) -> CredentialIdentity:
        """Return an identity carrying a fresh token"""

    @abstractmethod
    async def create_user(self, email: str, password: str, display_name: Optional[str] = None) -> str:
        """Register a credential and return its user id; raises ProvisioningError"""

    @abstractmethod
    async def delete_user(self, user_id: str) -> None:
        """Remove a credential created by this process; raises CredentialError"""


class LocalCredentialStore(CredentialStore):
    """
    bcrypt-backed credential store.

    Credentials live in a JSON file when `path` is given, in memory otherwise.
    Failed sign-ins are counted per email; `max_failed_attempts` failures
    within `lockout_seconds` lock the email out until the window passes.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        min_password_length: int = 6,
        max_failed_attempts: int = 5,
        lockout_seconds: int = 300,
        bcrypt_rounds: int = 12,
    ):
        self.path = Path(path) if path else None
        self.min_password_length = min_password_length
        self.max_failed_attempts = max_failed_attempts
        self.lockout_seconds = lockout_seconds
        self.bcrypt_rounds = bcrypt_rounds
        self._lock = threading.Lock()
        self._users: Dict[str, Dict[str, Any]] = self._load()
        self._refresh_tokens: Dict[str, str] = {}
        self._reset_codes: Dict[str, str] = {}
        self._failures: Dict[str, Deque[float]] = {}

    # -- persistence -------------------------------------------------------

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if not self.path or not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f).get("users", {})
        except (json.JSONDecodeError, OSError) as e:
            raise ConfigError(f"Failed to load credentials from {self.path}: {e}")

    def _save(self) -> None:
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            mode="w", dir=str(self.path.parent), delete=False, encoding="utf-8"
        ) as tf:
            json.dump({"users": self._users}, tf, indent=2, ensure_ascii=False)
            temp_path = Path(tf.name)
        try:
            shutil.move(str(temp_path), str(self.path))
        except Exception as e:
            if temp_path.exists():
                temp_path.unlink()
            raise ConfigError(f"Failed to save credentials to {self.path}: {e}")

    # -- helpers -----------------------------------------------------------

    def _hash_password(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self.bcrypt_rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def _verify_password(password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            return False

    def _find_by_email(self, email: str) -> Optional[str]:
        email = (email or "").strip().lower()
        return next((uid for uid, u in self._users.items() if u["email"] == email), None)

    def _check_rate_limit(self, email: str) -> None:
        window = self._failures.get(email)
        if window is None:
            return
        cutoff = time.monotonic() - self.lockout_seconds
        while window and window[0] < cutoff:
            window.popleft()
        if not window:
            del self._failures[email]
            return
        if len(window) >= self.max_failed_attempts:
            retry_after = int(window[0] + self.lockout_seconds - time.monotonic()) + 1
            raise RateLimitedError("Too many failed sign-in attempts", retry_after=max(retry_after, 1))

    def _issue(self, user_id: str) -> CredentialIdentity:
        refresh = secrets.token_urlsafe(32)
        self._refresh_tokens[refresh] = user_id
        return CredentialIdentity(
            user_id=user_id,
            email=self._users[user_id]["email"],
            id_token=secrets.token_urlsafe(32),
            refresh_token=refresh,
        )

    # -- CredentialStore ---------------------------------------------------

    async def authenticate(self, email: str, password: str) -> CredentialIdentity:
        key = (email or "").strip().lower()
        self._check_rate_limit(key)

        user_id = self._find_by_email(key)
        if user_id is None:
            raise UserNotFoundError("No account exists for this email")

        record = self._users[user_id]
        ok = await asyncio.to_thread(self._verify_password, password or "", record["password_hash"])
        if not ok:
            self._failures.setdefault(key, deque()).append(time.monotonic())
            raise InvalidCredentialError("Wrong password")
        if record.get("disabled"):
            raise UserDisabledError("Account disabled")

        self._failures.pop(key, None)
        return self._issue(user_id)

    async def sign_out(self, identity: CredentialIdentity) -> None:
        if identity.refresh_token:
            self._refresh_tokens.pop(identity.refresh_token, None)

    async def send_password_reset(self, email: str) -> None:
        user_id = self._find_by_email(email)
        if user_id is None:
            raise UserNotFoundError("No account exists for this email")
        code = secrets.token_urlsafe(24)
        self._reset_codes[code] = user_id
        # Delivery is handled outside this package
        logger.info("Password reset code issued", user_id=user_id)

    async def confirm_password_reset(self, code: str, new_password: str) -> None:
        user_id = self._reset_codes.pop(code, None)
        if user_id is None or user_id not in self._users:
            raise InvalidCredentialError("Invalid or expired reset code")
        if len(new_password or "") < self.min_password_length:
            raise ProvisioningError(
                f"Password should be at least {self.min_password_length} characters",
                ProvisioningErrorCode.WEAK_PASSWORD,
            )
        password_hash = await asyncio.to_thread(self._hash_password, new_password)
        with self._lock:
            self._users[user_id]["password_hash"] = password_hash
            self._save()
        self._failures.pop(self._users[user_id]["email"], None)

    async def refresh_token(self, identity: CredentialIdentity, force: bool = False) -> CredentialIdentity:
        user_id = self._refresh_tokens.get(identity.refresh_token or "")
        if user_id is None or user_id != identity.user_id:
            raise CredentialError("Session token has been revoked", code="provider_error")
        if self._users.get(user_id, {}).get("disabled"):
            raise UserDisabledError("Account disabled")
        if not force and identity.id_token:
            return identity
        return CredentialIdentity(
            user_id=user_id,
            email=identity.email,
            id_token=secrets.token_urlsafe(32),
            refresh_token=identity.refresh_token,
        )

    async def create_user(self, email: str, password: str, display_name: Optional[str] = None) -> str:
        normalized = normalize_email(email)
        if len(password or "") < self.min_password_length:
            raise ProvisioningError(
                f"Password is too weak. It should be at least {self.min_password_length} characters.",
                ProvisioningErrorCode.WEAK_PASSWORD,
            )
        password_hash = await asyncio.to_thread(self._hash_password, password)
        with self._lock:
            if self._find_by_email(normalized) is not None:
                raise ProvisioningError(
                    "An account with this email already exists", ProvisioningErrorCode.EMAIL_EXISTS
                )
            user_id = uuid4().hex
            self._users[user_id] = {
                "email": normalized,
                "password_hash": password_hash,
                "display_name": display_name,
                "disabled": False,
                "created_at": utcnow_iso(),
            }
            self._save()
        return user_id

    async def delete_user(self, user_id: str) -> None:
        with self._lock:
            record = self._users.pop(user_id, None)
            if record is None:
                raise UserNotFoundError(f"No credential with id '{user_id}'")
            self._save()
        self._refresh_tokens = {t: u for t, u in self._refresh_tokens.items() if u != user_id}
        self._failures.pop(record["email"], None)
        logger.info("Credential deleted", user_id=user_id)

    def set_disabled(self, user_id: str, disabled: bool = True) -> None:
        """Disable or re-enable a credential at the provider level"""
        with self._lock:
            if user_id not in self._users:
                raise UserNotFoundError(f"No credential with id '{user_id}'")
            self._users[user_id]["disabled"] = disabled
            self._save()
        if disabled:
            self._refresh_tokens = {t: u for t, u in self._refresh_tokens.items() if u != user_id}
