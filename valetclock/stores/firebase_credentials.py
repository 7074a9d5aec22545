"""Firebase Authentication credential store (Identity Toolkit REST API)."""

import asyncio
from collections import OrderedDict
from typing import Any, Dict, Optional

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..models.auth import ProvisioningErrorCode
from ..models.session import CredentialIdentity
from ..utils.exceptions import (
    ConfigError,
    CredentialError,
    CredentialServiceError,
    InvalidCredentialError,
    ProvisioningError,
    RateLimitedError,
    UserDisabledError,
    UserNotFoundError,
)
from ..utils.logger import get_logger
from .credential_store import CredentialStore

logger = get_logger(__name__)

IDENTITY_BASE = "https://identitytoolkit.googleapis.com/v1"
SECURE_TOKEN_URL = "https://securetoken.googleapis.com/v1/token"

# Only recently created credentials can be rolled back; idTokens expire after an hour anyway
_MAX_ROLLBACK_TOKENS = 100

# Firebase error message prefix -> credential exception
_AUTH_ERRORS = {
    "INVALID_PASSWORD": InvalidCredentialError,
    "INVALID_LOGIN_CREDENTIALS": InvalidCredentialError,
    "EMAIL_NOT_FOUND": UserNotFoundError,
    "USER_NOT_FOUND": UserNotFoundError,
    "USER_DISABLED": UserDisabledError,
    "TOO_MANY_ATTEMPTS_TRY_LATER": RateLimitedError,
}

_PROVISIONING_ERRORS = {
    "EMAIL_EXISTS": (ProvisioningErrorCode.EMAIL_EXISTS, "An account with this email already exists"),
    "INVALID_EMAIL": (ProvisioningErrorCode.INVALID_EMAIL, "Invalid email address"),
    "WEAK_PASSWORD": (ProvisioningErrorCode.WEAK_PASSWORD, "Password is too weak. It should be at least 6 characters."),
}


def _error_code(data: Dict[str, Any]) -> Optional[str]:
    """Firebase messages look like "WEAK_PASSWORD : Password should be ..." """
    err = data.get("error")
    if not isinstance(err, dict):
        return None
    message = str(err.get("message", ""))
    return message.split(":", 1)[0].strip() or None


class FirebaseCredentialStore(CredentialStore):
    """
    Credential store backed by Firebase Authentication.

    Blocking HTTP calls run in a worker thread so the event loop stays
    responsive while a request is in flight.
    """

    def __init__(self, api_key: Optional[str], timeout: int = 30, session: Optional[requests.Session] = None):
        if not api_key:
            raise ConfigError("FIREBASE_API_KEY is required for the firebase credential provider")
        self.api_key = api_key
        self.timeout = timeout
        self.http = session or requests.Session()
        # user id -> idToken from signUp, so a just-created credential can be rolled back
        self._created_tokens: "OrderedDict[str, str]" = OrderedDict()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(CredentialServiceError),
        reraise=True,
    )
    def _post(self, url: str, **kwargs) -> Dict[str, Any]:
        """POST to Firebase; unreachable-provider errors are retried, classified errors are not"""
        try:
            r = self.http.post(url, params={"key": self.api_key}, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning("Firebase request failed", url=url, error=str(e))
            raise CredentialServiceError(f"Firebase request failed: {e}")
        try:
            data = r.json()
        except ValueError:
            raise CredentialServiceError(f"Firebase returned non-JSON response (HTTP {r.status_code})")
        if r.status_code >= 400 or "error" in data:
            code = _error_code(data) or f"HTTP_{r.status_code}"
            exc_type = _AUTH_ERRORS.get(code)
            if exc_type is not None:
                raise exc_type(code)
            if code in _PROVISIONING_ERRORS:
                prov_code, message = _PROVISIONING_ERRORS[code]
                raise ProvisioningError(message, prov_code)
            raise CredentialError(f"Firebase error: {code}")
        return data

    async def authenticate(self, email: str, password: str) -> CredentialIdentity:
        data = await asyncio.to_thread(
            self._post,
            f"{IDENTITY_BASE}/accounts:signInWithPassword",
            json={"email": email, "password": password, "returnSecureToken": True},
        )
        return CredentialIdentity(
            user_id=data["localId"],
            email=data.get("email", email),
            id_token=data.get("idToken"),
            refresh_token=data.get("refreshToken"),
        )

    async def sign_out(self, identity: CredentialIdentity) -> None:
        # The REST API has no client sign-out; dropping the tokens ends the session
        identity.id_token = None
        identity.refresh_token = None

    async def send_password_reset(self, email: str) -> None:
        await asyncio.to_thread(
            self._post,
            f"{IDENTITY_BASE}/accounts:sendOobCode",
            json={"requestType": "PASSWORD_RESET", "email": email},
        )

    async def refresh_token(self, identity: CredentialIdentity, force: bool = False) -> CredentialIdentity:
        if not force and identity.id_token:
            return identity
        if not identity.refresh_token:
            raise CredentialError("No refresh token available")
        data = await asyncio.to_thread(
            self._post,
            SECURE_TOKEN_URL,
            data={"grant_type": "refresh_token", "refresh_token": identity.refresh_token},
        )
        return CredentialIdentity(
            user_id=data.get("user_id", identity.user_id),
            email=identity.email,
            id_token=data.get("id_token"),
            refresh_token=data.get("refresh_token", identity.refresh_token),
        )

    async def create_user(self, email: str, password: str, display_name: Optional[str] = None) -> str:
        try:
            data = await asyncio.to_thread(
                self._post,
                f"{IDENTITY_BASE}/accounts:signUp",
                json={"email": email, "password": password, "returnSecureToken": True},
            )
        except ProvisioningError:
            raise
        except CredentialError as e:
            raise ProvisioningError(str(e), ProvisioningErrorCode.PROVIDER_ERROR)
        user_id = data["localId"]
        if data.get("idToken"):
            self._created_tokens[user_id] = data["idToken"]
            while len(self._created_tokens) > _MAX_ROLLBACK_TOKENS:
                self._created_tokens.popitem(last=False)
        logger.info("Firebase credential created", user_id=user_id)
        return user_id

    async def delete_user(self, user_id: str) -> None:
        id_token = self._created_tokens.pop(user_id, None)
        if id_token is None:
            raise CredentialError(f"No token on hand to delete credential '{user_id}'")
        await asyncio.to_thread(self._post, f"{IDENTITY_BASE}/accounts:delete", json={"idToken": id_token})
        logger.info("Firebase credential deleted", user_id=user_id)
