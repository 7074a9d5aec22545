import pytest
import requests
from tenacity import wait_none

from conftest import run

from valetclock.models.auth import ProvisioningErrorCode
from valetclock.models.session import CredentialIdentity
from valetclock.stores.firebase_credentials import IDENTITY_BASE, SECURE_TOKEN_URL, FirebaseCredentialStore
from valetclock.utils.exceptions import (
    ConfigError,
    CredentialError,
    CredentialServiceError,
    InvalidCredentialError,
    ProvisioningError,
    RateLimitedError,
    UserDisabledError,
    UserNotFoundError,
)


class FakeResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeHttp:
    """Records POSTs and replays queued responses; the last one repeats"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, params=None, timeout=None, **kwargs):
        self.calls.append({"url": url, "params": params, "timeout": timeout, **kwargs})
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(FirebaseCredentialStore._post.retry, "wait", wait_none())


def _error(message):
    return FakeResponse(400, {"error": {"code": 400, "message": message}})


def test_requires_api_key():
    with pytest.raises(ConfigError):
        FirebaseCredentialStore(None)


def test_authenticate_success():
    http = FakeHttp(FakeResponse(200, {
        "localId": "uid-1", "email": "val@valet.co", "idToken": "id-1", "refreshToken": "rt-1",
    }))
    store = FirebaseCredentialStore("key", timeout=5, session=http)

    identity = run(store.authenticate("val@valet.co", "secret"))

    assert identity == CredentialIdentity("uid-1", "val@valet.co", "id-1", "rt-1")
    call = http.calls[0]
    assert call["url"] == f"{IDENTITY_BASE}/accounts:signInWithPassword"
    assert call["params"] == {"key": "key"}
    assert call["timeout"] == 5
    assert call["json"]["returnSecureToken"] is True


@pytest.mark.parametrize(
    "message, exc_type",
    [
        ("INVALID_PASSWORD", InvalidCredentialError),
        ("INVALID_LOGIN_CREDENTIALS", InvalidCredentialError),
        ("EMAIL_NOT_FOUND", UserNotFoundError),
        ("USER_DISABLED", UserDisabledError),
        ("TOO_MANY_ATTEMPTS_TRY_LATER : Access to this account has been temporarily disabled", RateLimitedError),
    ],
)
def test_authenticate_error_mapping(message, exc_type):
    store = FirebaseCredentialStore("key", session=FakeHttp(_error(message)))

    with pytest.raises(exc_type):
        run(store.authenticate("val@valet.co", "secret"))


def test_network_failure_is_service_error():
    http = FakeHttp(requests.ConnectionError("down"))
    store = FirebaseCredentialStore("key", session=http)

    with pytest.raises(CredentialServiceError) as exc_info:
        run(store.authenticate("val@valet.co", "secret"))
    assert exc_info.value.code == "provider_unavailable"
    # Unreachable-provider errors are retried before giving up
    assert len(http.calls) == 3


def test_non_json_response_is_service_error():
    store = FirebaseCredentialStore("key", session=FakeHttp(FakeResponse(502, None)))

    with pytest.raises(CredentialServiceError):
        run(store.send_password_reset("val@valet.co"))


def test_refresh_token_forced():
    http = FakeHttp(FakeResponse(200, {"id_token": "id-2", "refresh_token": "rt-2", "user_id": "uid-1"}))
    store = FirebaseCredentialStore("key", session=http)
    identity = CredentialIdentity("uid-1", "val@valet.co", "id-1", "rt-1")

    unchanged = run(store.refresh_token(identity))
    refreshed = run(store.refresh_token(identity, force=True))

    assert unchanged is identity
    assert refreshed.id_token == "id-2"
    assert refreshed.refresh_token == "rt-2"
    assert http.calls[0]["url"] == SECURE_TOKEN_URL
    assert http.calls[0]["data"]["grant_type"] == "refresh_token"


@pytest.mark.parametrize(
    "message, code",
    [
        ("EMAIL_EXISTS", ProvisioningErrorCode.EMAIL_EXISTS),
        ("INVALID_EMAIL", ProvisioningErrorCode.INVALID_EMAIL),
        ("WEAK_PASSWORD : Password should be at least 6 characters", ProvisioningErrorCode.WEAK_PASSWORD),
        ("OPERATION_NOT_ALLOWED", ProvisioningErrorCode.PROVIDER_ERROR),
    ],
)
def test_create_user_errors(message, code):
    store = FirebaseCredentialStore("key", session=FakeHttp(_error(message)))

    with pytest.raises(ProvisioningError) as exc_info:
        run(store.create_user("new@valet.co", "secret1"))
    assert exc_info.value.code == code


def test_sign_out_drops_tokens():
    store = FirebaseCredentialStore("key", session=FakeHttp())
    identity = CredentialIdentity("uid-1", "val@valet.co", "id-1", "rt-1")

    run(store.sign_out(identity))

    assert identity.id_token is None and identity.refresh_token is None


def test_created_credential_can_be_deleted():
    http = FakeHttp(FakeResponse(200, {"localId": "uid-9", "idToken": "id-9"}), FakeResponse(200, {}))
    store = FirebaseCredentialStore("key", session=http)

    user_id = run(store.create_user("new@valet.co", "secret1"))
    run(store.delete_user(user_id))

    assert http.calls[1]["url"] == f"{IDENTITY_BASE}/accounts:delete"
    assert http.calls[1]["json"] == {"idToken": "id-9"}
    # The token is used once
    with pytest.raises(CredentialError):
        run(store.delete_user(user_id))
