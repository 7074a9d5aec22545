"""Custom exceptions for the valet clock-in system"""

from typing import Optional


class ValetClockError(Exception):
    """Base exception for Valet Clock"""
    pass


class ConfigError(ValetClockError):
    """Configuration error"""
    pass


class StoreError(ValetClockError):
    """Document store unreachable or returned unreadable data (transient)"""
    pass


class DocumentNotFoundError(StoreError):
    """Update targeted a document that does not exist"""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Document '{collection}/{doc_id}' not found")


class CredentialError(ValetClockError):
    """
    Error raised by a credential store.

    `code` is a LoginErrorCode value so callers can pick a recovery action
    without parsing the message.
    """

    code = "provider_error"

    def __init__(self, message: str, code: Optional[str] = None):
        if code is not None:
            self.code = code
        super().__init__(message)


class InvalidCredentialError(CredentialError):
    """Wrong password (or the provider refuses to say which part was wrong)"""
    code = "wrong_password"


class UserDisabledError(CredentialError):
    """Account disabled at the provider level"""
    code = "account_disabled"


class RateLimitedError(CredentialError):
    """Too many failed attempts"""
    code = "rate_limited"

    def __init__(self, message: str, retry_after: Optional[int] = None):
        self.retry_after = retry_after
        super().__init__(message)


class UserNotFoundError(CredentialError):
    """No credential registered for this email"""
    code = "unknown_email"


class CredentialServiceError(CredentialError):
    """Credential provider unreachable or answered with an unexpected error"""
    code = "provider_unavailable"


class ProvisioningError(ValetClockError):
    """Account provisioning failed with a classified reason"""

    def __init__(self, message: str, code: str):
        self.code = code
        super().__init__(message)


class AuthorizationError(ValetClockError):
    """Caller's verdict does not allow the requested operation"""

    def __init__(self, message: str, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(message)


class OperationNotAllowedError(ValetClockError):
    """Operation is well-formed but forbidden for this target"""
    pass
