"""Persistence and identity-provider adapters"""

from .credential_store import CredentialStore, LocalCredentialStore
from .document_store import (
    ADMINS_COLLECTION,
    CLOCK_INS_COLLECTION,
    VALETS_COLLECTION,
    DocumentStore,
    InMemoryDocumentStore,
    JsonDocumentStore,
)
from .firebase_credentials import FirebaseCredentialStore

__all__ = [
    "CredentialStore",
    "LocalCredentialStore",
    "FirebaseCredentialStore",
    "DocumentStore",
    "InMemoryDocumentStore",
    "JsonDocumentStore",
    "ADMINS_COLLECTION",
    "VALETS_COLLECTION",
    "CLOCK_INS_COLLECTION",
]
