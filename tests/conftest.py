"""Shared fixtures: in-memory stores, a failure-injecting store wrapper, fast bcrypt"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from valetclock.auth.session_controller import SessionController
from valetclock.models.account import AdministratorAccount, ValetAccount
from valetclock.stores.credential_store import LocalCredentialStore
from valetclock.stores.document_store import (
    ADMINS_COLLECTION,
    VALETS_COLLECTION,
    DocumentStore,
    InMemoryDocumentStore,
)
from valetclock.utils.exceptions import CredentialServiceError, StoreError

PASSWORD = "secret123"


def run(coro):
    return asyncio.run(coro)


class FlakyStore(DocumentStore):
    """
    Wraps a store. While `failing` is set every read raises StoreError;
    `fail_writes` does the same for updates. `delay` slows reads down so
    tests can interleave other work with an in-flight lookup.
    """

    def __init__(self, inner: DocumentStore):
        self.inner = inner
        self.failing = False
        self.fail_writes = False
        self.delay = 0.0
        self.reads = 0

    async def _before_read(self):
        self.reads += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failing:
            raise StoreError("store unreachable")

    async def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        await self._before_read()
        return await self.inner.get_document(collection, doc_id)

    async def set_document(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        await self.inner.set_document(collection, doc_id, fields)

    async def update_document(self, collection: str, doc_id: str, partial: Dict[str, Any]) -> None:
        if self.fail_writes:
            raise StoreError("store unreachable")
        await self.inner.update_document(collection, doc_id, partial)

    async def delete_document(self, collection: str, doc_id: str) -> None:
        await self.inner.delete_document(collection, doc_id)

    async def query_collection(self, collection: str, filters=None, ordering=None, limit=None) -> List[Dict[str, Any]]:
        await self._before_read()
        return await self.inner.query_collection(collection, filters, ordering, limit)


class CountingCredentialStore(LocalCredentialStore):
    """Local credential store that counts sign-outs and can fail them"""

    def __init__(self):
        super().__init__(bcrypt_rounds=4, max_failed_attempts=3, lockout_seconds=60)
        self.sign_out_calls = 0
        self.fail_sign_out = False

    async def sign_out(self, identity) -> None:
        self.sign_out_calls += 1
        if self.fail_sign_out:
            raise CredentialServiceError("provider unreachable")
        await super().sign_out(identity)


@pytest.fixture
def store() -> FlakyStore:
    return FlakyStore(InMemoryDocumentStore())


@pytest.fixture
def credentials() -> CountingCredentialStore:
    return CountingCredentialStore()


@pytest.fixture
def controller(store, credentials) -> SessionController:
    return SessionController(credentials, store, poll_interval=0.05)


async def add_valet(store, credentials, email: str, **fields) -> str:
    """Register a credential and its valet document; returns the user id"""
    user_id = await credentials.create_user(email, PASSWORD)
    valet = ValetAccount(id=user_id, email=email, full_name=email.split("@")[0], **fields)
    await store.set_document(VALETS_COLLECTION, user_id, valet.to_document())
    return user_id


async def add_admin(store, credentials, email: str) -> str:
    user_id = await credentials.create_user(email, PASSWORD)
    admin = AdministratorAccount(id=user_id, email=email, full_name="Admin")
    await store.set_document(ADMINS_COLLECTION, user_id, admin.to_document())
    return user_id


class TerminationRecorder:
    """Stands in for SessionController.force_logout"""

    def __init__(self):
        self.calls = []

    async def __call__(self, session, reason):
        ended = session.end(reason)
        self.calls.append((session.user_id, reason))
        return ended
