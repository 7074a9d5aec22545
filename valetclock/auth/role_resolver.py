"""
Role resolution.

Lookup order is fixed: the `admins` collection first, then `valets`. A
dedicated administrator record must never be shadowed by a valet record
with the same id, so the order is part of the security contract.
"""

from typing import Optional

from pydantic import ValidationError

from ..models.account import AdministratorAccount, ValetAccount
from ..models.auth import ResolvedRole, RoleKind
from ..stores.document_store import ADMINS_COLLECTION, VALETS_COLLECTION, DocumentStore
from ..utils.exceptions import StoreError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class RoleResolver:
    """Maps a credential user id to Admin, Valet or Unknown"""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def resolve_role(self, user_id: str) -> ResolvedRole:
        """
        Resolve the role for a user id.

        Store failures and unreadable documents yield Unknown with
        lookup_failed=True; callers must treat that as "not verified",
        never as a grant.
        """
        if not user_id:
            return ResolvedRole(kind=RoleKind.UNKNOWN)

        try:
            admin_doc = await self.store.get_document(ADMINS_COLLECTION, user_id)
            if admin_doc is not None:
                return ResolvedRole(
                    kind=RoleKind.ADMIN,
                    profile=AdministratorAccount.from_document(user_id, admin_doc),
                )

            valet_doc = await self.store.get_document(VALETS_COLLECTION, user_id)
            if valet_doc is not None:
                return ResolvedRole(
                    kind=RoleKind.VALET,
                    profile=ValetAccount.from_document(user_id, valet_doc),
                )
        except StoreError as e:
            logger.error("Role lookup failed", user_id=user_id, error=str(e))
            return ResolvedRole(kind=RoleKind.UNKNOWN, lookup_failed=True, error=str(e))
        except ValidationError as e:
            logger.error("Account document is malformed", user_id=user_id, error=str(e))
            return ResolvedRole(kind=RoleKind.UNKNOWN, lookup_failed=True, error="malformed account document")

        return ResolvedRole(kind=RoleKind.UNKNOWN)

    async def fetch_valet(self, user_id: str) -> Optional[ValetAccount]:
        """
        Read only the valet record (used by status polling).

        Returns None when the record is confirmed absent; raises StoreError
        on transient failure.
        """
        doc = await self.store.get_document(VALETS_COLLECTION, user_id)
        if doc is None:
            return None
        try:
            return ValetAccount.from_document(user_id, doc)
        except ValidationError as e:
            raise StoreError(f"Valet document '{user_id}' is malformed: {e}")
