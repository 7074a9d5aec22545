"""
Administrative operations on accounts.

Every operation takes the acting user's ResolvedRole and requires it to be
admin-equivalent (dedicated admin or promoted valet). Writes are single
document updates; the store's per-document atomicity is the only guarantee.
"""

import asyncio
import secrets
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from ..models.account import AdministratorAccount, AdminPermissions, ValetAccount, utcnow_iso
from ..models.auth import DenialReason, ProvisioningErrorCode, ResolvedRole
from ..stores.credential_store import CredentialStore, normalize_email
from ..stores.document_store import ADMINS_COLLECTION, VALETS_COLLECTION, DocumentStore
from ..utils.exceptions import (
    AuthorizationError,
    DocumentNotFoundError,
    OperationNotAllowedError,
    ProvisioningError,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

_PASSWORD_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
_PASSWORD_SPECIALS = "!@#$%"


def generate_temporary_password() -> str:
    """Six alphanumerics plus two specials, shuffled"""
    chars = [secrets.choice(_PASSWORD_CHARS) for _ in range(6)]
    chars += [secrets.choice(_PASSWORD_SPECIALS) for _ in range(2)]
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


class ValetProvisionRequest(BaseModel):
    email: str
    full_name: str
    password: Optional[str] = None
    phone_number: Optional[str] = None
    employee_id: Optional[str] = None
    department: Optional[str] = None


class ProvisionResult(BaseModel):
    success: bool = True
    id: str
    temporary_password: Optional[str] = None


class AdminService:
    """Valet management and administrator bootstrap"""

    def __init__(self, store: DocumentStore, credentials: CredentialStore):
        self.store = store
        self.credentials = credentials
        # Serializes first-run setup so only one administrator credential is ever created
        self._setup_lock = asyncio.Lock()

    @staticmethod
    def _require_admin(actor: ResolvedRole) -> str:
        if actor is None or not actor.is_admin_equivalent:
            raise AuthorizationError("Administrator access required", reason=DenialReason.NOT_ADMIN)
        return actor.user_id

    async def _require_valet(self, valet_id: str) -> ValetAccount:
        doc = await self.store.get_document(VALETS_COLLECTION, valet_id)
        if doc is None:
            raise DocumentNotFoundError(VALETS_COLLECTION, valet_id)
        return ValetAccount.from_document(valet_id, doc)

    # -- bootstrap -----------------------------------------------------------

    async def bootstrap_admin(
        self,
        user_id: str,
        email: str,
        full_name: str,
        department: Optional[str] = None,
    ) -> AdministratorAccount:
        """
        Create the first administrator record.

        Only allowed while the admins collection is empty; later admins are
        created by promoting valets.
        """
        existing = await self.store.query_collection(ADMINS_COLLECTION, limit=1)
        if existing:
            raise OperationNotAllowedError("An administrator already exists; setup is complete")

        admin = AdministratorAccount(
            id=user_id,
            email=email,
            full_name=full_name,
            department=department,
            permissions=AdminPermissions(),
        )
        await self.store.set_document(ADMINS_COLLECTION, user_id, admin.to_document())
        logger.info("Administrator bootstrapped", user_id=user_id)
        return admin

    async def setup_required(self) -> bool:
        return not await self.store.query_collection(ADMINS_COLLECTION, limit=1)

    async def setup_first_admin(
        self,
        email: str,
        password: str,
        full_name: str,
        department: Optional[str] = None,
    ) -> AdministratorAccount:
        """
        Create the first administrator's credential and admins record.

        Concurrent calls are serialized; every call after the first raises
        OperationNotAllowedError without creating a credential. If the
        record cannot be written the credential is deleted again.
        """
        async with self._setup_lock:
            if not await self.setup_required():
                raise OperationNotAllowedError("An administrator already exists; setup is complete")
            email = normalize_email(email)
            user_id = await self.credentials.create_user(email, password, display_name=full_name)
            try:
                return await self.bootstrap_admin(user_id, email, full_name, department)
            except Exception:
                await self._rollback_credential(user_id)
                raise

    async def _rollback_credential(self, user_id: str) -> None:
        try:
            await self.credentials.delete_user(user_id)
            logger.warning("Rolled back credential after failed account write", user_id=user_id)
        except Exception as e:
            logger.error("Failed to roll back credential; identity has no account", user_id=user_id, error=str(e))

    # -- provisioning --------------------------------------------------------

    async def provision_valet(self, actor: ResolvedRole, request: ValetProvisionRequest) -> ProvisionResult:
        """Create a credential and the matching valet document"""
        actor_id = self._require_admin(actor)

        if not (request.email or "").strip() or not (request.full_name or "").strip():
            raise ProvisioningError("Email and full name are required", ProvisioningErrorCode.MISSING_FIELDS)
        email = normalize_email(request.email)
        password = request.password or generate_temporary_password()

        user_id = await self.credentials.create_user(email, password, display_name=request.full_name)

        try:
            await self._write_new_valet(user_id, email, request, actor_id)
        except Exception:
            await self._rollback_credential(user_id)
            raise
        logger.info("Valet provisioned", user_id=user_id, created_by=actor_id)
        return ProvisionResult(
            id=user_id,
            temporary_password=None if request.password else password,
        )

    async def _write_new_valet(
        self, user_id: str, email: str, request: ValetProvisionRequest, actor_id: str
    ) -> None:
        now = utcnow_iso()
        valet = ValetAccount(
            id=user_id,
            email=email,
            full_name=request.full_name.strip(),
            phone_number=request.phone_number,
            employee_id=request.employee_id,
            department=request.department,
            is_active=True,
            is_admin=False,
            created_at=now,
            updated_at=now,
            created_by_admin=True,
            created_by=actor_id,
        )
        await self.store.set_document(VALETS_COLLECTION, user_id, valet.to_document())

    # -- status / role -------------------------------------------------------

    async def set_valet_active(self, actor: ResolvedRole, valet_id: str, active: bool) -> ValetAccount:
        actor_id = self._require_admin(actor)
        if not active and valet_id == actor_id:
            raise OperationNotAllowedError("You cannot deactivate your own account")
        await self._require_valet(valet_id)

        now = utcnow_iso()
        updates: Dict[str, Any] = {"isActive": active, "updatedAt": now}
        if active:
            updates.update(activatedAt=now, activatedBy=actor_id)
        else:
            updates.update(deactivatedAt=now, deactivatedBy=actor_id)
        await self.store.update_document(VALETS_COLLECTION, valet_id, updates)
        logger.info("Valet status changed", valet_id=valet_id, active=active, by=actor_id)
        return await self._require_valet(valet_id)

    async def toggle_valet_status(self, actor: ResolvedRole, valet_id: str) -> ValetAccount:
        valet = await self._require_valet(valet_id)
        return await self.set_valet_active(actor, valet_id, not valet.is_active)

    async def set_valet_admin(self, actor: ResolvedRole, valet_id: str, is_admin: bool) -> ValetAccount:
        """Promote or demote a valet; dedicated administrators cannot be targeted"""
        actor_id = self._require_admin(actor)
        if await self.store.get_document(ADMINS_COLLECTION, valet_id) is not None:
            raise OperationNotAllowedError("Dedicated administrators cannot be promoted or demoted")
        if not is_admin and valet_id == actor_id:
            raise OperationNotAllowedError("You cannot remove your own admin access")
        await self._require_valet(valet_id)

        now = utcnow_iso()
        updates: Dict[str, Any] = {"isAdmin": is_admin, "updatedAt": now}
        if is_admin:
            updates.update(promotedAt=now, promotedBy=actor_id)
        else:
            updates.update(demotedAt=now, demotedBy=actor_id)
        await self.store.update_document(VALETS_COLLECTION, valet_id, updates)
        logger.info("Valet role changed", valet_id=valet_id, is_admin=is_admin, by=actor_id)
        return await self._require_valet(valet_id)

    async def toggle_valet_role(self, actor: ResolvedRole, valet_id: str) -> ValetAccount:
        valet = await self._require_valet(valet_id)
        return await self.set_valet_admin(actor, valet_id, not valet.is_admin)

    async def delete_valet(self, actor: ResolvedRole, valet_id: str) -> None:
        actor_id = self._require_admin(actor)
        if valet_id == actor_id:
            raise OperationNotAllowedError("You cannot delete your own account")
        await self._require_valet(valet_id)
        await self.store.delete_document(VALETS_COLLECTION, valet_id)
        logger.info("Valet deleted", valet_id=valet_id, by=actor_id)

    async def list_valets(
        self,
        actor: ResolvedRole,
        status: str = "all",
        search: Optional[str] = None,
    ) -> List[ValetAccount]:
        """Valets newest first, optionally filtered by status and a search term"""
        self._require_admin(actor)
        filters = []
        if status == "active":
            filters.append(("isActive", "!=", False))
        elif status == "inactive":
            filters.append(("isActive", "==", False))
        elif status != "all":
            raise ValueError(f"Unknown status filter: {status}")

        docs = await self.store.query_collection(
            VALETS_COLLECTION, filters=filters, ordering=[("createdAt", "desc")]
        )
        valets = [ValetAccount.from_document(d.pop("id"), d) for d in docs]
        if search:
            term = search.strip().lower()
            valets = [
                v for v in valets
                if term in v.full_name.lower()
                or term in v.email.lower()
                or term in (v.employee_id or "").lower()
            ]
        return valets
