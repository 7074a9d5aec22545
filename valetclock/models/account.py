"""
Account and clock-event data models.

Documents are stored with camelCase keys (fullName, isActive, ...); the
models expose snake_case attributes and accept either form on input.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utcnow_iso() -> str:
    """Current UTC time as an ISO-8601 string (the stored timestamp format)"""
    return datetime.utcnow().isoformat()


class DocumentModel(BaseModel):
    """Base for models persisted in the document store"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]):
        return cls.model_validate({**data, "id": doc_id})

    def to_document(self) -> Dict[str, Any]:
        """Fields to write; the id is the document key, not a field"""
        return self.model_dump(by_alias=True, exclude={"id"}, mode="json")


class AdminPermissions(DocumentModel):
    """Capability flags carried by administrators"""
    manage_valets: bool = True
    view_reports: bool = True
    edit_clock_ins: bool = True
    export_data: bool = True


class AdministratorAccount(DocumentModel):
    """Dedicated administrator (document in the `admins` collection)"""
    id: str
    email: str
    full_name: str = ""
    department: Optional[str] = None
    role: str = "admin"
    permissions: AdminPermissions = Field(default_factory=AdminPermissions)
    created_at: str = Field(default_factory=utcnow_iso)

    @property
    def is_active(self) -> bool:
        # Administrators have no deactivation concept
        return True


class ValetAccount(DocumentModel):
    """Valet employee (document in the `valets` collection)"""
    id: str
    email: str
    full_name: str = ""
    phone_number: Optional[str] = None
    employee_id: Optional[str] = None
    department: Optional[str] = None
    is_active: bool = True
    is_admin: bool = False
    created_at: str = Field(default_factory=utcnow_iso)
    updated_at: Optional[str] = None
    last_login: Optional[str] = None
    created_by_admin: bool = False
    created_by: Optional[str] = None
    activated_at: Optional[str] = None
    activated_by: Optional[str] = None
    deactivated_at: Optional[str] = None
    deactivated_by: Optional[str] = None
    promoted_at: Optional[str] = None
    promoted_by: Optional[str] = None
    demoted_at: Optional[str] = None
    demoted_by: Optional[str] = None

    @field_validator("is_active", mode="before")
    @classmethod
    def _missing_means_active(cls, v: Any) -> Any:
        # Only an explicit false deactivates an account
        return True if v is None else v

    @field_validator("is_admin", mode="before")
    @classmethod
    def _missing_means_not_admin(cls, v: Any) -> Any:
        return False if v is None else v

    @property
    def is_promoted(self) -> bool:
        """Soft promotion: admin flag on an active valet record"""
        return self.is_admin and self.is_active


class ClockLocation(DocumentModel):
    """Caller-supplied position; reverse geocoding happens outside this package"""
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy: Optional[float] = None
    address: Optional[str] = None
    short_address: Optional[str] = None
    geocoded: bool = False

    @property
    def formatted(self) -> str:
        return f"{self.latitude:.6f}, {self.longitude:.6f}"

    def to_document(self) -> Dict[str, Any]:
        doc = super().to_document()
        doc["formatted"] = self.formatted
        return doc


class ClockEvent(DocumentModel):
    """One clock-in or clock-out record (document in `clockIns`)"""
    id: str
    valet_id: str
    valet_email: Optional[str] = None
    action: str = Field(pattern="^(clock_in|clock_out)$")
    timestamp: str = Field(default_factory=utcnow_iso)
    location: Optional[Dict[str, Any]] = None
    device_info: Dict[str, Any] = Field(default_factory=dict)
