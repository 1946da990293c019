"""
Pydantic models for API request schemas.

These models are the portal's validation layer: every JSON body (and the
incident multipart form) is parsed through one of them before anything
reaches Supabase.
"""

from datetime import datetime
from typing import List, Optional
from enum import Enum
from uuid import UUID

from pydantic import (
    AwareDatetime,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

from hospital_portal.constants import (
    DOCUMENT_MIME_TYPES,
    MAX_FILE_SIZE_BYTES,
    MEDICAL_RECORDS_TRANSACTION_CATEGORIES,
    UserRole,
)

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
TIME_PATTERN = r"^\d{2}:\d{2}$"


class PortalModel(BaseModel):
    """Base model: trims every incoming string."""
    model_config = ConfigDict(str_strip_whitespace=True)

    def provided_fields(self) -> dict:
        """Fields explicitly present in the payload, serialized for Supabase."""
        return self.model_dump(mode="json", exclude_unset=True)


# ============ ENUMS ============

class AnnouncementPriority(str, Enum):
    """Announcement urgency levels."""
    NORMAL = "normal"
    URGENT = "urgent"
    CRITICAL = "critical"


class DocumentStatus(str, Enum):
    """Lifecycle of a stored document."""
    ACTIVE = "active"
    ARCHIVED = "archived"
    DELETED = "deleted"


class AuditAction(str, Enum):
    """Actions recorded in audit_logs."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    VIEW = "VIEW"
    DOWNLOAD = "DOWNLOAD"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    ACCESS_DENIED = "ACCESS_DENIED"


TransactionCategory = Enum(
    "TransactionCategory",
    {f"CATEGORY_{index}": name for index, name in enumerate(MEDICAL_RECORDS_TRANSACTION_CATEGORIES)},
    type=str,
)


def _reject_nulls(model: BaseModel, names) -> None:
    nulled = sorted(name for name in names if getattr(model, name) is None)
    if nulled:
        raise ValueError(f"Fields cannot be null: {', '.join(nulled)}")


def _check_scope(is_system_wide: Optional[bool], department_id: Optional[UUID], kind: str) -> None:
    if is_system_wide and department_id:
        raise ValueError(f"department_id must be null for system-wide {kind}")
    if is_system_wide is False and not department_id:
        raise ValueError(f"department_id is required for department-scoped {kind}")


# ============ ANNOUNCEMENT SCHEMAS ============

class AnnouncementCreate(PortalModel):
    """Schema for creating an announcement."""
    title: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=1, max_length=10000)
    priority: AnnouncementPriority = AnnouncementPriority.NORMAL
    is_system_wide: bool
    # Declared after is_system_wide so the scope check can see it
    department_id: Optional[UUID] = Field(default=None, validate_default=True)
    expires_at: Optional[AwareDatetime] = None
    memo_file_name: Optional[str] = Field(None, min_length=1, max_length=255)
    memo_storage_path: Optional[str] = Field(None, min_length=1, max_length=1024)
    memo_mime_type: Optional[str] = Field(None, min_length=1, max_length=255)
    memo_file_size_bytes: Optional[int] = Field(
        default=None, gt=0, le=MAX_FILE_SIZE_BYTES, validate_default=True
    )

    @field_validator("department_id")
    @classmethod
    def _department_matches_scope(cls, value: Optional[UUID], info: ValidationInfo):
        _check_scope(info.data.get("is_system_wide"), value, "announcements")
        return value

    @field_validator("memo_file_size_bytes")
    @classmethod
    def _memo_fields_together(cls, value: Optional[int], info: ValidationInfo):
        memo_values = [
            info.data.get("memo_file_name"),
            info.data.get("memo_storage_path"),
            info.data.get("memo_mime_type"),
            value,
        ]
        provided = sum(1 for item in memo_values if item is not None)
        if 0 < provided < len(memo_values):
            raise ValueError("memo attachment fields must be provided together")
        return value

    def to_row(self, user_id: str) -> dict:
        row = self.model_dump(mode="json")
        row["created_by"] = user_id
        return row


class AnnouncementUpdate(PortalModel):
    """Schema for updating an announcement (all fields optional)."""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    content: Optional[str] = Field(None, min_length=1, max_length=10000)
    priority: Optional[AnnouncementPriority] = None
    is_system_wide: Optional[bool] = None
    department_id: Optional[UUID] = None
    expires_at: Optional[AwareDatetime] = None

    @model_validator(mode="after")
    def _check_nulls_and_scope(self):
        _reject_nulls(self, self.model_fields_set - {"department_id", "expires_at"})
        if self.is_system_wide is True and self.department_id:
            raise ValueError("department_id must be null for system-wide announcements")
        return self


# ============ DOCUMENT SCHEMAS ============

class DocumentCreate(PortalModel):
    """Schema for registering an uploaded document."""
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    department_id: UUID
    storage_path: str = Field(..., min_length=1, max_length=1024)
    file_name: str = Field(..., min_length=1, max_length=255)
    file_size_bytes: int = Field(..., gt=0, le=MAX_FILE_SIZE_BYTES)
    mime_type: str
    checksum: str = Field(..., min_length=1, max_length=255)

    @field_validator("mime_type")
    @classmethod
    def _allowed_mime_type(cls, value: str) -> str:
        if value not in DOCUMENT_MIME_TYPES:
            raise ValueError("Unsupported document type. Allowed: PDF, DOCX, XLSX")
        return value

    def to_row(self, user_id: str) -> dict:
        row = self.model_dump(mode="json")
        row.update({"uploaded_by": user_id, "version": 1, "status": DocumentStatus.ACTIVE.value})
        return row


# ============ INCIDENT SCHEMAS ============

class IncidentCreate(PortalModel):
    """Schema for an SBAR incident report."""
    department_id: UUID
    date_of_reporting: str = Field(..., pattern=DATE_PATTERN)
    date_of_incident: str = Field(..., pattern=DATE_PATTERN)
    time_of_incident: str = Field(..., pattern=TIME_PATTERN)
    sbar_situation: str = Field(..., min_length=1, max_length=5000)
    sbar_background: str = Field(..., min_length=1, max_length=5000)
    sbar_assessment: str = Field(..., min_length=1, max_length=5000)
    sbar_recommendation: str = Field(..., min_length=1, max_length=5000)
    file_name: Optional[str] = Field(None, min_length=1, max_length=255)
    file_storage_path: Optional[str] = Field(None, min_length=1, max_length=1024)
    file_mime_type: Optional[str] = Field(None, min_length=1, max_length=255)
    file_size_bytes: Optional[int] = Field(None, gt=0, le=MAX_FILE_SIZE_BYTES)

    def to_row(self, user_id: str) -> dict:
        row = self.model_dump(mode="json")
        row["reported_by"] = user_id
        return row


class IncidentUpdate(PortalModel):
    """Schema for updating an incident."""
    sbar_situation: Optional[str] = Field(None, min_length=1, max_length=5000)
    sbar_background: Optional[str] = Field(None, min_length=1, max_length=5000)
    sbar_assessment: Optional[str] = Field(None, min_length=1, max_length=5000)
    sbar_recommendation: Optional[str] = Field(None, min_length=1, max_length=5000)
    is_resolved: Optional[bool] = None

    @model_validator(mode="after")
    def _provided_fields_not_null(self):
        _reject_nulls(self, self.model_fields_set)
        return self


# ============ METRIC SCHEMAS ============

class MetricBase(PortalModel):
    metric_date: str = Field(..., pattern=DATE_PATTERN)
    department_id: UUID
    subdepartment_id: Optional[UUID] = None
    revenue_total: float = Field(..., ge=0)
    pharmacy_revenue_inpatient: Optional[float] = Field(None, ge=0)
    pharmacy_revenue_opd: Optional[float] = Field(None, ge=0)
    monthly_input_count: int = Field(..., ge=0)
    census_total: int = Field(..., ge=0)
    census_opd: int = Field(..., ge=0)
    census_er: int = Field(..., ge=0)
    census_walk_in: Optional[int] = Field(None, ge=0)
    census_inpatient: Optional[int] = Field(None, ge=0)
    equipment_utilization_pct: float = Field(..., ge=0, le=100)
    notes: Optional[str] = Field(None, max_length=5000)


class MetricCreate(MetricBase):
    """Schema for a daily department metrics row."""

    def has_pharmacy_fields(self) -> bool:
        return self.pharmacy_revenue_inpatient is not None or self.pharmacy_revenue_opd is not None

    def to_row(self, user_id: str) -> dict:
        row = self.model_dump(mode="json")
        row.update({"created_by": user_id, "updated_by": user_id})
        return row


REQUIRED_METRIC_FIELDS = {
    name for name, field in MetricBase.model_fields.items() if field.is_required()
}


class MetricUpdate(PortalModel):
    """Partial metrics update; at least one field is required."""
    metric_date: Optional[str] = Field(None, pattern=DATE_PATTERN)
    department_id: Optional[UUID] = None
    subdepartment_id: Optional[UUID] = None
    revenue_total: Optional[float] = Field(None, ge=0)
    pharmacy_revenue_inpatient: Optional[float] = Field(None, ge=0)
    pharmacy_revenue_opd: Optional[float] = Field(None, ge=0)
    monthly_input_count: Optional[int] = Field(None, ge=0)
    census_total: Optional[int] = Field(None, ge=0)
    census_opd: Optional[int] = Field(None, ge=0)
    census_er: Optional[int] = Field(None, ge=0)
    census_walk_in: Optional[int] = Field(None, ge=0)
    census_inpatient: Optional[int] = Field(None, ge=0)
    equipment_utilization_pct: Optional[float] = Field(None, ge=0, le=100)
    notes: Optional[str] = Field(None, max_length=5000)

    @model_validator(mode="after")
    def _non_empty_and_required_not_null(self):
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        _reject_nulls(self, self.model_fields_set & REQUIRED_METRIC_FIELDS)
        return self

    def has_pharmacy_fields(self) -> bool:
        provided = self.model_fields_set & {"pharmacy_revenue_inpatient", "pharmacy_revenue_opd"}
        return any(getattr(self, name) is not None for name in provided)


def census_violations(
    census_total: int,
    census_opd: int,
    census_er: int,
    census_walk_in: Optional[int] = None,
    census_inpatient: Optional[int] = None,
) -> List[str]:
    """Return the census breakdown rules a row breaks (empty when valid)."""
    problems = []
    if census_opd + census_er > census_total:
        problems.append("census_opd + census_er must not exceed census_total")
    if (
        census_walk_in is not None
        and census_inpatient is not None
        and census_walk_in + census_inpatient > census_total
    ):
        problems.append("census_walk_in + census_inpatient must not exceed census_total")
    return problems


# ============ TRANSACTION CATEGORY SCHEMAS ============

class TransactionCategoryCount(PortalModel):
    category: TransactionCategory
    count: int = Field(..., ge=0)


class TransactionCategoryBatch(PortalModel):
    """Schema for a batch of Medical Records transaction counts for one day."""
    metric_date: str = Field(..., pattern=DATE_PATTERN)
    department_id: UUID
    entries: List[TransactionCategoryCount] = Field(..., min_length=1)

    def to_rows(self, user_id: str) -> List[dict]:
        return [
            {
                "metric_date": self.metric_date,
                "department_id": str(self.department_id),
                "category": entry.category.value,
                "count": entry.count,
                "created_by": user_id,
                "updated_by": user_id,
            }
            for entry in self.entries
        ]


class TransactionCategoryUpdate(PortalModel):
    count: int = Field(..., ge=0)


# ============ MESSAGING SCHEMAS ============

class MessageThreadCreate(PortalModel):
    """Schema for opening a thread together with its first message."""
    title: str = Field(..., min_length=1, max_length=255)
    body: str = Field(..., min_length=1, max_length=4000)
    is_system_wide: bool
    department_id: Optional[UUID] = Field(default=None, validate_default=True)

    @field_validator("department_id")
    @classmethod
    def _department_matches_scope(cls, value: Optional[UUID], info: ValidationInfo):
        _check_scope(info.data.get("is_system_wide"), value, "threads")
        return value


class MessageCreate(PortalModel):
    thread_id: UUID
    body: str = Field(..., min_length=1, max_length=4000)


class ThreadRead(PortalModel):
    thread_id: UUID


# ============ ADMIN SCHEMAS ============

class AdminUserCreate(PortalModel):
    """Schema for provisioning a portal user."""
    email: EmailStr
    full_name: str = Field(..., min_length=1)
    role: UserRole
    department_id: Optional[UUID] = None
    department_code: Optional[str] = None


class AdminPasswordReset(PortalModel):
    user_id: UUID
    new_password: str = Field(..., min_length=6)


# ============ AUTH SCHEMAS ============

class AuthenticatedUser(BaseModel):
    """The caller, as verified by Supabase Auth."""
    id: str
    email: Optional[str] = None
    access_token: str = Field(repr=False)


class TokenResponse(BaseModel):
    """Schema for authentication token response."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_token: Optional[str] = None
    user: dict


class ProfileResponse(BaseModel):
    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: Optional[UserRole] = None
    is_active: bool = True
    must_change_password: bool = False
    last_login_at: Optional[datetime] = None
