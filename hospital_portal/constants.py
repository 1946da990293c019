"""
Portal-wide constants: roles, departments, categories, storage buckets and upload rules.
"""

from enum import Enum


class UserRole(str, Enum):
    """Portal roles stored on profiles.role."""
    AVP = "avp"
    DIVISION_HEAD = "division_head"
    DEPARTMENT_HEAD = "department_head"


# Roles allowed to soft-delete documents
DOCUMENT_MANAGER_ROLES = {UserRole.AVP.value, UserRole.DIVISION_HEAD.value}

PHARMACY_DEPARTMENT_CODE = "PHAR"

MEDICAL_RECORDS_TRANSACTION_CATEGORIES = (
    "Medical Certificate",
    "Medical Abstract",
    "Clinical Abstract",
    "Certified True Copy of Records",
    "Birth Certificate",
    "Death Certificate",
    "Insurance Claims",
    "PhilHealth Claims",
    "Records Retrieval",
    "Chart Completion",
)

# ============ STORAGE ============

DOCUMENTS_BUCKET = "documents"
ANNOUNCEMENT_MEMOS_BUCKET = "announcement-memos"
INCIDENT_FILES_BUCKET = "incident-files"

MAX_FILE_SIZE_BYTES = 25 * 1024 * 1024

PDF_MIME_TYPE = "application/pdf"

DOCUMENT_MIME_TYPES = (
    PDF_MIME_TYPE,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
)

INCIDENT_MIME_TYPES = (
    PDF_MIME_TYPE,
    "image/jpeg",
    "image/png",
    "image/webp",
)

# ============ MESSAGING LIMITS ============

THREAD_LIST_LIMIT = 60
UNREAD_THREAD_SCAN_LIMIT = 300
LATEST_MESSAGE_SCAN_LIMIT = 500
UNREAD_MESSAGE_SCAN_LIMIT = 5000
THREAD_MESSAGE_LIMIT = 250
