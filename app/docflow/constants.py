"""
Central constants for the document workflow application.
"""
from __future__ import annotations

# Closed role enumeration. Users carry exactly one of these.
ROLES = (
    "student",
    "academic_staff",
    "department_head",
    "dean",
    "vice_chancellor",
    "assistant_registrar",
    "course_unit",
    "admin",
)

# Roles that may appear in an approval path.
APPROVER_ROLES = frozenset(
    {
        "academic_staff",
        "department_head",
        "dean",
        "vice_chancellor",
        "assistant_registrar",
        "course_unit",
    }
)

# Roles allowed to upload documents directly into a workflow.
UPLOADER_ROLES = frozenset(
    {
        "academic_staff",
        "department_head",
        "dean",
        "vice_chancellor",
        "assistant_registrar",
    }
)

DOCUMENT_TYPES = frozenset(
    {
        "transcript_request",
        "enrollment_verification",
        "grade_report",
        "certificate_verification",
        "letter_of_recommendation",
        "academic_record",
        "degree_verification",
        "other",
    }
)

# pending -> in_review -> completed | rejected
# ("approved" is kept for rows migrated from older data.)
DOCUMENT_STATUSES = ("pending", "in_review", "approved", "rejected", "completed")

ACTION_KINDS = ("uploaded", "reviewed", "approved", "rejected", "signed", "forwarded", "completed")

# Kinds that move a workflow to its next step.
ADVANCING_ACTIONS = frozenset({"approved", "forwarded", "signed"})

# Client verbs accepted by the action endpoint.
ACTION_ALIASES = {
    "approve": "approved",
    "forward": "forwarded",
    "sign": "signed",
    "reject": "rejected",
}

COMMENT_AUDIENCES = frozenset({"student", "next_reviewer", "both"})

DEFAULT_APPROVAL_PATH = ("academic_staff", "department_head", "dean")

DEFAULT_TEMPLATES = (
    {
        "name": "Transcript Request",
        "doc_type": "transcript_request",
        "description": "Request for official academic transcript",
        "approval_path": ["academic_staff", "dean", "assistant_registrar"],
    },
    {
        "name": "Enrollment Verification",
        "doc_type": "enrollment_verification",
        "description": "Verification of current enrollment status",
        "approval_path": ["academic_staff", "department_head", "dean"],
    },
    {
        "name": "Grade Report",
        "doc_type": "grade_report",
        "description": "Request for detailed grade report",
        "approval_path": ["academic_staff", "department_head"],
    },
    {
        "name": "Certificate Verification",
        "doc_type": "certificate_verification",
        "description": "Verification of academic certificates",
        "approval_path": ["academic_staff", "dean", "assistant_registrar"],
    },
    {
        "name": "Letter of Recommendation",
        "doc_type": "letter_of_recommendation",
        "description": "Request for academic recommendation letter",
        "approval_path": ["academic_staff", "department_head", "dean"],
    },
    {
        "name": "Degree Verification",
        "doc_type": "degree_verification",
        "description": "Verification of degree completion",
        "approval_path": ["academic_staff", "dean", "vice_chancellor", "assistant_registrar"],
    },
)
