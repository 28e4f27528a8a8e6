"""
Module: approval_kernel.models
Responsibility: SQLAlchemy ORM models of the approval kernel.  Importing
    this package registers every table on ``Base.metadata``.
"""

from approval_kernel.models.audit_event import ApprovalAuditEventModel

__all__ = ["ApprovalAuditEventModel"]
