"""
approval_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes the pure approval engines
    (approval_engines/) with the kernel's collaborators, clock and
    logging.  This is the **only** layer that holds per-expense state,
    reads the clock or calls collaborators.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction (checked by tests/architecture/test_import_boundaries.py):
        approval_services/ -> approval_engines/  (allowed)
        approval_services/ -> approval_kernel/   (allowed)
        approval_engines/  -> approval_services/ (FORBIDDEN)
        approval_kernel/   -> approval_services/ (FORBIDDEN)
"""

from approval_services.approval_service import ApprovalService

__all__ = ["ApprovalService"]
