"""
Module: approval_kernel.services.directory
Responsibility: In-memory organization chart implementing the ``Directory``
    collaborator: users, reporting lines, department heads and the
    company-wide CFO and CEO.
Architecture position: Kernel > Services.  An adapter; production
    deployments put their HR system behind the same protocol.

Invariants enforced:
    - Role resolution is relative to the submitter: ``manager`` is the
      submitter's direct manager, ``department-head`` the head of the
      submitter's department; ``cfo`` and ``ceo`` are company-wide.
    - Inactive users are returned with ``is_active=False``; deciding what
      that means is the planner's job.
"""

from __future__ import annotations

import threading
from dataclasses import replace

from approval_kernel.domain.approval import ApproverRole, Identity


class InMemoryDirectory:
    """Org chart held in dictionaries.  Safe to read from many threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._users: dict[str, Identity] = {}
        self._managers: dict[str, str] = {}
        self._departments: dict[str, str] = {}
        self._department_heads: dict[str, str] = {}
        self._company_roles: dict[ApproverRole, str] = {}

    def add_user(
        self,
        user_id: str,
        display_name: str = "",
        *,
        manager_id: str | None = None,
        department: str | None = None,
        is_active: bool = True,
    ) -> Identity:
        identity = Identity(user_id=user_id, display_name=display_name or user_id, is_active=is_active)
        with self._lock:
            self._users[user_id] = identity
            if manager_id is not None:
                self._managers[user_id] = manager_id
            if department is not None:
                self._departments[user_id] = department
        return identity

    def set_department_head(self, department: str, user_id: str) -> None:
        with self._lock:
            self._department_heads[department] = user_id

    def set_company_role(self, role: ApproverRole | str, user_id: str) -> None:
        role = ApproverRole(role)
        if role not in (ApproverRole.CFO, ApproverRole.CEO):
            raise ValueError(f"{role.value} is not a company-wide role")
        with self._lock:
            self._company_roles[role] = user_id

    def deactivate(self, user_id: str) -> None:
        with self._lock:
            self._users[user_id] = replace(self._users[user_id], is_active=False)

    # Directory protocol

    def resolve_user(self, user_id: str) -> Identity | None:
        with self._lock:
            return self._users.get(user_id)

    def resolve_role_holder(self, submitter_id: str, role: ApproverRole) -> Identity | None:
        role = ApproverRole(role)
        with self._lock:
            if role == ApproverRole.MANAGER:
                holder = self._managers.get(submitter_id)
            elif role == ApproverRole.DEPARTMENT_HEAD:
                department = self._departments.get(submitter_id)
                holder = self._department_heads.get(department) if department else None
            elif role in (ApproverRole.CFO, ApproverRole.CEO):
                holder = self._company_roles.get(role)
            else:
                holder = None
            return self._users.get(holder) if holder is not None else None
