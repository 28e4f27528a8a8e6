"""Tests for the in-memory organization chart."""

import pytest

from approval_kernel.domain.approval import ApproverRole
from approval_kernel.services.directory import InMemoryDirectory


class TestResolveRoleHolder:

    def test_manager_is_direct_manager(self, directory):
        assert directory.resolve_role_holder("emp-1", ApproverRole.MANAGER).user_id == "mgr-1"
        assert directory.resolve_role_holder("mgr-1", ApproverRole.MANAGER).user_id == "head-eng"

    def test_department_head_of_submitter_department(self, directory):
        assert directory.resolve_role_holder("emp-2", "department-head").user_id == "head-eng"

    def test_company_roles(self, directory):
        assert directory.resolve_role_holder("emp-1", ApproverRole.CFO).user_id == "cfo-1"
        assert directory.resolve_role_holder("anyone", ApproverRole.CEO).user_id == "ceo-1"

    def test_missing_holder_is_none(self, directory):
        assert directory.resolve_role_holder("orphan-1", ApproverRole.MANAGER) is None
        assert directory.resolve_role_holder("ceo-1", ApproverRole.DEPARTMENT_HEAD) is None

    def test_specific_user_is_not_a_role(self, directory):
        assert directory.resolve_role_holder("emp-1", ApproverRole.SPECIFIC_USER) is None


class TestUsers:

    def test_unknown_user_is_none(self, directory):
        assert directory.resolve_user("ghost") is None

    def test_deactivated_user_still_resolves(self):
        d = InMemoryDirectory()
        d.add_user("u-1")

        d.deactivate("u-1")

        identity = d.resolve_user("u-1")
        assert identity is not None and not identity.is_active

    def test_display_name_defaults_to_id(self):
        assert InMemoryDirectory().add_user("u-1").display_name == "u-1"

    def test_only_company_roles_settable(self):
        with pytest.raises(ValueError):
            InMemoryDirectory().set_company_role(ApproverRole.MANAGER, "u-1")
