"""Tests for org scope resolution."""

from __future__ import annotations

import pytest

from sales_pipeline.domain.org_scope import narrow_to_owner, resolve_scope, strategies_for
from sales_pipeline.domain.records import UserProfile
from sales_pipeline.errors import InvalidArgument


def _profile(pid: str, role: str = "account_manager", **kw) -> UserProfile:
    return UserProfile(id=pid, user_id=f"user-{pid}", role=role, full_name=pid.title(), **kw)


def _org() -> list[UserProfile]:
    return [
        _profile("mgr", "manager", department_id="d1", division_id="v1"),
        _profile("ann", manager_id="mgr", department_id="d1", division_id="v1"),
        _profile("ben", manager_id="mgr", department_id="d2", division_id="v1"),
        _profile("cat", department_id="d1", division_id="v1"),
        _profile("dan", department_id="d3", division_id="v2"),
        _profile("head", "head", division_id="v1"),
        _profile("adm", "admin"),
    ]


def _by_id(pid: str) -> UserProfile:
    return next(p for p in _org() if p.id == pid)


class TestResolveScope:
    def test_account_manager_sees_self(self):
        scope = resolve_scope(_by_id("ann"), _org())
        assert scope.owner_ids == {"user-ann"}
        assert scope.profile_ids == {"ann"}
        assert scope.resolved_by == "self"

    def test_manager_uses_team_first(self):
        scope = resolve_scope(_by_id("mgr"), _org())
        assert scope.profile_ids == {"mgr", "ann", "ben"}
        assert scope.resolved_by == "team"

    def test_tiers_are_not_merged(self):
        # cat shares the department but is not on the team.
        scope = resolve_scope(_by_id("mgr"), _org())
        assert "cat" not in scope.profile_ids

    def test_manager_falls_back_to_department(self):
        org = [p for p in _org() if p.manager_id != "mgr"]
        scope = resolve_scope(_by_id("mgr"), org)
        assert scope.profile_ids == {"mgr", "cat"}
        assert scope.resolved_by == "department"

    def test_unassigned_tier_is_opt_in(self):
        viewer = _profile("lone", "manager")
        org = [viewer, _profile("x"), _profile("y", manager_id="someone")]
        assert resolve_scope(viewer, org).profile_ids == {"lone"}
        scope = resolve_scope(viewer, org, include_unassigned=True)
        assert scope.profile_ids == {"lone", "x"}
        assert scope.resolved_by == "unassigned_account_managers"

    def test_head_sees_division(self):
        scope = resolve_scope(_by_id("head"), _org())
        assert scope.profile_ids == {"head", "mgr", "ann", "ben", "cat"}
        assert scope.resolved_by == "division"

    def test_head_falls_back_to_head_links(self):
        head = _profile("h2", "head")
        org = [head, _profile("m2", "manager", head_id="h2"), _profile("r2", manager_id="m2"), _profile("z")]
        scope = resolve_scope(head, org)
        assert scope.profile_ids == {"h2", "m2", "r2"}
        assert scope.resolved_by == "head_links"

    def test_admin_is_unrestricted(self):
        scope = resolve_scope(_by_id("adm"), _org())
        assert scope.unrestricted is True
        assert len(scope.profile_ids) == len(_org())

    def test_unknown_role(self):
        with pytest.raises(InvalidArgument):
            strategies_for("intern")


class TestNarrowToOwner:
    def test_narrow(self):
        scope = resolve_scope(_by_id("mgr"), _org())
        narrowed = narrow_to_owner(scope, "user-ann", _org())
        assert narrowed.owner_ids == {"user-ann"}
        assert narrowed.profile_ids == {"ann"}
        assert narrowed.resolved_by == "team:owner"

    def test_outside_scope(self):
        scope = resolve_scope(_by_id("mgr"), _org())
        with pytest.raises(InvalidArgument):
            narrow_to_owner(scope, "user-dan", _org())

    def test_admin_may_narrow_to_anyone(self):
        scope = resolve_scope(_by_id("adm"), _org())
        assert narrow_to_owner(scope, "user-dan", _org()).profile_ids == {"dan"}
