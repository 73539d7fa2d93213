"""Org scope resolution: which owners and target assignees a viewer can see.

Each role has an ordered list of strategies ("tiers").  Tiers are tried in
order and the first one that returns anyone wins; results from different
tiers are never merged.  The viewer is always part of their own scope.

    account_manager  self
    manager          team (manager_id links) -> department -> unassigned AMs*
    head             division -> head_id links
    admin            everyone

* The unassigned-account-manager tier is a heuristic carried over from the
  old dashboards.  It is off unless explicitly enabled.
"""

from __future__ import annotations

from typing import Callable, Iterable

from sales_pipeline.domain.records import (
    ROLE_ACCOUNT_MANAGER,
    ROLE_ADMIN,
    ROLE_HEAD,
    ROLE_MANAGER,
    OrgScope,
    UserProfile,
)
from sales_pipeline.errors import InvalidArgument

Strategy = Callable[[UserProfile, list[UserProfile]], list[UserProfile]]


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


def team_members(viewer: UserProfile, profiles: list[UserProfile]) -> list[UserProfile]:
    """Direct reports recorded through ``manager_id``."""
    return [p for p in profiles if p.manager_id == viewer.id and p.id != viewer.id]


def department_members(viewer: UserProfile, profiles: list[UserProfile]) -> list[UserProfile]:
    if not viewer.department_id:
        return []
    return [p for p in profiles if p.department_id == viewer.department_id and p.id != viewer.id]


def unassigned_account_managers(viewer: UserProfile, profiles: list[UserProfile]) -> list[UserProfile]:
    """Account managers with no manager at all (legacy heuristic)."""
    return [p for p in profiles if p.role == ROLE_ACCOUNT_MANAGER and not p.manager_id]


def division_members(viewer: UserProfile, profiles: list[UserProfile]) -> list[UserProfile]:
    if not viewer.division_id:
        return []
    return [p for p in profiles if p.division_id == viewer.division_id and p.id != viewer.id]


def head_reports(viewer: UserProfile, profiles: list[UserProfile]) -> list[UserProfile]:
    """Everyone linked to the head through ``head_id``, plus their direct reports."""
    direct = {p.id for p in profiles if p.head_id == viewer.id and p.id != viewer.id}
    return [
        p for p in profiles
        if p.id != viewer.id and (p.id in direct or p.manager_id in direct)
    ]


def everyone(viewer: UserProfile, profiles: list[UserProfile]) -> list[UserProfile]:
    return [p for p in profiles if p.id != viewer.id]


def strategies_for(role: str, include_unassigned: bool = False) -> list[tuple[str, Strategy]]:
    """Ordered (tier name, strategy) pairs for a role."""
    if role == ROLE_ACCOUNT_MANAGER:
        return []
    if role == ROLE_MANAGER:
        tiers: list[tuple[str, Strategy]] = [
            ("team", team_members),
            ("department", department_members),
        ]
        if include_unassigned:
            tiers.append(("unassigned_account_managers", unassigned_account_managers))
        return tiers
    if role == ROLE_HEAD:
        return [("division", division_members), ("head_links", head_reports)]
    if role == ROLE_ADMIN:
        return [("everyone", everyone)]
    raise InvalidArgument(f"Unknown role: {role!r}")


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def resolve_scope(
    viewer: UserProfile,
    profiles: Iterable[UserProfile],
    include_unassigned: bool = False,
) -> OrgScope:
    """Resolve the viewer's scope from the org hierarchy.

    Args:
        viewer: Profile of the user asking.
        profiles: All profiles the hierarchy walk may reach.
        include_unassigned: Enable the manager's third, heuristic tier.

    Returns:
        OrgScope with owner user ids, target-assignee profile ids, and the
        name of the tier that produced it (``"self"`` when no tier matched).
    """
    pool = list(profiles)
    members: list[UserProfile] = []
    resolved_by = "self"

    for name, strategy in strategies_for(viewer.role, include_unassigned):
        found = strategy(viewer, pool)
        if found:
            members = found
            resolved_by = name
            break

    scoped = [viewer, *members]
    return OrgScope(
        owner_ids=frozenset(p.user_id for p in scoped),
        profile_ids=frozenset(p.id for p in scoped),
        resolved_by=resolved_by,
        unrestricted=viewer.role == ROLE_ADMIN,
    )


def narrow_to_owner(scope: OrgScope, owner_id: str, profiles: Iterable[UserProfile]) -> OrgScope:
    """Restrict a scope to one rep (the "All reps" filter set to a single person).

    Raises:
        InvalidArgument: if the rep is outside the viewer's scope.
    """
    if not scope.unrestricted and owner_id not in scope.owner_ids:
        raise InvalidArgument(f"User {owner_id} is outside the viewer's scope")
    profile_ids = frozenset(p.id for p in profiles if p.user_id == owner_id)
    return OrgScope(
        owner_ids=frozenset({owner_id}),
        profile_ids=profile_ids,
        resolved_by=f"{scope.resolved_by}:owner",
        unrestricted=False,
    )
