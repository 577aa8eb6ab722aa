# access_policy.py — Role tiers, capability scopes and ownership predicates
# Every role comparison in the codebase goes through this module.
# All functions are pure: callers pass persisted values (the stored
# assignee / owner), never values taken from a request body.

from enum import Enum
from typing import Optional, Union

from errors import AuthorizationError
from models import UserRole

RoleLike = Union[UserRole, str]


class Tier(str, Enum):
    ADMIN = "admin"
    QC = "qc"
    CONTRIBUTOR = "contributor"


ROLE_TIERS = {
    UserRole.ADMIN: Tier.ADMIN,
    UserRole.PROJECT_MANAGER: Tier.ADMIN,
    UserRole.QC: Tier.QC,
    UserRole.DEVELOPER: Tier.CONTRIBUTOR,
    UserRole.DESIGNER: Tier.CONTRIBUTOR,
}

# Capability scopes per tier
TIER_PERMISSIONS = {
    Tier.ADMIN: frozenset({
        "tasks:read", "tasks:create", "tasks:update", "tasks:delete",
        "tasks:assign", "tasks:review",
        "time:track", "time:manage", "time:reports",
        "projects:read", "projects:write", "milestones:write",
    }),
    Tier.QC: frozenset({
        "tasks:read", "tasks:update", "tasks:review",
        "time:track",
        "projects:read",
    }),
    Tier.CONTRIBUTOR: frozenset({
        "tasks:read", "tasks:update",
        "time:track",
        "projects:read",
    }),
}


def _role(role: RoleLike) -> UserRole:
    return role if isinstance(role, UserRole) else UserRole(role)


def tier_of(role: RoleLike) -> Tier:
    return ROLE_TIERS[_role(role)]


def permissions_for(role: RoleLike) -> frozenset:
    return TIER_PERMISSIONS[tier_of(role)]


def can(role: RoleLike, scope: str) -> bool:
    return scope in permissions_for(role)


def require(role: RoleLike, scope: str, message: Optional[str] = None) -> None:
    if not can(role, scope):
        raise AuthorizationError(message or f"Missing required permission: {scope}")


def is_admin_tier(role: RoleLike) -> bool:
    return tier_of(role) == Tier.ADMIN


def is_qc_tier(role: RoleLike) -> bool:
    return tier_of(role) == Tier.QC


def restricted_to_own(role: RoleLike) -> bool:
    """Contributor-tier users only ever see resources assigned to them."""
    return tier_of(role) == Tier.CONTRIBUTOR


def owns(owner_id: Optional[str], actor_id: str) -> bool:
    return owner_id is not None and owner_id == actor_id


# ============================================================
# NAMED CHECKS
# ============================================================

def can_track_time_on(role: RoleLike, actor_id: str, task_assignee_id: Optional[str]) -> bool:
    """Admin-tier may track time on any task, everyone else only on their own."""
    if not can(role, "time:track"):
        return False
    return is_admin_tier(role) or owns(task_assignee_id, actor_id)


def can_modify_time_entry(role: RoleLike, actor_id: str, entry_owner_id: str) -> bool:
    return is_admin_tier(role) or owns(entry_owner_id, actor_id)


def can_view_task(role: RoleLike, actor_id: str, task_assignee_id: Optional[str]) -> bool:
    if restricted_to_own(role):
        return owns(task_assignee_id, actor_id)
    return can(role, "tasks:read")


def can_update_task(role: RoleLike, actor_id: str, task_assignee_id: Optional[str]) -> bool:
    if is_admin_tier(role):
        return True
    return can(role, "tasks:update") and owns(task_assignee_id, actor_id)


# QC works the status of tasks assigned to them; other fields stay with the owner
QC_TASK_FIELDS = frozenset({"status"})


def can_edit_task_fields(role: RoleLike, fields) -> bool:
    if is_qc_tier(role):
        return set(fields) <= QC_TASK_FIELDS
    return True


def can_reassign_task(role: RoleLike) -> bool:
    return can(role, "tasks:assign")


def can_delete_task(role: RoleLike) -> bool:
    return can(role, "tasks:delete")


def can_review_task(role: RoleLike) -> bool:
    return can(role, "tasks:review")


def can_view_time_of(role: RoleLike, actor_id: str, subject_user_id: str) -> bool:
    return is_admin_tier(role) or actor_id == subject_user_id
