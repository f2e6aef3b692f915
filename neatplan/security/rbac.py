"""Role-based access control for NeatPlan."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel

from neatplan.logging_config import get_logger

logger = get_logger(__name__)


class Role(StrEnum):
    """Admins manage everything; cleaners see and complete their work."""

    ADMIN = "admin"
    CLEANER = "cleaner"


class Permission(StrEnum):
    MANAGE_SCHEDULES = "manage_schedules"
    MANAGE_FACILITIES = "manage_facilities"
    VIEW_SCHEDULES = "view_schedules"
    COMPLETE_SCHEDULES = "complete_schedules"
    VIEW_REPORTS = "view_reports"
    MANAGE_SETTINGS = "manage_settings"
    RUN_MAINTENANCE = "run_maintenance"


ROLE_PERMISSIONS: dict[Role, set[Permission]] = {
    Role.ADMIN: set(Permission),
    Role.CLEANER: {
        Permission.VIEW_SCHEDULES,
        Permission.COMPLETE_SCHEDULES,
    },
}


class UserIdentity(BaseModel):
    """The caller of an API request."""

    user_id: str
    role: Role = Role.CLEANER
    display_name: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def has_permission(self, permission: Permission) -> bool:
        return permission in ROLE_PERMISSIONS.get(self.role, set())

    def require_permission(self, permission: Permission) -> None:
        """Raise PermissionError if the role does not grant ``permission``."""
        if not self.has_permission(permission):
            logger.warning(
                "permission_denied",
                user_id=self.user_id,
                role=self.role,
                permission=permission,
            )
            raise PermissionError(
                f"User '{self.user_id}' with role '{self.role}' lacks permission '{permission}'"
            )
