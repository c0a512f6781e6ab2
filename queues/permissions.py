"""
Role based access control for the queue API.
"""
from rest_framework.permissions import BasePermission

STAFF_ROLES = {"reception", "doctor", "admin"}


class IsQueueStaff(BasePermission):
    """Reception, doctors and administrators may change queue state."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        return bool(user and user.is_authenticated and getattr(user, "role", None) in STAFF_ROLES)


class IsAdminRole(BasePermission):
    """Allow access only to administrators."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        return bool(user and user.is_authenticated and getattr(user, "role", None) == "admin")

