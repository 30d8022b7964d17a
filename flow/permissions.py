"""
Role based permission classes for the flow endpoints.
"""
from rest_framework.permissions import SAFE_METHODS, BasePermission

ADMIN_ROLES = {"admin"}
WARD_ROLES = {"admin", "nurse"}
QUEUE_ROLES = {"admin", "nurse", "clinician", "receptionist"}


def _has_role(request, roles) -> bool:
    user = getattr(request, "user", None)
    if not (user and user.is_authenticated):
        return False
    return bool(user.is_superuser or getattr(user, "role", None) in roles)


class IsAdminRole(BasePermission):
    """Allow access only to hospital administrators."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return _has_role(request, ADMIN_ROLES)


class IsWardStaff(BasePermission):
    """Nurses and admins: bed placement, discharge, overrides."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return _has_role(request, WARD_ROLES)


class IsQueueStaff(BasePermission):
    """Anyone at the front desk or on the floor may move queue entries."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return _has_role(request, QUEUE_ROLES)


class IsAdminOrReadOnly(BasePermission):
    """Read for any authenticated staff, writes for admins."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        if request.method in SAFE_METHODS:
            return bool(request.user and request.user.is_authenticated)
        return _has_role(request, ADMIN_ROLES)


class IsWardStaffOrReadOnly(BasePermission):
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        if request.method in SAFE_METHODS:
            return bool(request.user and request.user.is_authenticated)
        return _has_role(request, WARD_ROLES)


class IsQueueStaffOrReadOnly(BasePermission):
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        if request.method in SAFE_METHODS:
            return bool(request.user and request.user.is_authenticated)
        return _has_role(request, QUEUE_ROLES)
