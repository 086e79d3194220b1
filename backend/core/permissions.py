from rest_framework.permissions import BasePermission, SAFE_METHODS

from .models import User


def user_has_role(user, *roles):
    if not user or not user.is_authenticated:
        return False
    return user.has_role(*roles)


class IsAdminRole(BasePermission):
    """Only users with the admin role"""
    message = 'Admin role required.'

    def has_permission(self, request, view):
        return user_has_role(request.user, User.ROLE_ADMIN)


class IsManagerOrAdmin(BasePermission):
    message = 'Manager or admin role required.'

    def has_permission(self, request, view):
        return user_has_role(request.user, User.ROLE_ADMIN, User.ROLE_MANAGER)


class ReadOnlyOrAdmin(BasePermission):
    """Any authenticated user may read; writes need the admin role"""
    message = 'Admin role required to modify this resource.'

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        if request.method in SAFE_METHODS:
            return True
        return user_has_role(request.user, User.ROLE_ADMIN)


def can_checkout(user):
    return user_has_role(user, User.ROLE_ADMIN, User.ROLE_MANAGER, User.ROLE_SALES)


class CanCheckout(BasePermission):
    """Reads are open to any authenticated user; recording or validating a sale needs a store role"""
    message = 'A store role is required to check out.'

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        if request.method in SAFE_METHODS:
            return True
        return can_checkout(request.user)
