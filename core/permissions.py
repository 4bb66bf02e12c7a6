"""
Core — Permissions

Role checks backed by Django auth groups. Reads are open to any
authenticated user; stock movements need an operator role.

@file core/permissions.py
"""

from rest_framework.permissions import SAFE_METHODS, BasePermission

from core.constants import STOCK_ADMIN_ROLES, STOCK_OPERATOR_ROLES


def user_has_role(user, roles) -> bool:
    if not user or not user.is_authenticated:
        return False
    if user.is_superuser:
        return True
    return user.groups.filter(name__in=roles).exists()


class CanMoveStock(BasePermission):
    """Receive, deploy, return, reserve and ship: warehouse, installers, managers."""

    def has_permission(self, request, view):
        if request.method in SAFE_METHODS:
            return bool(request.user and request.user.is_authenticated)
        return user_has_role(request.user, STOCK_OPERATOR_ROLES)


class CanWriteOffStock(BasePermission):
    """Scrap, replacement, corrections and supply requests: warehouse and managers."""

    def has_permission(self, request, view):
        if request.method in SAFE_METHODS:
            return bool(request.user and request.user.is_authenticated)
        return user_has_role(request.user, STOCK_ADMIN_ROLES)
