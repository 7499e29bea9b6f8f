"""RBAC module/action registry and defaults."""
from __future__ import annotations

from typing import Literal

PermissionAction = Literal["view", "add", "edit", "delete"]

ACTION_BY_METHOD: dict[str, PermissionAction] = {
    "GET": "view",
    "HEAD": "view",
    "OPTIONS": "view",
    "POST": "add",
    "PUT": "edit",
    "PATCH": "edit",
    "DELETE": "delete",
}

SYSTEM_MODULES: list[dict[str, str]] = [
    {"key": "dashboard", "name": "Dashboard"},
    {"key": "users", "name": "Users"},
    {"key": "roles_permissions", "name": "Roles & Permissions"},
    {"key": "classes", "name": "Classes"},
    {"key": "sessions", "name": "Sessions"},
    {"key": "attendance", "name": "Attendance"},
    {"key": "enrollments", "name": "Enrollments"},
    {"key": "payments", "name": "Payments"},
    {"key": "batches", "name": "Batches"},
    {"key": "tickets", "name": "Support Tickets"},
    {"key": "chats", "name": "Chats"},
    {"key": "knowledge", "name": "Knowledge Base"},
    {"key": "materials", "name": "Materials"},
    {"key": "announcements", "name": "Announcements"},
    {"key": "contacts", "name": "Contact Messages"},
]


def _full_permissions() -> dict[str, bool]:
    return {"view": True, "add": True, "edit": True, "delete": True}


def _view_only() -> dict[str, bool]:
    return {"view": True, "add": False, "edit": False, "delete": False}


def _view_add() -> dict[str, bool]:
    return {"view": True, "add": True, "edit": False, "delete": False}


def _module_defaults(fill: dict[str, bool]) -> dict[str, dict[str, bool]]:
    return {module["key"]: dict(fill) for module in SYSTEM_MODULES}


DEFAULT_ROLE_PERMISSIONS: dict[str, dict[str, dict[str, bool]]] = {
    "admin": _module_defaults(_full_permissions()),
    "instructor": {
        **_module_defaults({"view": False, "add": False, "edit": False, "delete": False}),
        "dashboard": _view_only(),
        "classes": {"view": True, "add": False, "edit": True, "delete": False},
        "sessions": {"view": True, "add": True, "edit": True, "delete": False},
        "attendance": {"view": True, "add": True, "edit": True, "delete": False},
        "enrollments": _view_only(),
        "chats": _view_add(),
        "knowledge": _view_only(),
        "materials": {"view": True, "add": True, "edit": True, "delete": True},
        "announcements": {"view": True, "add": True, "edit": True, "delete": False},
        "batches": _view_only(),
    },
    "student": {
        **_module_defaults({"view": False, "add": False, "edit": False, "delete": False}),
        "classes": _view_only(),
        "sessions": _view_only(),
        "attendance": _view_add(),
        "enrollments": _view_add(),
        "payments": _view_add(),
        "batches": _view_only(),
        "tickets": _view_add(),
        "chats": _view_add(),
        "knowledge": _view_only(),
        "materials": _view_only(),
        "announcements": _view_only(),
    },
}
