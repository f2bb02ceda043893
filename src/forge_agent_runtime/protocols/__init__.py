"""Host-facing protocols used while a session runs."""

from .permission import (
    DEFAULT_PERMISSION_TIMEOUT_MS,
    PermissionAllow,
    PermissionDeny,
    PermissionHandler,
    PermissionMediator,
    PermissionOutcome,
    PermissionResult,
    ToolPermissionContext,
    allow_all,
)

__all__ = [
    "DEFAULT_PERMISSION_TIMEOUT_MS",
    "PermissionAllow",
    "PermissionDeny",
    "PermissionHandler",
    "PermissionMediator",
    "PermissionOutcome",
    "PermissionResult",
    "ToolPermissionContext",
    "allow_all",
]
