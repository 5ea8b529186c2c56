"""
Error taxonomy for the inheritance audit.

Only RootUnavailable aborts an audit. GraphUnavailable stops a session but
keeps the audit resumable. Everything else is contained at the node level
and turned into a log line or an error-kind finding.
"""

from typing import Optional


class AuditError(Exception):
    """Base class for all audit errors."""


class AccessDenied(AuditError):
    """A single permission facet of an item could not be read."""


class NotFound(AuditError):
    """An item vanished or is no longer reachable with the current token."""


class CorruptEntry(AuditError):
    """A persisted queue payload could not be decoded."""


class NoActiveAudit(AuditError):
    """A resume was requested but no audit state exists."""


class GraphApiError(AuditError):
    """Microsoft Graph answered with an unexpected status code."""

    def __init__(self, status_code: int, message: str, operation: str = "call Graph API"):
        super().__init__(f"Failed to {operation}: {status_code} {message}".strip())
        self.status_code = status_code
        self.operation = operation


class GraphUnavailable(GraphApiError):
    """
    Graph cannot be used at all: the network is down (status 0) or the
    token was rejected (401). Not a node-level failure; the session stops
    with the current folder still queued.
    """


class DriveMismatch(AuditError):
    """A resume was asked to walk a different drive than the audit started on."""


# Remediation text shown to the operator when the root cannot be opened
ROOT_REMEDIATION = {
    "api_not_enabled": (
        "The token was rejected by Microsoft Graph. Refresh it with: "
        "rclone config reconnect <remote> --onedrive-metadata-permissions read"
    ),
    "forbidden": (
        "Access denied. Make sure your account owns the folder or has an "
        "owner/manager role on the document library."
    ),
    "not_found": "Item not found - check that the path is correct.",
    "generic": "Could not open the audit root.",
}


class RootUnavailable(AuditError):
    """The audit root cannot be opened; the audit must not start."""

    def __init__(self, reason: str, detail: str = "", remediation: Optional[str] = None):
        if reason not in ROOT_REMEDIATION:
            reason = "generic"
        self.reason = reason
        self.detail = detail
        self.remediation = remediation or ROOT_REMEDIATION[reason]
        message = f"Audit root unavailable ({reason})"
        if detail:
            message += f": {detail}"
        super().__init__(message)
