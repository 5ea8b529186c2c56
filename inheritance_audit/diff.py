#!/usr/bin/env python3
"""
Inheritance diff between a parent's and a child's PermissionSet.

A child produces a finding when any identity has a different access level
than on its parent, or when public/organization link sharing differs. The
finding lists the child's complete access, not a delta.
"""

import logging
from typing import Dict, List, NamedTuple, Optional

from .permissions import AccessLevel, PermissionSet

logger = logging.getLogger(__name__)

INHERITED_ONLY_TEXT = "Inherited access only (differs from parent)"
PUBLIC_LABEL = "Public (anyone with the link)"
ROOT_MARKER_TEXT = "--- Root base permissions ---"
ROOT_EMPTY_TEXT = "No explicit permissions found at the root."

# Graph role name -> display role
ROLE_NAMES = {
    "owner": "Owner",
    "write": "Editor",
    "read": "Viewer",
}


class Finding(NamedTuple):
    path: str
    url: str
    kind: str
    access_text: str

    def as_row(self) -> List[str]:
        return [self.path, self.url, self.kind, self.access_text]


class RootGrant(NamedTuple):
    """One entry of the authoritative permission listing of the audit root."""
    identity: Optional[str]
    role: str
    type: str
    inherited: bool
    grant_id: str = ""
    domain: str = ""


def domain_text(domain_label: str) -> str:
    return f"Domain ({domain_label or 'your organization'})"


def diverging_identities(parent: PermissionSet, child: PermissionSet) -> List[str]:
    """Identities whose access level differs between parent and child."""
    parent_levels = parent.levels()
    child_levels = child.levels()
    return sorted(
        identity for identity in set(parent_levels) | set(child_levels)
        if parent_levels.get(identity, AccessLevel.NONE) != child_levels.get(identity, AccessLevel.NONE)
    )


def render_access(child: PermissionSet, domain_label: str = "") -> str:
    """Render the complete access of an item in the report's fixed order."""
    entries = []
    if child.public_access != AccessLevel.NONE:
        entries.append(f"{PUBLIC_LABEL} - {child.public_access.label}")
    if child.domain_access != AccessLevel.NONE:
        entries.append(f"{domain_text(domain_label)} - {child.domain_access.label}")
    entries.extend(f"{identity} - {AccessLevel.EDITOR.label}" for identity in sorted(child.editors))
    entries.extend(f"{identity} - {AccessLevel.VIEWER.label}" for identity in sorted(child.viewers))
    return ", ".join(entries) if entries else INHERITED_ONLY_TEXT


def compare(parent: PermissionSet, child: PermissionSet, path: str, url: str,
            kind: str, domain_label: str = "") -> Optional[Finding]:
    """
    Compare a child against the set it inherits from its parent.

    Returns:
        A Finding listing the child's complete access, or None when the child
        matches its parent
    """
    changed = diverging_identities(parent, child)
    link_changed = (parent.public_access != child.public_access
                    or parent.domain_access != child.domain_access)

    if not changed and not link_changed:
        return None

    logger.info(f"Permission difference found in: {path}")
    if changed:
        logger.debug(f"   identities with different access: {', '.join(changed)}")
    return Finding(path, url, kind, render_access(child, domain_label))


def _grant_label(grant: RootGrant, domain_label: str) -> str:
    if grant.type == "user":
        return grant.identity or f"user (ID: {grant.grant_id})"
    if grant.type == "group":
        return grant.identity or f"Group (ID: {grant.grant_id})"
    if grant.type == "anyone":
        return PUBLIC_LABEL
    if grant.type == "domain":
        return domain_text(grant.domain or domain_label)
    return grant.identity or f"{grant.type} (ID: {grant.grant_id})"


def role_name(role: str) -> str:
    return ROLE_NAMES.get(role, role[:1].upper() + role[1:])


def summarize_root(grants: List[RootGrant], root_label: str, url: str,
                   domain_label: str = "") -> List[Finding]:
    """
    Summarize the root's own grants, one row per role.

    Grants inherited from outside the audited tree are dropped before
    grouping; they would show up identically everywhere.
    """
    rows = [Finding(root_label, url, "Root", ROOT_MARKER_TEXT)]

    by_role: Dict[str, List[str]] = {}
    for grant in grants:
        if grant.inherited:
            continue
        label = _grant_label(grant, domain_label)
        labels = by_role.setdefault(role_name(grant.role), [])
        if label not in labels:
            labels.append(label)

    if not by_role:
        rows.append(Finding(root_label, url, "Root", ROOT_EMPTY_TEXT))
        return rows

    for role, labels in by_role.items():
        rows.append(Finding(root_label, url, f"Permission: {role}",
                            ", ".join(f"{label} - {role}" for label in labels)))
    return rows
