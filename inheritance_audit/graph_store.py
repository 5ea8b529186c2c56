#!/usr/bin/env python3
"""
OneDrive tree store backed by the Microsoft Graph API.

Resolves items, lists folder children and fetches raw permission lists,
using the OAuth token rclone keeps in ~/.config/rclone/rclone.conf.

Status handling:
- 404 -> NotFound
- 403 -> AccessDenied (permission lists degrade instead of raising)
- 401 or no answer at all -> GraphUnavailable
- anything else non-200 -> GraphApiError
"""

import logging
from enum import Enum
from typing import Dict, List, NamedTuple, Optional
from urllib.parse import quote

import requests

from .diff import RootGrant
from .errors import AccessDenied, GraphApiError, GraphUnavailable, NotFound
from .permissions import IDENTITY_KINDS, RawGrants, identity_of

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
REQUEST_TIMEOUT = 30

# Highest role wins when a permission carries several
ROLE_PRECEDENCE = ("owner", "write", "read")


class NodeKind(Enum):
    CONTAINER = "container"
    LEAF = "leaf"


class Node(NamedTuple):
    id: str
    name: str
    url: str
    kind: NodeKind

    @classmethod
    def from_item(cls, item: Dict) -> "Node":
        """Build a Node from a Graph driveItem. Shortcuts to remote folders are leaves."""
        is_folder = ("folder" in item or "root" in item) and "remoteItem" not in item
        return cls(
            id=item["id"],
            name=item.get("name", "Unknown"),
            url=item.get("webUrl", ""),
            kind=NodeKind.CONTAINER if is_folder else NodeKind.LEAF,
        )


def _identity_kind(identity_set: Optional[Dict]) -> str:
    for kind in IDENTITY_KINDS:
        if identity_set and identity_set.get(kind):
            return kind
    return "unknown"


def _top_role(roles: List[str]) -> str:
    for role in ROLE_PRECEDENCE:
        if role in roles:
            return role
    return roles[0] if roles else "unknown"


class GraphTreeStore:
    """
    Tree store over one OneDrive drive.

    Args:
        access_token: OAuth access token for Graph API
        drive_id: Optional drive id; defaults to the signed-in user's drive
    """

    def __init__(self, access_token: str, drive_id: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        self.headers = {"Authorization": f"Bearer {access_token}"}
        self.drive_id = drive_id
        self.drive_url = f"{GRAPH_BASE_URL}/drives/{drive_id}" if drive_id else f"{GRAPH_BASE_URL}/me/drive"
        self.http = session or requests

    def _get(self, url: str, operation: str) -> Dict:
        try:
            resp = self.http.get(url, headers=self.headers, timeout=REQUEST_TIMEOUT)
        except requests.exceptions.RequestException as e:
            raise GraphUnavailable(0, f"Network error: {e}", operation) from e

        if resp.status_code == 200:
            return resp.json()
        if resp.status_code == 401:
            raise GraphUnavailable(401, resp.text, operation)
        if resp.status_code == 404:
            raise NotFound(f"Item not found while trying to {operation}")
        if resp.status_code == 403:
            raise AccessDenied(f"Access denied while trying to {operation}")
        raise GraphApiError(resp.status_code, resp.text, operation)

    def _get_all(self, url: str, operation: str) -> List[Dict]:
        """Follow @odata.nextLink until every page has been read."""
        values = []
        while url:
            data = self._get(url, operation)
            values.extend(data.get("value", []))
            url = data.get("@odata.nextLink")
        return values

    def resolve(self, item_id: str) -> Node:
        item = self._get(f"{self.drive_url}/items/{item_id}", "get item")
        return Node.from_item(item)

    def resolve_path(self, item_path: Optional[str] = None) -> Node:
        """Resolve a folder by its path; None or "" means the drive root."""
        item_path = (item_path or "").strip("/")
        if item_path:
            url = f"{self.drive_url}/root:/{quote(item_path)}"
        else:
            url = f"{self.drive_url}/root"
        return Node.from_item(self._get(url, "get audit root"))

    def get_url(self, item_id: str) -> str:
        return self.resolve(item_id).url

    def list_children(self, item_id: str) -> List[Node]:
        items = self._get_all(f"{self.drive_url}/items/{item_id}/children", "list children")
        return [Node.from_item(item) for item in items]

    def _permissions(self, item_id: str) -> List[Dict]:
        return self._get_all(f"{self.drive_url}/items/{item_id}/permissions", "get permissions")

    def get_raw_grants(self, item_id: str) -> RawGrants:
        """
        Fetch the raw permission list of an item.

        An access-denied answer is not raised: it is recorded in the returned
        RawGrants so each facet degrades on its own.
        """
        try:
            return RawGrants(self._permissions(item_id))
        except AccessDenied as e:
            return RawGrants(error=e)

    def get_authoritative_root_grants(self, item_id: str) -> List[RootGrant]:
        """List every grant on the audit root with its inherited flag."""
        grants = []
        for perm in self._permissions(item_id):
            role = _top_role(perm.get("roles") or [])
            inherited = bool(perm.get("inheritedFrom"))
            grant_id = perm.get("id", "")
            link = perm.get("link") or {}

            if link.get("scope") == "anonymous":
                grants.append(RootGrant("anyone", role, "anyone", inherited, grant_id))
                continue
            if link.get("scope") == "organization":
                grants.append(RootGrant("domain", role, "domain", inherited, grant_id))
                continue

            identity_sets = []
            for key in ("grantedToV2", "grantedTo"):
                if perm.get(key):
                    identity_sets.append(perm[key])
                    break
            for key in ("grantedToIdentitiesV2", "grantedToIdentities"):
                if perm.get(key):
                    identity_sets.extend(perm[key])
                    break

            for identity_set in identity_sets:
                grants.append(RootGrant(identity_of(identity_set), role,
                                        _identity_kind(identity_set), inherited, grant_id))
        return grants

    def get_organization_domain(self) -> str:
        """Domain of the signed-in account, or "" when it cannot be read."""
        try:
            me = self._get(f"{GRAPH_BASE_URL}/me", "get signed-in user")
        except (NotFound, AccessDenied, GraphApiError) as e:
            logger.warning(f"Could not determine organization domain: {e}")
            return ""
        address = me.get("mail") or me.get("userPrincipalName") or ""
        return address.split("@", 1)[1] if "@" in address else ""
