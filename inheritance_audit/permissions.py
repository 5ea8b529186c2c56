#!/usr/bin/env python3
"""
Permission model for OneDrive items.

Turns the raw Microsoft Graph permission list of an item into a PermissionSet:
a comparable, order-independent snapshot of who can edit, who can view, and
how far the item is shared through anonymous or organization links.

Graph role mapping:
- roles "owner" / "write"  -> Editor
- roles "read"             -> Viewer
- link scope "anonymous"    -> public access (anyone with the link)
- link scope "organization" -> domain access (everyone in the tenant)
- link scope "users"        -> grantees count as direct identities
"""

import json
import logging
from enum import IntEnum
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from .errors import AccessDenied, CorruptEntry

logger = logging.getLogger(__name__)

EDITOR_ROLES = {"owner", "write"}
VIEWER_ROLES = {"read"}

# Order matters: the first populated facet of an identity set wins
IDENTITY_KINDS = ("user", "group", "siteUser", "siteGroup", "application", "device")


class AccessLevel(IntEnum):
    NONE = 0
    VIEWER = 1
    EDITOR = 2

    @property
    def label(self) -> str:
        return {0: "None", 1: "Viewer", 2: "Editor"}[int(self)]


class PermissionSet:
    """
    Immutable snapshot of an item's effective access.

    A viewer that is also an editor is kept only under editors, so
    editors and viewers are always disjoint.
    """

    __slots__ = ("editors", "viewers", "public_access", "domain_access")

    def __init__(self, editors: Iterable[str] = (), viewers: Iterable[str] = (),
                 public_access: AccessLevel = AccessLevel.NONE,
                 domain_access: AccessLevel = AccessLevel.NONE):
        editor_set = frozenset(editors)
        object.__setattr__(self, "editors", editor_set)
        object.__setattr__(self, "viewers", frozenset(viewers) - editor_set)
        object.__setattr__(self, "public_access", AccessLevel(public_access))
        object.__setattr__(self, "domain_access", AccessLevel(domain_access))

    def __setattr__(self, name, value):
        raise AttributeError("PermissionSet is immutable")

    def __eq__(self, other) -> bool:
        if not isinstance(other, PermissionSet):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __repr__(self) -> str:
        return (f"PermissionSet(editors={sorted(self.editors)}, viewers={sorted(self.viewers)}, "
                f"public_access={self.public_access.label}, domain_access={self.domain_access.label})")

    def _key(self) -> Tuple:
        return (self.editors, self.viewers, self.public_access, self.domain_access)

    def levels(self) -> Dict[str, AccessLevel]:
        """Map every identity to its access level. Editor wins over Viewer."""
        mapping = {identity: AccessLevel.VIEWER for identity in self.viewers}
        mapping.update({identity: AccessLevel.EDITOR for identity in self.editors})
        return mapping

    def is_empty(self) -> bool:
        return (not self.editors and not self.viewers
                and self.public_access == AccessLevel.NONE
                and self.domain_access == AccessLevel.NONE)

    def to_json(self) -> str:
        """Serialize to a self-contained JSON document (used in queue entries)."""
        return json.dumps({
            "editors": sorted(self.editors),
            "viewers": sorted(self.viewers),
            "publicAccess": self.public_access.name,
            "domainAccess": self.domain_access.name,
        }, sort_keys=True)

    @classmethod
    def from_json(cls, payload: str) -> "PermissionSet":
        """
        Rebuild a PermissionSet from to_json() output.

        Raises:
            CorruptEntry: if the payload is not a valid serialized set
        """
        try:
            data = json.loads(payload)
            editors = data["editors"]
            viewers = data["viewers"]
            if not isinstance(editors, list) or not isinstance(viewers, list):
                raise ValueError("editors/viewers must be lists")
            if not all(isinstance(i, str) for i in editors + viewers):
                raise ValueError("identities must be strings")
            return cls(
                editors=editors,
                viewers=viewers,
                public_access=AccessLevel[data["publicAccess"]],
                domain_access=AccessLevel[data["domainAccess"]],
            )
        except (TypeError, ValueError, KeyError) as e:
            raise CorruptEntry(f"Invalid permission payload: {e}") from e


EMPTY_PERMISSION_SET = PermissionSet()


def identity_of(identity_set: Optional[Dict]) -> Optional[str]:
    """
    Build a stable identity string from a Graph identitySet.

    Principals with an e-mail are identified by the lower-cased address;
    the rest by "<kind>:<id>" so different principal kinds never collide.
    """
    if not identity_set:
        return None
    for kind in IDENTITY_KINDS:
        entity = identity_set.get(kind)
        if not entity:
            continue
        email = entity.get("email")
        if email:
            return email.lower()
        entity_id = entity.get("id") or entity.get("loginName") or entity.get("displayName")
        if entity_id:
            return f"{kind}:{entity_id}"
    return None


def _grantees(perm: Dict) -> List[str]:
    """All identities a single permission is granted to."""
    identities = []
    for key in ("grantedToV2", "grantedTo"):
        identity = identity_of(perm.get(key))
        if identity:
            identities.append(identity)
            break
    # OneDrive Business lists link grantees in grantedToIdentities
    for key in ("grantedToIdentitiesV2", "grantedToIdentities"):
        for identity_set in perm.get(key) or []:
            identity = identity_of(identity_set)
            if identity and identity not in identities:
                identities.append(identity)
    return identities


def _is_broad_link(perm: Dict) -> bool:
    link = perm.get("link")
    return bool(link) and link.get("scope") in ("anonymous", "organization")


def link_level(perm: Dict) -> AccessLevel:
    """Access level carried by a sharing link permission."""
    link = perm.get("link") or {}
    roles = set(perm.get("roles") or [])
    if link.get("type") == "edit" or roles & EDITOR_ROLES:
        return AccessLevel.EDITOR
    return AccessLevel.VIEWER


class RawGrants:
    """
    Raw Graph permissions of one item, split into the three facets the
    permission model reads: editors, viewers, and link sharing.

    When the permission list could not be fetched, every facet raises
    the recorded error.
    """

    def __init__(self, permissions: Optional[List[Dict]] = None, error: Optional[Exception] = None):
        self.permissions = permissions or []
        self.error = error

    def _check(self) -> None:
        if self.error is not None:
            raise self.error

    def _direct(self, roles: set) -> List[str]:
        self._check()
        found = []
        for perm in self.permissions:
            if _is_broad_link(perm):
                continue
            if not set(perm.get("roles") or []) & roles:
                continue
            for identity in _grantees(perm):
                if identity not in found:
                    found.append(identity)
        return found

    def editors(self) -> List[str]:
        return self._direct(EDITOR_ROLES)

    def viewers(self) -> List[str]:
        return self._direct(VIEWER_ROLES)

    def link_sharing(self) -> List[Tuple[str, AccessLevel]]:
        """Return (scope, level) for every anonymous or organization link."""
        self._check()
        return [(perm["link"]["scope"], link_level(perm))
                for perm in self.permissions if _is_broad_link(perm)]


# Malformed Graph payloads surface as one of these while reading a facet
_FACET_ERRORS = (AccessDenied, AttributeError, KeyError, TypeError, ValueError)


def normalize(raw: RawGrants) -> PermissionSet:
    """
    Normalize raw grants into a PermissionSet.

    Each facet is read on its own; a facet that cannot be read degrades to
    its empty default instead of failing the whole item.
    """
    try:
        editors = raw.editors()
    except _FACET_ERRORS as e:
        logger.warning(f"Could not read editors, treating as empty: {e}")
        editors = []

    try:
        viewers = raw.viewers()
    except _FACET_ERRORS as e:
        logger.warning(f"Could not read viewers, treating as empty: {e}")
        viewers = []

    public_access = AccessLevel.NONE
    domain_access = AccessLevel.NONE
    try:
        for scope, level in raw.link_sharing():
            if scope == "anonymous":
                public_access = max(public_access, level)
            elif scope == "organization":
                domain_access = max(domain_access, level)
    except _FACET_ERRORS as e:
        logger.warning(f"Could not read link sharing, treating as not shared: {e}")
        public_access = AccessLevel.NONE
        domain_access = AccessLevel.NONE

    return PermissionSet(editors, viewers, public_access, domain_access)


def access_of(identity: str, permission_set: PermissionSet) -> AccessLevel:
    """Access level of one identity within a permission set."""
    if identity in permission_set.editors:
        return AccessLevel.EDITOR
    if identity in permission_set.viewers:
        return AccessLevel.VIEWER
    return AccessLevel.NONE
