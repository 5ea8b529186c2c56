"""
Shared pytest fixtures.

FakeTreeStore is an in-memory OneDrive: it keeps the GraphTreeStore
permission parsing and replaces only the HTTP calls.
"""

import os
import sys
from typing import Dict, List, Optional

import pytest

_ROOT_PATH = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _ROOT_PATH not in sys.path:
    sys.path.insert(0, _ROOT_PATH)

from inheritance_audit.config_utils import AuditSettings  # noqa: E402
from inheritance_audit.errors import GraphUnavailable, NotFound  # noqa: E402
from inheritance_audit.graph_store import GraphTreeStore, Node, NodeKind  # noqa: E402


# -----------------------------------------------------------------------------
# Graph permission builders
# -----------------------------------------------------------------------------

def user_perm(email: str, role: str = "write", inherited: bool = False) -> Dict:
    perm = {
        "id": f"perm-{email}-{role}",
        "roles": [role],
        "grantedToV2": {"user": {"email": email, "displayName": email.split("@")[0]}},
    }
    if inherited:
        perm["inheritedFrom"] = {"id": "parent"}
    return perm


def group_perm(email: str, role: str = "read") -> Dict:
    return {
        "id": f"perm-{email}",
        "roles": [role],
        "grantedToV2": {"group": {"email": email, "id": "g-1", "displayName": "Team"}},
    }


def link_perm(scope: str, link_type: str = "view", inherited: bool = False) -> Dict:
    perm = {
        "id": f"link-{scope}-{link_type}",
        "roles": ["write" if link_type == "edit" else "read"],
        "link": {"scope": scope, "type": link_type, "webUrl": "https://1drv.ms/x"},
    }
    if inherited:
        perm["inheritedFrom"] = {"id": "parent"}
    return perm


# -----------------------------------------------------------------------------
# In-memory tree store
# -----------------------------------------------------------------------------

class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FakeTreeStore(GraphTreeStore):
    """
    In-memory drive. Every resolve() advances the attached clock by
    `tick` seconds so deadlines can be hit deterministically. Resolving an
    item in `offline` fails as if the token had expired.
    """

    def __init__(self, clock: Optional[FakeClock] = None, tick: float = 1.0):
        super().__init__("test-token")
        self.items: Dict[str, Dict] = {}
        self.child_ids: Dict[str, List[str]] = {}
        self.permissions: Dict[str, List[Dict]] = {}
        self.resolved: List[str] = []
        self.missing = set()
        self.unreadable = set()
        self.offline = set()
        self.clock = clock
        self.tick = tick
        self.domain = "x.com"

    def add(self, item_id: str, name: str, kind: NodeKind, parent: Optional[str] = None,
            permissions: Optional[List[Dict]] = None) -> str:
        self.items[item_id] = {"id": item_id, "name": name, "kind": kind}
        self.child_ids.setdefault(item_id, [])
        self.permissions[item_id] = list(permissions or [])
        if parent is not None:
            self.child_ids[parent].append(item_id)
        return item_id

    def folder(self, item_id, name, parent=None, permissions=None):
        return self.add(item_id, name, NodeKind.CONTAINER, parent, permissions)

    def file(self, item_id, name, parent, permissions=None):
        return self.add(item_id, name, NodeKind.LEAF, parent, permissions)

    def _node(self, item_id: str) -> Node:
        if item_id in self.missing or item_id not in self.items:
            raise NotFound(f"Item not found: {item_id}")
        item = self.items[item_id]
        return Node(item_id, item["name"], f"https://onedrive.test/{item_id}", item["kind"])

    def resolve(self, item_id: str) -> Node:
        if item_id in self.offline:
            raise GraphUnavailable(401, "InvalidAuthenticationToken", "get item")
        node = self._node(item_id)
        self.resolved.append(item_id)
        if self.clock is not None:
            self.clock.now += self.tick
        return node

    def resolve_path(self, item_path: Optional[str] = None) -> Node:
        current = "root"
        for part in [p for p in (item_path or "").split("/") if p]:
            matches = [c for c in self.child_ids.get(current, []) if self.items[c]["name"] == part]
            if not matches:
                raise NotFound(f"Path not found: {item_path}")
            current = matches[0]
        return self._node(current)

    def list_children(self, item_id: str) -> List[Node]:
        return [self._node(child_id) for child_id in self.child_ids[item_id]
                if child_id not in self.missing]

    def _permissions(self, item_id: str) -> List[Dict]:
        if item_id in self.missing or item_id in self.unreadable:
            raise NotFound(f"Item not found: {item_id}")
        return self.permissions[item_id]

    def get_organization_domain(self) -> str:
        return self.domain


ALICE = "alice@x.com"
BOB = "bob@x.com"


def build_sample_tree(store: FakeTreeStore) -> FakeTreeStore:
    """
    root (alice editor)
      A/            same as root
        a1.txt      same
        A1/         + bob viewer
          deep.txt  same as A1
      B/            same as root
        public.txt  anyone-with-link view
      root.txt      same
    """
    base = [user_perm(ALICE, "write")]
    inherited = [user_perm(ALICE, "write", inherited=True)]
    store.folder("root", "root", permissions=base)
    store.folder("A", "A", "root", inherited)
    store.folder("B", "B", "root", inherited)
    store.file("root-txt", "root.txt", "root", inherited)
    store.file("a1", "a1.txt", "A", inherited)
    store.folder("A1", "A1", "A", inherited + [user_perm(BOB, "read")])
    store.file("deep", "deep.txt", "A1", inherited + [user_perm(BOB, "read", inherited=True)])
    store.file("public", "public.txt", "B", inherited + [link_perm("anonymous", "view")])
    return store


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sample_store(clock) -> FakeTreeStore:
    return build_sample_tree(FakeTreeStore(clock))


@pytest.fixture
def settings(tmp_path) -> AuditSettings:
    return AuditSettings(
        state_dir=str(tmp_path / "state"),
        results_dir=str(tmp_path / "results"),
        session_budget_seconds=1000,
        page_capacity=100,
        organization_domain="",
    )
