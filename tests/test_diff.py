from conftest import ALICE, BOB
from inheritance_audit.diff import (
    INHERITED_ONLY_TEXT,
    ROOT_EMPTY_TEXT,
    ROOT_MARKER_TEXT,
    RootGrant,
    compare,
    diverging_identities,
    render_access,
    summarize_root,
)
from inheritance_audit.permissions import AccessLevel, PermissionSet


# -----------------------------------------------------------------------------
# 1. Divergence detection
# -----------------------------------------------------------------------------

def test_identical_sets_produce_no_finding():
    parent = PermissionSet([ALICE], [BOB], AccessLevel.VIEWER)
    child = PermissionSet([ALICE], [BOB], AccessLevel.VIEWER)

    assert compare(parent, child, "Root/A", "url", "Folder") is None


def test_added_viewer_lists_complete_access():
    parent = PermissionSet([ALICE])
    child = PermissionSet([ALICE], [BOB])

    finding = compare(parent, child, "Root/A", "https://a", "Folder")

    assert finding is not None
    assert finding.path == "Root/A"
    assert finding.kind == "Folder"
    assert finding.access_text == f"{ALICE} - Editor, {BOB} - Viewer"


def test_level_change_is_a_divergence():
    parent = PermissionSet([ALICE], [BOB])
    child = PermissionSet([ALICE, BOB])

    assert diverging_identities(parent, child) == [BOB]
    assert compare(parent, child, "p", "u", "File") is not None


def test_removed_identity_is_a_divergence():
    parent = PermissionSet([ALICE], [BOB])
    child = PermissionSet([ALICE])

    finding = compare(parent, child, "p", "u", "File")
    assert finding.access_text == f"{ALICE} - Editor"


def test_public_link_on_child_only():
    parent = PermissionSet([ALICE])
    child = PermissionSet([ALICE], public_access=AccessLevel.VIEWER)

    finding = compare(parent, child, "Root/B/public.txt", "u", "File")

    assert diverging_identities(parent, child) == []
    assert finding.access_text == f"Public (anyone with the link) - Viewer, {ALICE} - Editor"


def test_domain_access_uses_organization_domain():
    parent = PermissionSet()
    child = PermissionSet(domain_access=AccessLevel.EDITOR)

    finding = compare(parent, child, "p", "u", "Folder", domain_label="x.com")
    assert finding.access_text == "Domain (x.com) - Editor"


def test_empty_child_renders_inherited_only_sentinel():
    parent = PermissionSet(public_access=AccessLevel.VIEWER)
    child = PermissionSet()

    finding = compare(parent, child, "p", "u", "Folder")
    assert finding.access_text == INHERITED_ONLY_TEXT


def test_render_order_is_public_domain_editors_viewers():
    child = PermissionSet(["z@x.com", "a@x.com"], ["m@x.com"], AccessLevel.EDITOR, AccessLevel.VIEWER)
    text = render_access(child, "x.com")

    assert text == ("Public (anyone with the link) - Editor, Domain (x.com) - Viewer, "
                    "a@x.com - Editor, z@x.com - Editor, m@x.com - Viewer")


# -----------------------------------------------------------------------------
# 2. Root summary
# -----------------------------------------------------------------------------

def test_root_summary_single_editor():
    rows = summarize_root([RootGrant(ALICE, "write", "user", False)], "Projects", "https://root")

    assert rows[0].access_text == ROOT_MARKER_TEXT
    role_rows = rows[1:]
    assert len(role_rows) == 1
    assert role_rows[0].kind == "Permission: Editor"
    assert role_rows[0].access_text == f"{ALICE} - Editor"


def test_root_summary_drops_inherited_and_groups_by_role():
    grants = [
        RootGrant("owner@x.com", "owner", "user", False),
        RootGrant(ALICE, "write", "user", False),
        RootGrant(BOB, "write", "user", False),
        RootGrant("outsider@x.com", "write", "user", True),
        RootGrant(None, "read", "group", False, grant_id="g-7"),
        RootGrant("anyone", "read", "anyone", False),
        RootGrant("domain", "read", "domain", False),
    ]
    rows = summarize_root(grants, "Projects", "u", domain_label="x.com")
    by_kind = {row.kind: row.access_text for row in rows[1:]}

    assert by_kind == {
        "Permission: Owner": "owner@x.com - Owner",
        "Permission: Editor": f"{ALICE} - Editor, {BOB} - Editor",
        "Permission: Viewer": ("Group (ID: g-7) - Viewer, Public (anyone with the link) - Viewer, "
                               "Domain (x.com) - Viewer"),
    }
    assert "outsider@x.com" not in " ".join(by_kind.values())


def test_root_summary_without_explicit_grants():
    rows = summarize_root([RootGrant(ALICE, "write", "user", True)], "Projects", "u")

    assert [row.access_text for row in rows] == [ROOT_MARKER_TEXT, ROOT_EMPTY_TEXT]
