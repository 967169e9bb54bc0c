"""Tests for issue CRUD operations."""

import re

import pytest


def test_create_issue_basic(cache):
    """Should create issue with required fields."""
    from beads_core import create_issue

    issue = create_issue(cache, "Add auth", description="OAuth flow")

    assert re.match(r"^bd-[0-9a-f]{4}$", issue["id"])
    assert issue["title"] == "Add auth"
    assert issue["description"] == "OAuth flow"
    assert issue["status"] == "open"
    assert issue["priority"] == 2
    assert issue["issue_type"] == "task"
    assert issue["created_by"] == "alice"
    assert issue["created_at"] == issue["updated_at"]
    assert issue["closed_at"] is None
    assert issue["labels"] == []


def test_create_issue_with_all_fields(cache):
    from beads_core import create_issue

    issue = create_issue(
        cache,
        "Crash on start",
        priority=0,
        issue_type="bug",
        assignee="bob",
        labels=["backend", "urgent", "backend"],
        external_ref="gh-42",
    )

    assert issue["priority"] == 0
    assert issue["issue_type"] == "bug"
    assert issue["assignee"] == "bob"
    assert issue["labels"] == ["backend", "urgent"]
    assert issue["external_ref"] == "gh-42"


def test_create_issue_appends_to_log(cache, log_lines):
    from beads_core import create_issue, read_log

    issue = create_issue(cache, "Logged")

    events, _ = read_log(cache.log_path)
    assert log_lines() == 1
    assert events[0]["op"] == "create"
    assert events[0]["issue_id"] == issue["id"]
    assert events[0]["event_id"] == issue["origin"]


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"title": ""}, "Title is required"),
        ({"title": "   "}, "Title is required"),
        ({"title": "T", "priority": 5}, "Priority must be between 0 and 4"),
        ({"title": "T", "priority": -1}, "Priority must be between 0 and 4"),
        ({"title": "T", "issue_type": "story"}, "Invalid type"),
        ({"title": "T", "status": "done"}, "Invalid status"),
    ],
)
def test_create_issue_validation(cache, log_lines, kwargs, message):
    """Invalid input is rejected and nothing is appended."""
    from beads_core import ValidationError, create_issue

    with pytest.raises(ValidationError, match=message):
        create_issue(cache, **kwargs)

    assert log_lines() == 0


def test_create_child_issues(cache):
    """Children get sequential indices under their parent."""
    from beads_core import create_issue

    epic = create_issue(cache, "Epic", issue_type="epic")
    first = create_issue(cache, "First", parent_id=epic["id"])
    second = create_issue(cache, "Second", parent_id=epic["id"])
    nested = create_issue(cache, "Nested", parent_id=first["id"])

    assert first["id"] == f"{epic['id']}.1"
    assert second["id"] == f"{epic['id']}.2"
    assert nested["id"] == f"{epic['id']}.1.1"
    assert nested["parent_id"] == first["id"]


def test_create_child_nesting_limit(cache, log_lines):
    from beads_core import InvalidParentError, create_issue

    issue = create_issue(cache, "Root")
    for depth in range(3):
        issue = create_issue(cache, f"Level {depth + 1}", parent_id=issue["id"])
    before = log_lines()

    with pytest.raises(InvalidParentError, match="maximum depth"):
        create_issue(cache, "Too deep", parent_id=issue["id"])

    assert log_lines() == before


def test_create_child_missing_parent(cache):
    from beads_core import InvalidParentError, create_issue

    with pytest.raises(InvalidParentError, match="bd-ffff not found"):
        create_issue(cache, "Orphan", parent_id="bd-ffff")


def test_create_issue_with_dependencies(cache):
    from beads_core import create_issue, get_dependencies

    blocker = create_issue(cache, "Blocker")
    source = create_issue(cache, "Source")
    issue = create_issue(
        cache,
        "Follow-up",
        dependencies=[("blocks", blocker["id"]), ("discovered-from", source["id"])],
    )

    deps = {d["depends_on_id"]: d["type"] for d in get_dependencies(cache, issue["id"])}
    assert deps == {blocker["id"]: "blocks", source["id"]: "discovered-from"}


def test_create_issue_with_missing_dependency(cache, log_lines):
    from beads_core import NotFoundError, create_issue

    with pytest.raises(NotFoundError):
        create_issue(cache, "Follow-up", dependencies=[("blocks", "bd-ffff")])

    assert log_lines() == 0


def test_get_issue_not_found(cache):
    from beads_core import get_issue

    assert get_issue(cache, "bd-ffff") is None


def test_update_issue_fields(cache):
    from beads_core import create_issue, update_issue

    issue = create_issue(cache, "Original")
    updated = update_issue(cache, issue["id"], title="Renamed", priority=1, status="in_progress")

    assert updated["title"] == "Renamed"
    assert updated["priority"] == 1
    assert updated["status"] == "in_progress"
    assert updated["updated_at"] >= issue["updated_at"]


def test_update_issue_writes_only_changes(cache, log_lines):
    from beads_core import create_issue, read_log, update_issue

    issue = create_issue(cache, "Same", priority=2)

    update_issue(cache, issue["id"], title="Same", priority=2)
    assert log_lines() == 1

    update_issue(cache, issue["id"], title="Same", priority=3)
    events, _ = read_log(cache.log_path)
    assert events[-1]["data"] == {"priority": 3}


def test_update_issue_unassign(cache):
    from beads_core import create_issue, update_issue

    issue = create_issue(cache, "Owned", assignee="bob")
    updated = update_issue(cache, issue["id"], assignee="")

    assert updated["assignee"] is None


def test_update_issue_not_found(cache):
    from beads_core import NotFoundError, update_issue

    with pytest.raises(NotFoundError) as exc_info:
        update_issue(cache, "bd-ffff", title="x")

    assert exc_info.value.to_dict() == {"error": "NotFound", "message": "Issue bd-ffff not found"}


def test_update_status_closed_sets_closed_at(cache):
    from beads_core import create_issue, update_issue

    issue = create_issue(cache, "Issue")
    closed = update_issue(cache, issue["id"], status="closed")
    assert closed["closed_at"] is not None

    reopened = update_issue(cache, issue["id"], status="open")
    assert reopened["closed_at"] is None


def test_close_issue_with_reason(cache):
    from beads_core import close_issue, create_issue

    issue = create_issue(cache, "Issue")
    closed = close_issue(cache, issue["id"], reason="fixed in abc123")

    assert closed["status"] == "closed"
    assert closed["closed_at"] is not None
    assert closed["close_reason"] == "fixed in abc123"


def test_close_issue_twice_is_noop(cache, log_lines):
    from beads_core import close_issue, create_issue

    issue = create_issue(cache, "Issue")
    first = close_issue(cache, issue["id"])
    second = close_issue(cache, issue["id"])

    assert log_lines() == 2
    assert first["closed_at"] == second["closed_at"]


def test_close_parent_with_open_children(cache):
    """Closing is allowed regardless of the children's state."""
    from beads_core import close_issue, create_issue, get_issue

    parent = create_issue(cache, "Parent")
    child = create_issue(cache, "Child", parent_id=parent["id"])

    close_issue(cache, parent["id"])

    assert get_issue(cache, parent["id"])["status"] == "closed"
    assert get_issue(cache, child["id"])["status"] == "open"


def test_reopen_issue(cache):
    from beads_core import close_issue, create_issue, reopen_issue

    issue = create_issue(cache, "Issue")
    close_issue(cache, issue["id"], reason="dup")
    reopened = reopen_issue(cache, issue["id"])

    assert reopened["status"] == "open"
    assert reopened["closed_at"] is None
    assert reopened["close_reason"] is None


def test_delete_issue(cache):
    from beads_core import create_issue, delete_issue, get_issue, known_ids

    issue = create_issue(cache, "Doomed")
    assert delete_issue(cache, issue["id"]) == [issue["id"]]

    assert get_issue(cache, issue["id"]) is None
    # Tombstoned ids are never handed out again
    assert issue["id"] in known_ids(cache)


def test_delete_issue_with_children_requires_cascade(cache, log_lines):
    from beads_core import ValidationError, create_issue, delete_issue

    parent = create_issue(cache, "Parent")
    create_issue(cache, "Child", parent_id=parent["id"])

    with pytest.raises(ValidationError, match="has children"):
        delete_issue(cache, parent["id"])

    assert log_lines() == 2


def test_delete_issue_cascade(cache):
    """Cascade removes children and issues the deleted one blocks."""
    from beads_core import add_dependency, create_issue, delete_issue, get_issue

    parent = create_issue(cache, "Parent")
    child = create_issue(cache, "Child", parent_id=parent["id"])
    dependent = create_issue(cache, "Dependent")
    bystander = create_issue(cache, "Bystander")
    add_dependency(cache, dependent["id"], child["id"], "blocks")
    add_dependency(cache, bystander["id"], parent["id"], "related")

    deleted = delete_issue(cache, parent["id"], cascade=True)

    assert deleted == [parent["id"], child["id"], dependent["id"]]
    assert get_issue(cache, bystander["id"]) is not None
    assert get_issue(cache, dependent["id"]) is None


def test_delete_removes_edges(cache):
    from beads_core import add_dependency, create_issue, delete_issue, get_dependencies

    a = create_issue(cache, "A")
    b = create_issue(cache, "B")
    add_dependency(cache, b["id"], a["id"])

    delete_issue(cache, a["id"])

    assert get_dependencies(cache, b["id"]) == []


def test_labels(cache):
    from beads_core import add_label, create_issue, remove_label

    issue = create_issue(cache, "Issue", labels=["a"])

    assert add_label(cache, issue["id"], "b")["labels"] == ["a", "b"]
    assert add_label(cache, issue["id"], "b")["labels"] == ["a", "b"]
    assert remove_label(cache, issue["id"], "a")["labels"] == ["b"]
    assert remove_label(cache, issue["id"], "missing")["labels"] == ["b"]


def test_comments(cache):
    from beads_core import add_comment, create_issue, get_comments

    issue = create_issue(cache, "Issue")
    first = add_comment(cache, issue["id"], "Started")
    add_comment(cache, issue["id"], "Done")

    comments = get_comments(cache, issue["id"])

    assert [c["text"] for c in comments] == ["Started", "Done"]
    assert comments[0]["id"] == first["id"]
    assert comments[0]["author"] == "alice"


def test_comment_empty_text(cache):
    from beads_core import ValidationError, add_comment, create_issue

    issue = create_issue(cache, "Issue")

    with pytest.raises(ValidationError):
        add_comment(cache, issue["id"], "  ")


def test_resolve_issue_id(cache):
    """Full ids, bare hashes and unique fragments all resolve."""
    from beads_core import append, make_event, resolve_issue_id

    for issue_id in ("bd-abc1", "bd-abc2", "bd-f00d"):
        append(cache.beads_dir, make_event("create", issue_id, "alice", data={"title": issue_id}))
    cache.refresh()

    assert resolve_issue_id(cache, "bd-abc1") == "bd-abc1"
    assert resolve_issue_id(cache, "abc2") == "bd-abc2"
    assert resolve_issue_id(cache, "f0") == "bd-f00d"


def test_resolve_issue_id_errors(cache):
    from beads_core import NotFoundError, ValidationError, append, make_event, resolve_issue_id

    for issue_id in ("bd-abc1", "bd-abc2"):
        append(cache.beads_dir, make_event("create", issue_id, "alice", data={"title": issue_id}))
    cache.refresh()

    with pytest.raises(ValidationError, match="Ambiguous"):
        resolve_issue_id(cache, "abc")

    with pytest.raises(NotFoundError):
        resolve_issue_id(cache, "zzz")


def test_compact_issues(cache):
    from beads_core import close_issue, compact_issues, create_issue, get_issue

    done = create_issue(cache, "Done", description="d" * 400)
    active = create_issue(cache, "Active")
    close_issue(cache, done["id"])

    assert compact_issues(cache, older_than_days=0) == [done["id"]]

    summary = get_issue(cache, done["id"])
    assert summary["compacted"] is True
    assert summary["status"] == "closed"
    assert len(summary["description"]) < 400
    assert get_issue(cache, active["id"])["compacted"] is False


def test_compact_issues_negative_days(cache):
    from beads_core import ValidationError, compact_issues

    with pytest.raises(ValidationError):
        compact_issues(cache, older_than_days=-1)
