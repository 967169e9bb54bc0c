"""Tests for the append-only log, replay and cache rebuild."""

import json

import pytest

T0 = "2025-01-01T00:00:00.000000Z"
T1 = "2025-01-01T00:00:01.000000Z"
T2 = "2025-01-01T00:00:02.000000Z"


def _create(issue_id, title, actor="alice", ts=T0, seq=1, **data):
    from beads_core import make_event, stamp_event

    data["title"] = title
    return stamp_event(make_event("create", issue_id, actor, data=data, ts=ts), seq)


def _follow(create, op, data=None, actor="alice", ts=T1, seq=2):
    from beads_core import make_event, stamp_event

    return stamp_event(
        make_event(op, create["issue_id"], actor, data=data, origin=create["event_id"], ts=ts), seq
    )


def test_append_assigns_sequence_and_event_id(beads_dir):
    from beads_core import append, make_event, read_log

    first = append(beads_dir, make_event("create", "bd-a3f8", "alice", data={"title": "One"}))
    second = append(beads_dir, make_event("create", "bd-b4c9", "alice", data={"title": "Two"}))

    events, warnings = read_log(beads_dir / "issues.jsonl")

    assert warnings == []
    assert [e["seq"] for e in events] == [1, 2]
    assert [e["event_id"] for e in events] == [first["event_id"], second["event_id"]]
    assert len(first["event_id"]) == 20


def test_append_keeps_existing_bytes(beads_dir):
    """Earlier lines must survive an append byte for byte."""
    from beads_core import append, make_event

    log_path = beads_dir / "issues.jsonl"
    append(beads_dir, make_event("create", "bd-a3f8", "alice", data={"title": "One"}))
    before = log_path.read_bytes()

    append(beads_dir, make_event("create", "bd-b4c9", "alice", data={"title": "Two"}))
    after = log_path.read_bytes()

    assert after.startswith(before)
    assert after.count(b"\n") == 2


def test_append_failure_leaves_log_untouched(beads_dir, monkeypatch):
    """A crash before the rename leaves the old file and no temp files."""
    import beads_core.utils
    from beads_core import append, make_event

    log_path = beads_dir / "issues.jsonl"
    append(beads_dir, make_event("create", "bd-a3f8", "alice", data={"title": "One"}))
    before = log_path.read_bytes()

    def crash(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(beads_core.utils.os, "replace", crash)

    with pytest.raises(OSError, match="disk full"):
        append(beads_dir, make_event("create", "bd-b4c9", "alice", data={"title": "Two"}))

    assert log_path.read_bytes() == before
    assert list(beads_dir.glob("*.tmp")) == []


def test_read_log_skips_corrupt_lines(tmp_path):
    """Malformed lines become warnings; the rest of the log still loads."""
    from beads_core import CorruptRecordError, read_log
    from beads_core.utils import canonical_json

    log_path = tmp_path / "issues.jsonl"
    good = _create("bd-a3f8", "Good")
    log_path.write_text(
        canonical_json(good) + "\n"
        + "{not json\n"
        + json.dumps({"op": "create"}) + "\n"
        + "\n"
    )

    events, warnings = read_log(log_path)

    assert [e["event_id"] for e in events] == [good["event_id"]]
    assert len(warnings) == 2
    assert all(isinstance(w, CorruptRecordError) for w in warnings)
    assert [w.line_num for w in warnings] == [2, 3]
    assert "missing" in warnings[1].reason


def test_read_log_missing_file(tmp_path):
    from beads_core import read_log

    assert read_log(tmp_path / "nope.jsonl") == ([], [])


def test_read_log_reads_both_sides_of_conflict_markers(tmp_path):
    """A textual git conflict reads as the union of both sides."""
    from beads_core import read_log
    from beads_core.utils import canonical_json

    ours = _create("bd-a3f8", "Ours", actor="alice")
    theirs = _create("bd-b4c9", "Theirs", actor="bob")

    log_path = tmp_path / "issues.jsonl"
    log_path.write_text(
        "<<<<<<< HEAD\n"
        + canonical_json(ours) + "\n"
        + "=======\n"
        + canonical_json(theirs) + "\n"
        + ">>>>>>> theirs\n"
    )

    events, warnings = read_log(log_path)

    assert {e["issue_id"] for e in events} == {"bd-a3f8", "bd-b4c9"}
    assert len(warnings) == 3
    assert all(w.reason == "git conflict marker" for w in warnings)


def test_replay_is_order_independent():
    from beads_core import replay_events

    create = _create("bd-a3f8", "Original")
    rename = _follow(create, "update", {"title": "Renamed"}, ts=T1, seq=2)
    priority = _follow(create, "update", {"priority": 0}, ts=T2, seq=3)

    forward = replay_events([create, rename, priority])
    backward = replay_events([priority, rename, create])

    assert forward.issues == backward.issues
    assert forward.issues["bd-a3f8"]["title"] == "Renamed"
    assert forward.issues["bd-a3f8"]["priority"] == 0
    assert forward.issues["bd-a3f8"]["updated_at"] == T2


def test_replay_last_writer_wins_with_actor_tie_break():
    """Equal timestamps resolve by actor so every replica agrees."""
    from beads_core import replay_events

    create = _create("bd-a3f8", "Original")
    by_alice = _follow(create, "update", {"title": "Alice's"}, actor="alice", ts=T1, seq=2)
    by_bob = _follow(create, "update", {"title": "Bob's"}, actor="bob", ts=T1, seq=2)
    earlier = _follow(create, "update", {"title": "Stale"}, actor="zed", ts=T0, seq=9)

    state = replay_events([by_bob, earlier, by_alice, create])

    assert state.issues["bd-a3f8"]["title"] == "Bob's"


def test_replay_applies_duplicate_events_once():
    from beads_core import replay_events

    create = _create("bd-a3f8", "Issue")
    comment = _follow(create, "comment", {"text": "hello"})

    state = replay_events([create, comment, comment, create])

    assert len(state.comments) == 1
    assert state.warnings == []


def test_replay_close_and_reopen():
    from beads_core import replay_events

    create = _create("bd-a3f8", "Issue")
    close = _follow(create, "close", {"reason": "done"}, ts=T1, seq=2)

    closed = replay_events([create, close]).issues["bd-a3f8"]
    assert closed["status"] == "closed"
    assert closed["closed_at"] == T1
    assert closed["close_reason"] == "done"

    reopen = _follow(create, "reopen", ts=T2, seq=3)
    reopened = replay_events([create, close, reopen]).issues["bd-a3f8"]
    assert reopened["status"] == "open"
    assert reopened["closed_at"] is None
    assert reopened["close_reason"] is None


def test_replay_delete_drops_edges_and_ignores_later_events():
    from beads_core import replay_events

    a = _create("bd-a3f8", "A", seq=1)
    b = _create("bd-b4c9", "B", seq=2)
    edge = _follow(b, "dep_add", {"depends_on_id": "bd-a3f8", "target_origin": a["event_id"], "type": "blocks"}, seq=3)
    delete = _follow(a, "delete", ts=T2, seq=4)
    late = _follow(a, "update", {"title": "ghost"}, ts="2025-01-01T00:00:03.000000Z", seq=5)

    state = replay_events([a, b, edge, delete, late])

    assert set(state.issues) == {"bd-b4c9"}
    assert state.tombstones == {"bd-a3f8"}
    assert state.dependencies == {}


def test_rebuild_cache_is_idempotent(cache):
    """Rebuilding twice from the same log gives identical cache content."""
    from beads_core import add_comment, add_dependency, create_issue

    a = create_issue(cache, "A", labels=["x", "y"])
    b = create_issue(cache, "B")
    add_dependency(cache, b["id"], a["id"])
    add_comment(cache, a["id"], "note")

    cache.rebuild()
    first = list(cache.db.iterdump())
    cache.rebuild()
    second = list(cache.db.iterdump())

    assert first == second


def test_deleted_cache_is_rebuilt_identically(beads_dir, cache):
    """The sqlite file is derived; removing it loses nothing."""
    from beads_core import IssueCache, create_issue, list_issues

    create_issue(cache, "A", priority=1)
    create_issue(cache, "B", labels=["ui"])
    before = list_issues(cache)
    cache.close()

    (beads_dir / "beads.db").unlink()

    with IssueCache(beads_dir) as fresh:
        fresh.refresh()
        assert list_issues(fresh) == before


def test_compact_log_replaces_history_with_summary(tmp_path):
    from beads_core import compact_log, read_log, replay_events, write_log

    long_text = "x" * 500
    old = _create("bd-a3f8", "Old", seq=1, description=long_text, labels=["ui"])
    old_comment = _follow(old, "comment", {"text": "hi"}, seq=2)
    old_close = _follow(old, "close", {"reason": "done"}, ts=T2, seq=3)
    recent = _create("bd-b4c9", "Recent", ts="2025-03-01T00:00:00.000000Z", seq=4)
    recent_edge = _follow(
        recent,
        "dep_add",
        {"depends_on_id": "bd-a3f8", "target_origin": old["event_id"], "type": "blocks"},
        ts="2025-03-01T00:00:00.000000Z",
        seq=5,
    )

    log_path = tmp_path / "issues.jsonl"
    write_log(log_path, [old, old_comment, old_close, recent, recent_edge])

    compacted = compact_log(log_path, 30, "alice", now="2025-03-15T00:00:00.000000Z")

    assert compacted == ["bd-a3f8"]

    events, _ = read_log(log_path)
    ops = [(e["op"], e["issue_id"]) for e in events]
    assert ops == [
        ("create", "bd-b4c9"),
        ("dep_add", "bd-b4c9"),
        ("compacted", "bd-a3f8"),
    ]
    assert events[-1]["seq"] == 6

    state = replay_events(events)
    summary = state.issues["bd-a3f8"]
    assert summary["compacted"] is True
    assert summary["status"] == "closed"
    assert summary["close_reason"] == "done"
    assert summary["labels"] == {"ui"}
    assert len(summary["description"]) < len(long_text)
    assert ("bd-b4c9", "bd-a3f8") in state.dependencies


def test_compact_log_leaves_recent_issues(tmp_path):
    from beads_core import compact_log, read_log, write_log

    issue = _create("bd-a3f8", "Done", seq=1)
    close = _follow(issue, "close", ts=T1, seq=2)
    log_path = tmp_path / "issues.jsonl"
    write_log(log_path, [issue, close])
    before = log_path.read_bytes()

    assert compact_log(log_path, 30, "alice", now="2025-01-10T00:00:00.000000Z") == []
    assert log_path.read_bytes() == before
    assert len(read_log(log_path)[0]) == 2


def test_timestamps_are_fixed_width_at_whole_seconds(monkeypatch):
    from datetime import datetime, timezone

    import beads_core.utils as utils

    class FrozenDatetime(datetime):
        @classmethod
        def now(cls, tz=None):
            return datetime(2025, 1, 1, tzinfo=timezone.utc)

    monkeypatch.setattr(utils, "datetime", FrozenDatetime)

    assert utils.get_iso_timestamp() == "2025-01-01T00:00:00.000000Z"


def test_replay_orders_short_timestamps_by_time():
    """A create stamped without a fraction still replays before its update."""
    from beads_core import normalize_timestamp, replay_events

    create = _create("bd-a3f8", "Whole second", ts="2025-01-01T00:00:00Z")
    update = _follow(create, "update", {"priority": 0}, ts="2025-01-01T00:00:00.000001Z")

    state = replay_events([update, create])

    assert state.issues["bd-a3f8"]["priority"] == 0
    assert state.warnings == []
    assert normalize_timestamp("2025-01-01T00:00:00Z") == "2025-01-01T00:00:00.000000Z"


def test_read_log_rejects_bad_timestamp(tmp_path):
    from beads_core import read_log

    bad = dict(_create("bd-a3f8", "Bad clock"), ts="yesterday")
    path = tmp_path / "issues.jsonl"
    path.write_text(json.dumps(bad) + "\n")

    events, warnings = read_log(path)

    assert events == []
    assert "not a timestamp" in str(warnings[0])


def test_compact_log_sets_aside_unreadable_lines(tmp_path):
    from beads_core import compact_log, read_log, write_log

    issue = _create("bd-a3f8", "Done", seq=1)
    close = _follow(issue, "close", ts=T1, seq=2)
    log_path = tmp_path / "issues.jsonl"
    write_log(log_path, [issue, close])
    with log_path.open("a") as f:
        f.write("not json\n")

    assert compact_log(log_path, 30, "alice", now="2025-03-15T00:00:00.000000Z") == ["bd-a3f8"]

    assert (tmp_path / "issues.jsonl.rejected").read_text() == "not json\n"
    assert read_log(log_path)[1] == []
