"""Tests for moving sequential ids to hash ids."""

import re

T0 = "2025-01-01T00:00:00.000000Z"
T1 = "2025-01-01T00:00:01.000000Z"
T2 = "2025-01-01T00:00:02.000000Z"


def _legacy_log(beads_dir):
    """A log from before hash ids: bd-1, bd-2 and child bd-1.1, with bd-2 blocked by bd-1."""
    from beads_core import append, make_event

    one = append(beads_dir, make_event("create", "bd-1", "alice", data={"title": "One"}, ts=T0))
    two = append(beads_dir, make_event("create", "bd-2", "alice", data={"title": "Two"}, ts=T0))
    append(
        beads_dir,
        make_event(
            "create",
            "bd-1.1",
            "alice",
            data={"title": "One child", "parent_id": "bd-1", "parent_origin": one["event_id"]},
            ts=T1,
        ),
    )
    append(
        beads_dir,
        make_event(
            "dep_add",
            "bd-2",
            "alice",
            data={"depends_on_id": "bd-1", "target_origin": one["event_id"], "type": "blocks"},
            origin=two["event_id"],
            ts=T2,
        ),
    )


def test_migrate_dry_run_changes_nothing(cache):
    from beads_core import migrate_to_hash_ids

    _legacy_log(cache.beads_dir)
    before = cache.log_path.read_bytes()

    mapping = migrate_to_hash_ids(cache, dry_run=True)

    assert set(mapping) == {"bd-1", "bd-2", "bd-1.1"}
    assert cache.log_path.read_bytes() == before


def test_migrate_rewrites_ids_edges_and_parents(cache):
    from beads_core import get_dependencies, get_issue, is_sequential_id, list_issues, migrate_to_hash_ids

    _legacy_log(cache.beads_dir)

    mapping = migrate_to_hash_ids(cache)

    new_one = mapping["bd-1"]
    new_two = mapping["bd-2"]
    assert re.match(r"^bd-[0-9a-f]{4,6}$", new_one)
    assert mapping["bd-1.1"] == f"{new_one}.1"

    ids = [i["id"] for i in list_issues(cache)]
    assert sorted(ids) == sorted(mapping.values())
    assert not any(is_sequential_id(i) for i in ids)

    assert get_issue(cache, f"{new_one}.1")["parent_id"] == new_one
    assert [d["depends_on_id"] for d in get_dependencies(cache, new_two)] == [new_one]


def test_migrate_twice_is_noop(cache):
    from beads_core import migrate_to_hash_ids

    _legacy_log(cache.beads_dir)
    migrate_to_hash_ids(cache)
    migrated = cache.log_path.read_bytes()

    assert migrate_to_hash_ids(cache) == {}
    assert cache.log_path.read_bytes() == migrated


def test_migration_is_deterministic_across_clones(replicas):
    """Clones holding the same log migrate to the same ids."""
    import shutil

    from beads_core import migrate_to_hash_ids

    alice = replicas("alice-clone", "alice")
    bob = replicas("bob-clone", "bob")
    _legacy_log(alice.beads_dir)
    shutil.copy(alice.log_path, bob.log_path)

    assert migrate_to_hash_ids(alice) == migrate_to_hash_ids(bob)


def test_migrate_leaves_hash_ids_alone(cache):
    from beads_core import create_issue, migrate_to_hash_ids

    issue = create_issue(cache, "Modern")

    assert migrate_to_hash_ids(cache) == {}
    assert issue["id"].startswith("bd-")
