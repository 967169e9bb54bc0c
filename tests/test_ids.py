"""Tests for hash-based and hierarchical id allocation."""

import re

import pytest


def test_generate_id_format():
    """Should produce prefix-hex with a hash part that is never all digits."""
    from beads_core import generate_id

    for _ in range(50):
        issue_id = generate_id("bd", "Some title")
        assert re.match(r"^bd-[0-9a-f]{4}$", issue_id)
        assert not issue_id.split("-")[1].isdigit()


def test_generate_id_avoids_existing():
    """Should never return an id already in use."""
    from beads_core import generate_id

    existing = set()
    for i in range(200):
        issue_id = generate_id("bd", f"Issue {i}", existing_ids=existing)
        assert issue_id not in existing
        existing.add(issue_id)

    assert len(existing) == 200


def test_generate_id_raises_after_max_retries(monkeypatch):
    """Should raise IDCollisionError when every attempt collides."""
    import beads_core.ids
    from beads_core import IDCollisionError, generate_id

    monkeypatch.setattr(beads_core.ids, "_hash_part", lambda digest, size: "abcd")

    with pytest.raises(IDCollisionError, match="after 10 attempts"):
        generate_id("bd", "Title", existing_ids={"bd-abcd"})


@pytest.mark.parametrize(
    "count, expected",
    [(0, 4), (99, 4), (100, 5), (399, 5), (400, 6), (10000, 6)],
)
def test_choose_hash_length_grows_with_issue_count(count, expected):
    from beads_core.ids import choose_hash_length

    assert choose_hash_length(count) == expected


def test_choose_hash_length_respects_minimum():
    from beads_core.ids import choose_hash_length

    assert choose_hash_length(0, min_length=6) == 6


def test_derive_id_is_deterministic():
    """Same seed and taken set should give the same id on every replica."""
    from beads_core import derive_id

    first = derive_id("bd", "origin-123", set())
    second = derive_id("bd", "origin-123", set())

    assert first == second
    assert re.match(r"^bd-[0-9a-f]{4,6}$", first)


def test_derive_id_skips_taken_ids():
    from beads_core import derive_id

    first = derive_id("bd", "origin-123", set())
    other = derive_id("bd", "origin-123", {first})

    assert other != first
    assert other.startswith("bd-")


def test_next_child_id_continues_after_highest():
    """Deleted children leave gaps that are not reused."""
    from beads_core import next_child_id

    existing = {"bd-a3f8", "bd-a3f8.1", "bd-a3f8.3", "bd-a3f8.3.1", "bd-b111.7"}

    assert next_child_id("bd-a3f8", existing) == "bd-a3f8.4"
    assert next_child_id("bd-a3f8.3", existing) == "bd-a3f8.3.2"
    assert next_child_id("bd-c222", existing) == "bd-c222.1"


def test_allocate_id_for_child():
    from beads_core import allocate_id

    existing = {"bd-a3f8", "bd-a3f8.1", "bd-a3f8.1.2"}

    assert allocate_id("bd", existing, parent_id="bd-a3f8") == "bd-a3f8.2"
    assert allocate_id("bd", existing, parent_id="bd-a3f8.1.2") == "bd-a3f8.1.2.1"


def test_allocate_id_unknown_parent():
    from beads_core import InvalidParentError, allocate_id

    with pytest.raises(InvalidParentError, match="not found"):
        allocate_id("bd", {"bd-a3f8"}, parent_id="bd-ffff")


def test_allocate_id_nesting_limit():
    """Three levels below the root is the maximum."""
    from beads_core import InvalidParentError, allocate_id

    existing = {"bd-a3f8", "bd-a3f8.1", "bd-a3f8.1.2", "bd-a3f8.1.2.3"}

    with pytest.raises(InvalidParentError, match="maximum depth"):
        allocate_id("bd", existing, parent_id="bd-a3f8.1.2.3")


def test_allocate_id_top_level_uses_min_length():
    from beads_core import allocate_id

    issue_id = allocate_id("bd", set(), min_length=6)

    assert re.match(r"^bd-[0-9a-f]{6}$", issue_id)


def test_id_helpers():
    from beads_core.ids import id_depth, parent_of, root_of

    assert id_depth("bd-a3f8") == 0
    assert id_depth("bd-a3f8.1.2") == 2
    assert parent_of("bd-a3f8") is None
    assert parent_of("bd-a3f8.1.2") == "bd-a3f8.1"
    assert root_of("bd-a3f8.1.2") == "bd-a3f8"


@pytest.mark.parametrize(
    "issue_id, expected",
    [
        ("bd-12", True),
        ("bd-12.1", True),
        ("my-app-7", True),
        ("bd-a3f8", False),
        ("bd-1a2b", False),
        ("bd-a3f8.1", False),
        ("nodash", False),
    ],
)
def test_is_sequential_id(issue_id, expected):
    from beads_core import is_sequential_id

    assert is_sequential_id(issue_id) is expected
