"""Shared pytest fixtures for beads tests."""

import json

import pytest


def _make_workspace(root, prefix="bd"):
    beads_dir = root / ".beads"
    beads_dir.mkdir(parents=True)
    (beads_dir / "config.json").write_text(json.dumps({"prefix": prefix}))
    (beads_dir / "issues.jsonl").write_text("")
    return beads_dir


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep the developer's environment out of the tests."""
    monkeypatch.setenv("BD_ACTOR", "alice")
    monkeypatch.delenv("BEADS_DIR", raising=False)
    monkeypatch.delenv("BEADS_LOCK_TIMEOUT", raising=False)


@pytest.fixture
def beads_dir(tmp_path):
    """Create a workspace with prefix "bd" and an empty log.

    Returns the path to the .beads directory.
    """
    return _make_workspace(tmp_path / "myapp")


@pytest.fixture
def cache(beads_dir):
    """Open an IssueCache on the workspace and close it after the test."""
    from beads_core import IssueCache

    issue_cache = IssueCache(beads_dir)
    issue_cache.refresh()

    yield issue_cache

    issue_cache.close()


@pytest.fixture
def replicas(tmp_path):
    """Factory for independent clones of the same project.

    Each call returns an IssueCache on a fresh workspace acting as ``actor``.
    """
    from beads_core import IssueCache

    opened = []

    def make(name, actor):
        issue_cache = IssueCache(_make_workspace(tmp_path / name), actor=actor)
        issue_cache.refresh()
        opened.append(issue_cache)
        return issue_cache

    yield make

    for issue_cache in opened:
        issue_cache.close()


@pytest.fixture
def log_lines(cache):
    """Count the lines currently in the primary log."""

    def count():
        return len(cache.log_path.read_text().splitlines())

    return count
