"""Constants for Beads - magic strings, numbers, and configuration defaults."""

__all__ = [
    "VALID_STATUSES",
    "OPEN_STATUSES",
    "VALID_ISSUE_TYPES",
    "VALID_DEPENDENCY_TYPES",
    "VALID_OPS",
    "MUTABLE_FIELDS",
    "PRIORITY_RANGE",
    "DEFAULT_PRIORITY",
    "DEFAULT_ISSUE_TYPE",
    "MAX_NESTING_DEPTH",
    "MAX_ID_RETRIES",
    "MIN_HASH_LENGTH",
    "MAX_HASH_LENGTH",
    "LOCK_TIMEOUT",
    "COMPACT_DAYS",
    "BEADS_DIR_NAME",
    "LOG_FILE_NAME",
    "CACHE_FILE_NAME",
    "CONFIG_FILE_NAME",
    "LOCK_FILE_NAME",
    "CONFLICT_MARKERS",
    "VERSION",
]

# Reported by `bd version`; keep in step with pyproject.toml
VERSION = "0.1.0"

# Issue statuses
VALID_STATUSES = {"open", "in_progress", "blocked", "closed"}
OPEN_STATUSES = ("open", "in_progress", "blocked")

# Issue types
VALID_ISSUE_TYPES = {"bug", "feature", "task", "epic", "chore"}

# Dependency relationship types (only "blocks" is constrained acyclic)
VALID_DEPENDENCY_TYPES = {"blocks", "discovered-from", "related"}

# Event log operations
VALID_OPS = {
    "create",
    "update",
    "close",
    "reopen",
    "delete",
    "dep_add",
    "dep_remove",
    "label_add",
    "label_remove",
    "comment",
    "compacted",
}

# Fields an "update" event may carry
MUTABLE_FIELDS = (
    "title",
    "description",
    "status",
    "priority",
    "issue_type",
    "assignee",
    "external_ref",
)

# Priority range (inclusive): 0=critical, 4=backlog
PRIORITY_RANGE = (0, 4)
DEFAULT_PRIORITY = 2
DEFAULT_ISSUE_TYPE = "task"

# Hierarchical ids: prefix-hash, prefix-hash.1, prefix-hash.1.2, prefix-hash.1.2.3
MAX_NESTING_DEPTH = 3

# ID generation
MAX_ID_RETRIES = 10
MIN_HASH_LENGTH = 4
MAX_HASH_LENGTH = 6

# File locking
LOCK_TIMEOUT = 5.0

# Compaction threshold for closed issues
COMPACT_DAYS = 30

# Workspace layout
BEADS_DIR_NAME = ".beads"
LOG_FILE_NAME = "issues.jsonl"
CACHE_FILE_NAME = "beads.db"
CONFIG_FILE_NAME = "config.json"
LOCK_FILE_NAME = ".lock"

# Lines a textual git merge leaves in a JSONL file
CONFLICT_MARKERS = ("<<<<<<<", "=======", ">>>>>>>", "|||||||")
