"""Migration for Beads - move sequential ids (bd-1, bd-2) to hash ids.

Sequential ids collide as soon as two clones create issues offline. The
migration renames every issue whose root id is sequential to a hash id
derived from the issue's origin, so every clone that migrates the same
log arrives at the same ids. Child ids keep their suffix under the new
root, and all edges and parent references are rewritten.
"""

import logging
from typing import Dict

from beads_core.cache import IssueCache
from beads_core.events import event_origin, rename_event
from beads_core.ids import derive_id, id_depth, is_sequential_id, root_of
from beads_core.store import read_log, write_log
from beads_core.utils import file_lock, normalize_timestamp

__all__ = [
    "plan_migration",
    "migrate_to_hash_ids",
]

logger = logging.getLogger(__name__)


def plan_migration(events, min_length: int) -> Dict[str, str]:
    """Old id -> new id for every issue under a sequential root."""
    identities = [e for e in events if e["op"] in ("create", "compacted")]
    identities.sort(key=lambda e: (id_depth(e["issue_id"]), normalize_timestamp(e["ts"]), e["event_id"]))

    taken = {e["issue_id"] for e in identities}
    roots: Dict[str, str] = {}
    mapping: Dict[str, str] = {}

    for event in identities:
        old_id = event["issue_id"]
        if not is_sequential_id(old_id):
            continue

        root = root_of(old_id)
        if root not in roots:
            prefix = root.rpartition("-")[0]
            roots[root] = derive_id(prefix, event_origin(event) or root, taken, length=min_length)
            taken.add(roots[root])

        mapping[old_id] = roots[root] + old_id[len(root):]

    return mapping


def migrate_to_hash_ids(cache: IssueCache, dry_run: bool = False) -> Dict[str, str]:
    """Rename sequential ids to hash ids in the primary log.

    Args:
        cache: Open issue cache
        dry_run: Only compute and return the mapping

    Returns:
        Old id -> new id (empty when nothing needs migrating)
    """
    with file_lock(cache.lock_path, timeout=cache.lock_timeout):
        events, warnings = read_log(cache.log_path)
        mapping = plan_migration(events, cache.config["id_length"])

        if dry_run or not mapping:
            return mapping

        migrated = []
        for event in events:
            changes = {}
            if event["issue_id"] in mapping:
                changes["issue_id"] = mapping[event["issue_id"]]
            for key in ("depends_on_id", "parent_id"):
                value = event["data"].get(key)
                if value in mapping:
                    changes[f"data__{key}"] = mapping[value]
            if event["op"] == "compacted":
                edges = event["data"].get("dependencies", [])
                remapped = [
                    dict(dep, depends_on_id=mapping.get(dep["depends_on_id"], dep["depends_on_id"]))
                    for dep in edges
                ]
                if remapped != edges:
                    changes["data__dependencies"] = remapped
            migrated.append(rename_event(event, **changes) if changes else event)

        write_log(cache.log_path, migrated, dropped=warnings)
        logger.info("Migrated %d issue id(s) to hash ids", len(mapping))

    cache.refresh(force=True)
    return mapping
