"""Merge reconciler for Beads - combine divergent event logs.

Replicas never lock each other; they diverge and are reconciled here:

1. Union the event sets by event_id.
2. Resolve issue identities. Each issue is identified by its origin (the
   event_id of its create). When two origins claim the same id, the earlier
   create (ts, then actor, then event_id) keeps it and the later one is
   renamed: top-level ids to a hash derived from the origin, child ids to
   the next free index under the parent. Children follow a renamed parent.
3. Rewrite every event, edge target and parent reference through the
   resulting origin -> id map.
4. Replay and scan the blocks subgraph for cycles.

Every rename and cycle is reported as a MergeConflict; nothing is dropped.
The result is a fixed point: merging it again changes nothing.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from beads_core.graph import find_cycles
from beads_core.events import event_origin, event_sort_key, rename_event
from beads_core.exceptions import CorruptRecordError, MergeConflict
from beads_core.ids import derive_id, id_depth, next_child_id, parent_of, root_of
from beads_core.store import LogState, read_log, replay_events
from beads_core.utils import normalize_timestamp

__all__ = [
    "MergeReport",
    "union_events",
    "resolve_identities",
    "merge_event_sets",
    "merge_logs",
]

logger = logging.getLogger(__name__)


@dataclass
class MergeReport:
    """Outcome of a reconciliation."""

    events: List[Dict[str, Any]] = field(default_factory=list)
    renamed: Dict[str, str] = field(default_factory=dict)
    conflicts: List[MergeConflict] = field(default_factory=list)
    warnings: List[CorruptRecordError] = field(default_factory=list)
    state: Optional[LogState] = None

    @property
    def cycles(self) -> List[List[str]]:
        return [c.details["path"] for c in self.conflicts if c.reason == "cycle"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "events": len(self.events),
            "renamed": dict(sorted(self.renamed.items())),
            "conflicts": [c.to_dict() for c in self.conflicts],
            "warnings": [w.to_dict() for w in self.warnings],
        }


def union_events(*event_sets: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Union by event_id.

    When the same event appears in two versions (one already rewritten by an
    earlier merge), the rewritten one is kept so renames stay stable.
    """
    merged: Dict[str, Dict[str, Any]] = {}
    for events in event_sets:
        for event in events:
            current = merged.get(event["event_id"])
            if current is None or ("renamed_from" in event and "renamed_from" not in current):
                merged[event["event_id"]] = event
    return sorted(merged.values(), key=event_sort_key)


def _prefix_of(issue_id: str) -> str:
    return root_of(issue_id).rpartition("-")[0]


def _identity_events(events: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Create events, plus compacted summaries whose create is gone."""
    creates = [e for e in events if e["op"] == "create"]
    created = {e["event_id"] for e in creates}
    summaries: Dict[str, Dict[str, Any]] = {}
    for event in events:
        if event["op"] == "compacted" and event.get("origin") not in created:
            summaries.setdefault(event["origin"], event)
    return creates + list(summaries.values())


def _created_key(event: Dict[str, Any]):
    created_at = event["data"].get("created_at", event["ts"]) if event["op"] == "compacted" else event["ts"]
    return (normalize_timestamp(created_at), event["actor"], event_origin(event))


def resolve_identities(events: List[Dict[str, Any]]):
    """Assign a final id to every issue origin.

    Returns:
        (origin -> final id, id_collision MergeConflicts, old id -> new id
        for every issue whose id changed, including children that followed
        a renamed parent)
    """
    identities = _identity_events(events)
    recorded: Set[str] = {e["issue_id"] for e in identities}

    # Parents first so children can follow a renamed parent
    identities.sort(key=lambda e: (id_depth(e["issue_id"]), _created_key(e)))

    assigned: Dict[str, str] = {}
    taken: Set[str] = set()
    conflicts: List[MergeConflict] = []
    renamed: Dict[str, str] = {}

    for event in identities:
        origin = event_origin(event)
        recorded_id = event["issue_id"]

        desired = recorded_id
        parent_origin = event["data"].get("parent_origin")
        if parent_origin in assigned and parent_of(recorded_id) is not None:
            parent_id = assigned[parent_origin]
            if parent_id != parent_of(recorded_id):
                desired = f"{parent_id}.{recorded_id.rsplit('.', 1)[1]}"

        final = desired
        if desired in taken:
            parent_id = parent_of(desired)
            if parent_id is not None:
                final = next_child_id(parent_id, taken | recorded)
            else:
                hash_length = len(desired.rpartition("-")[2])
                final = derive_id(_prefix_of(desired), origin, taken | recorded, length=hash_length)
            conflicts.append(
                MergeConflict(
                    "id_collision",
                    f"Id {desired} was created on two replicas; later one renamed to {final}",
                    old_id=desired,
                    new_id=final,
                    origin=origin,
                )
            )

        assigned[origin] = final
        taken.add(final)
        if final != recorded_id:
            renamed[recorded_id] = final

    return assigned, conflicts, renamed


def _retarget(dep: Dict[str, Any], assigned: Dict[str, str]) -> Dict[str, Any]:
    """Edge from a compacted summary, pointed at its target's final id."""
    target_origin = dep.get("target_origin")
    if target_origin in assigned and assigned[target_origin] != dep["depends_on_id"]:
        return dict(dep, depends_on_id=assigned[target_origin])
    return dep


def _rewrite(event: Dict[str, Any], assigned: Dict[str, str]) -> Dict[str, Any]:
    changes: Dict[str, Any] = {}

    origin = event_origin(event)
    if origin in assigned and assigned[origin] != event["issue_id"]:
        changes["issue_id"] = assigned[origin]

    data = event["data"]
    target_origin = data.get("target_origin")
    if target_origin in assigned and assigned[target_origin] != data.get("depends_on_id"):
        changes["data__depends_on_id"] = assigned[target_origin]

    parent_origin = data.get("parent_origin")
    if parent_origin in assigned and assigned[parent_origin] != data.get("parent_id"):
        changes["data__parent_id"] = assigned[parent_origin]

    if event["op"] == "compacted":
        edges = data.get("dependencies", [])
        remapped = [_retarget(dep, assigned) for dep in edges]
        if remapped != edges:
            changes["data__dependencies"] = remapped

    if not changes:
        return event
    return rename_event(event, **changes)


def merge_event_sets(*event_sets: Iterable[Dict[str, Any]]) -> MergeReport:
    """Reconcile any number of event lists into one consistent log."""
    events = union_events(*event_sets)
    assigned, conflicts, renamed = resolve_identities(events)

    rewritten = [_rewrite(e, assigned) for e in events]
    rewritten.sort(key=event_sort_key)

    report = MergeReport(events=rewritten, renamed=renamed, conflicts=list(conflicts))

    report.state = replay_events(rewritten)
    for path in find_cycles(report.state.blocks_adjacency()):
        report.conflicts.append(
            MergeConflict(
                "cycle",
                "Merged blocks edges form a cycle: " + " -> ".join(path),
                path=path,
            )
        )

    for conflict in report.conflicts:
        logger.warning("Merge conflict: %s", conflict)

    return report


def merge_logs(*paths: Union[str, Path]) -> MergeReport:
    """Read several log files and reconcile them."""
    event_sets = []
    warnings: List[CorruptRecordError] = []
    for path in paths:
        events, path_warnings = read_log(path)
        event_sets.append(events)
        warnings.extend(path_warnings)

    report = merge_event_sets(*event_sets)
    report.warnings = warnings
    return report
