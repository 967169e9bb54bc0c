"""CLI module for Beads - typer app and all commands."""

import json
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

import typer
from typing_extensions import Annotated

from beads_core.cache import IssueCache, open_cache, watch
from beads_core.config import DEFAULT_CONFIG, find_beads_dir, get_log_path, save_config
from beads_core.constants import (
    BEADS_DIR_NAME,
    CACHE_FILE_NAME,
    LOCK_FILE_NAME,
    MAX_HASH_LENGTH,
    MIN_HASH_LENGTH,
    VERSION,
)
from beads_core.dependencies import (
    STATUS_MARKERS,
    add_dependency,
    compute_ready,
    dependency_tree,
    detect_cycles,
    get_blocked_issues,
    remove_dependency,
    render_tree,
)
from beads_core.exceptions import BeadsError, ConfigError, ValidationError
from beads_core.issues import (
    add_comment,
    add_label,
    close_issue,
    compact_issues,
    create_issue,
    delete_issue,
    get_comments,
    issue_to_record,
    remove_label,
    reopen_issue,
    require_issue,
    resolve_issue_id,
    update_issue,
)
from beads_core.merge import MergeReport
from beads_core.migrate import migrate_to_hash_ids
from beads_core.query import get_statistics, list_issues
from beads_core.sync import export_issues, import_issues, merge_files, sync_from
from beads_core.utils import sanitize_prefix

__all__ = ["app", "main"]

logger = logging.getLogger(__name__)

# Create Typer app
app = typer.Typer(help="Beads - git-backed, dependency-aware issue tracker for AI agent workflows")
dep_app = typer.Typer(help="Manage dependencies between issues")
label_app = typer.Typer(help="Manage issue labels")
app.add_typer(dep_app, name="dep")
app.add_typer(label_app, name="label")

JsonFlag = Annotated[bool, typer.Option("--json", help="Output JSON")]


@app.callback()
def callback(
    ctx: typer.Context,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging on stderr")] = False,
    actor: Annotated[Optional[str], typer.Option(help="Actor recorded on changes (default: $BD_ACTOR or $USER)")] = None,
):
    """Beads - git-backed, dependency-aware issue tracker."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"actor": actor}


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _fail(error: BeadsError, json_output: bool) -> None:
    if json_output:
        _print_json(error.to_dict())
    else:
        typer.echo(f"Error: {error}", err=True)
    raise typer.Exit(code=1)


def _warn(warnings: List[BeadsError]) -> None:
    for warning in warnings:
        typer.echo(f"Warning [{warning.kind}]: {warning}", err=True)


@contextmanager
def _session(ctx: typer.Context, json_output: bool = False) -> Generator[IssueCache, None, None]:
    """Open the workspace cache; map BeadsError to a typed error and exit 1."""
    cache = None
    try:
        cache = open_cache(actor=(ctx.obj or {}).get("actor"))
        _warn(cache.warnings)
        yield cache
    except BeadsError as e:
        _fail(e, json_output)
    finally:
        if cache is not None:
            cache.close()


def _issue_line(issue: Dict[str, Any]) -> str:
    marker = STATUS_MARKERS.get(issue["status"], "?")
    assignee = f" @{issue['assignee']}" if issue.get("assignee") else ""
    return f"{marker} {issue['id']} [P{issue['priority']}] [{issue['issue_type']}] {issue['title']}{assignee}"


def _parse_deps(specs: Optional[List[str]]) -> List[tuple]:
    """'type:id' or plain 'id' (blocks) -> [(type, id)]."""
    parsed = []
    for spec in specs or []:
        for item in spec.split(","):
            item = item.strip()
            if not item:
                continue
            dep_type, sep, dep_id = item.rpartition(":")
            parsed.append((dep_type if sep else "blocks", dep_id))
    return parsed


@app.command()
def init(
    prefix: Annotated[Optional[str], typer.Option(help="Issue id prefix (default: directory name)")] = None,
    id_length: Annotated[int, typer.Option(help="Minimum hash length (4-6)")] = 4,
    json_output: JsonFlag = False,
):
    """Initialize beads in current directory."""
    beads_dir = Path(os.environ.get("BEADS_DIR") or Path.cwd() / BEADS_DIR_NAME)

    try:
        if not MIN_HASH_LENGTH <= id_length <= MAX_HASH_LENGTH:
            raise ConfigError(
                f"id_length must be between {MIN_HASH_LENGTH} and {MAX_HASH_LENGTH}, got {id_length}"
            )
        if beads_dir.exists() and not beads_dir.is_dir():
            raise ConfigError(f"{beads_dir} exists and is not a directory")
        beads_dir.mkdir(parents=True, exist_ok=True)
    except BeadsError as e:
        _fail(e, json_output)

    config = dict(DEFAULT_CONFIG)
    config["prefix"] = sanitize_prefix(prefix or beads_dir.resolve().parent.name)
    config["id_length"] = id_length
    save_config(beads_dir, config)

    log_path = get_log_path(beads_dir)
    if not log_path.exists():
        log_path.write_text("")

    gitignore = beads_dir / ".gitignore"
    if not gitignore.exists():
        gitignore.write_text(f"{CACHE_FILE_NAME}\n{LOCK_FILE_NAME}\n")

    if json_output:
        _print_json({"beads_dir": str(beads_dir), "prefix": config["prefix"], "log": str(log_path)})
        return
    print(f"Initialized beads in {beads_dir}")
    print(f"Prefix: {config['prefix']}")
    print(f"Log:    {log_path}")


@app.command()
def version(json_output: JsonFlag = False):
    """Show the bd version."""
    if json_output:
        _print_json({"version": VERSION})
        return
    print(f"bd version v{VERSION}")


QUICKSTART = [
    ("bd init", "Set up .beads/ in this repository"),
    ('bd create "Fix login" -p 1 -t bug', "Record work (priority 0-4, type bug/feature/task/epic/chore)"),
    ("bd dep add <issue> <blocker>", "Say that one issue waits on another"),
    ("bd ready", "List unblocked work, most urgent first"),
    ("bd update <id> --status in_progress", "Claim an issue"),
    ('bd close <id> --reason "Done"', "Finish it; anything it blocked may become ready"),
    ("bd sync --from <other clone>/.beads/issues.jsonl", "Reconcile with another replica"),
]


@app.command()
def quickstart(json_output: JsonFlag = False):
    """Show a short guide to the everyday commands."""
    if json_output:
        _print_json([{"command": command, "description": text} for command, text in QUICKSTART])
        return
    print("Beads quickstart")
    print("")
    width = max(len(command) for command, _ in QUICKSTART)
    for command, text in QUICKSTART:
        print(f"  {command.ljust(width)}  {text}")
    print("")
    print("Every command accepts --json for machine-readable output.")


@app.command()
def create(
    ctx: typer.Context,
    title: Annotated[str, typer.Argument(help="Issue title")],
    description: Annotated[str, typer.Option("--description", "-d", help="Detailed description")] = "",
    priority: Annotated[int, typer.Option("--priority", "-p", help="Priority level (0-4)")] = 2,
    issue_type: Annotated[str, typer.Option("--type", "-t", help="bug, feature, task, epic or chore")] = "task",
    assignee: Annotated[Optional[str], typer.Option("--assignee", "-a", help="Assignee")] = None,
    labels: Annotated[Optional[List[str]], typer.Option("--label", "-l", help="Label (repeatable)")] = None,
    parent: Annotated[Optional[str], typer.Option(help="Parent issue ID")] = None,
    deps: Annotated[Optional[List[str]], typer.Option("--deps", help="Dependency 'type:id' or 'id' (repeatable)")] = None,
    external_ref: Annotated[Optional[str], typer.Option(help="External tracker reference")] = None,
    json_output: JsonFlag = False,
):
    """Create a new issue."""
    with _session(ctx, json_output) as cache:
        if parent:
            parent = resolve_issue_id(cache, parent)
        dependencies = [(t, resolve_issue_id(cache, i)) for t, i in _parse_deps(deps)]

        issue = create_issue(
            cache,
            title,
            description=description,
            priority=priority,
            issue_type=issue_type,
            assignee=assignee,
            labels=labels,
            parent_id=parent,
            external_ref=external_ref,
            dependencies=dependencies,
        )

        if json_output:
            _print_json(issue_to_record(cache, issue))
            return

        print(f"Created {issue['id']}: {title}")
        if parent:
            print(f"  Parent: {parent}")
        for dep_type, dep_id in dependencies:
            print(f"  {dep_type}: {dep_id}")


@app.command()
def update(
    ctx: typer.Context,
    issue_id: Annotated[str, typer.Argument(help="Issue ID")],
    title: Annotated[Optional[str], typer.Option(help="Set title")] = None,
    description: Annotated[Optional[str], typer.Option("--description", "-d", help="Set description")] = None,
    status: Annotated[Optional[str], typer.Option("--status", "-s", help="Set status")] = None,
    priority: Annotated[Optional[int], typer.Option("--priority", "-p", help="Set priority (0-4)")] = None,
    issue_type: Annotated[Optional[str], typer.Option("--type", "-t", help="Set type")] = None,
    assignee: Annotated[Optional[str], typer.Option("--assignee", "-a", help="Set assignee ('' to clear)")] = None,
    external_ref: Annotated[Optional[str], typer.Option(help="Set external reference")] = None,
    json_output: JsonFlag = False,
):
    """Update an issue."""
    with _session(ctx, json_output) as cache:
        issue_id = resolve_issue_id(cache, issue_id)
        issue = update_issue(
            cache,
            issue_id,
            title=title,
            description=description,
            status=status,
            priority=priority,
            issue_type=issue_type,
            assignee=assignee,
            external_ref=external_ref,
        )

        if json_output:
            _print_json(issue_to_record(cache, issue))
            return

        print(f"Updated {issue_id}:")
        print(f"  {_issue_line(issue)}")


@app.command()
def close(
    ctx: typer.Context,
    issue_ids: Annotated[List[str], typer.Argument(help="Issue ID(s) to close")],
    reason: Annotated[Optional[str], typer.Option("--reason", "-r", help="Why it was closed")] = None,
    json_output: JsonFlag = False,
):
    """Close one or more issues."""
    with _session(ctx, json_output) as cache:
        closed = []
        errors: List[BeadsError] = []

        for issue_id in issue_ids:
            try:
                closed.append(close_issue(cache, resolve_issue_id(cache, issue_id), reason=reason))
            except BeadsError as e:
                errors.append(e)

        if json_output:
            _print_json([issue_to_record(cache, i) for i in closed])
        else:
            for error in errors:
                typer.echo(f"Warning: {error}", err=True)
            for issue in closed:
                print(f"Closed {issue['id']}: {issue['title']}")

        # Exit with error if nothing was closed
        if not closed and errors:
            _fail(errors[0], json_output)


@app.command()
def reopen(
    ctx: typer.Context,
    issue_ids: Annotated[List[str], typer.Argument(help="Issue ID(s) to reopen")],
    json_output: JsonFlag = False,
):
    """Reopen closed issues."""
    with _session(ctx, json_output) as cache:
        reopened = [reopen_issue(cache, resolve_issue_id(cache, i)) for i in issue_ids]

        if json_output:
            _print_json([issue_to_record(cache, i) for i in reopened])
            return
        for issue in reopened:
            print(f"Reopened {issue['id']}: {issue['title']}")


@app.command()
def delete(
    ctx: typer.Context,
    issue_id: Annotated[str, typer.Argument(help="Issue ID")],
    cascade: Annotated[bool, typer.Option(help="Also delete children and issues it blocks")] = False,
    json_output: JsonFlag = False,
):
    """Delete an issue."""
    with _session(ctx, json_output) as cache:
        deleted = delete_issue(cache, resolve_issue_id(cache, issue_id), cascade=cascade)

        if json_output:
            _print_json({"deleted": deleted})
            return
        for deleted_id in deleted:
            print(f"Deleted {deleted_id}")


@app.command()
def show(
    ctx: typer.Context,
    issue_id: Annotated[str, typer.Argument(help="Issue ID")],
    json_output: JsonFlag = False,
):
    """Show issue details."""
    with _session(ctx, json_output) as cache:
        issue = require_issue(cache, resolve_issue_id(cache, issue_id))
        record = issue_to_record(cache, issue)
        comments = get_comments(cache, issue["id"])

        if json_output:
            record["comments"] = comments
            _print_json(record)
            return

        print(f"ID:          {issue['id']}")
        print(f"Title:       {issue['title']}")
        print(f"Status:      {issue['status']}")
        print(f"Priority:    P{issue['priority']}")
        print(f"Type:        {issue['issue_type']}")
        if issue["assignee"]:
            print(f"Assignee:    {issue['assignee']}")
        if issue["labels"]:
            print(f"Labels:      {', '.join(issue['labels'])}")
        if issue["parent_id"]:
            print(f"Parent:      {issue['parent_id']}")
        if issue["external_ref"]:
            print(f"External:    {issue['external_ref']}")
        print(f"Created:     {issue['created_at']}")
        print(f"Updated:     {issue['updated_at']}")
        if issue["closed_at"]:
            print(f"Closed:      {issue['closed_at']}")

        if issue["description"]:
            print(f"\nDescription:\n{issue['description']}")

        if record["dependencies"]:
            print("\nDepends on:")
            for dep in record["dependencies"]:
                print(f"  {dep['type']:16} {dep['depends_on_id']}")

        if record["dependents"]:
            print("\nDependents:")
            for dep in record["dependents"]:
                print(f"  {dep['type']:16} {dep['issue_id']}")

        if comments:
            print("\nComments:")
            for c in comments:
                timestamp = c["created_at"][:19].replace("T", " ")
                print(f"  [{timestamp}] {c['author']}: {c['text']}")


@app.command(name="list")
def list_cmd(
    ctx: typer.Context,
    status: Annotated[Optional[List[str]], typer.Option("--status", "-s", help="Filter by status (repeatable, 'any' for all)")] = None,
    priority: Annotated[Optional[List[int]], typer.Option("--priority", "-p", help="Filter by priority (repeatable)")] = None,
    issue_type: Annotated[Optional[List[str]], typer.Option("--type", "-t", help="Filter by type (repeatable)")] = None,
    assignee: Annotated[Optional[str], typer.Option("--assignee", "-a", help="Filter by assignee")] = None,
    labels: Annotated[Optional[List[str]], typer.Option("--label", "-l", help="Must have all these labels")] = None,
    labels_any: Annotated[Optional[List[str]], typer.Option("--label-any", help="Must have at least one of these labels")] = None,
    title: Annotated[Optional[str], typer.Option(help="Title contains text")] = None,
    sort: Annotated[str, typer.Option(help="id, priority, created or updated")] = "id",
    limit: Annotated[Optional[int], typer.Option(help="Maximum results")] = None,
    json_output: JsonFlag = False,
):
    """List issues."""
    with _session(ctx, json_output) as cache:
        # Default to backlog (exclude closed) when no --status provided
        if not status:
            status_filter: Optional[List[str]] = ["open", "in_progress", "blocked"]
        elif status == ["any"]:
            status_filter = None
        else:
            status_filter = status

        issues = list_issues(
            cache,
            status=status_filter,
            priority=priority or None,
            issue_type=issue_type or None,
            assignee=assignee,
            labels=labels,
            labels_any=labels_any,
            text=title,
            sort=sort,
            limit=limit,
        )

        if json_output:
            _print_json([issue_to_record(cache, i) for i in issues])
            return

        if not issues:
            print("No issues found")
            return

        for issue in issues:
            print(_issue_line(issue))


@app.command()
def ready(
    ctx: typer.Context,
    priority: Annotated[Optional[List[int]], typer.Option("--priority", "-p", help="Filter by priority")] = None,
    issue_type: Annotated[Optional[List[str]], typer.Option("--type", "-t", help="Filter by type")] = None,
    assignee: Annotated[Optional[str], typer.Option("--assignee", "-a", help="Filter by assignee")] = None,
    labels: Annotated[Optional[List[str]], typer.Option("--label", "-l", help="Must have all these labels")] = None,
    limit: Annotated[Optional[int], typer.Option(help="Maximum results")] = None,
    json_output: JsonFlag = False,
):
    """Show ready work (not blocked), highest priority first."""
    with _session(ctx, json_output) as cache:
        issues = compute_ready(
            cache,
            limit=limit,
            priority=priority or None,
            issue_type=issue_type or None,
            assignee=assignee,
            labels=labels,
        )

        if json_output:
            _print_json([issue_to_record(cache, i) for i in issues])
            return

        if not issues:
            print("No ready work")
            return

        print("Ready work (not blocked):\n")
        for issue in issues:
            print(_issue_line(issue))


@app.command()
def blocked(ctx: typer.Context, json_output: JsonFlag = False):
    """Show blocked issues and what blocks them."""
    with _session(ctx, json_output) as cache:
        issues = get_blocked_issues(cache)

        if json_output:
            records = []
            for issue in issues:
                record = issue_to_record(cache, issue)
                record["blocked_by"] = issue["blocked_by"]
                records.append(record)
            _print_json(records)
            return

        if not issues:
            print("No blocked issues")
            return

        for issue in issues:
            print(_issue_line(issue))
            if issue["blocked_by"]:
                print(f"   └─ blocked by: {', '.join(issue['blocked_by'])}")


@dep_app.command("add")
def dep_add(
    ctx: typer.Context,
    issue_id: Annotated[str, typer.Argument(help="Issue that depends")],
    depends_on_id: Annotated[str, typer.Argument(help="Issue that is depended upon")],
    dep_type: Annotated[str, typer.Option("--type", "-t", help="blocks, discovered-from or related")] = "blocks",
    json_output: JsonFlag = False,
):
    """Add a dependency: ISSUE_ID depends on DEPENDS_ON_ID."""
    with _session(ctx, json_output) as cache:
        issue_id = resolve_issue_id(cache, issue_id)
        depends_on_id = resolve_issue_id(cache, depends_on_id)
        add_dependency(cache, issue_id, depends_on_id, dep_type)

        if json_output:
            _print_json({"issue_id": issue_id, "depends_on_id": depends_on_id, "type": dep_type})
            return
        print(f"Added dependency: {issue_id} {dep_type} on {depends_on_id}")


@dep_app.command("remove")
def dep_remove(
    ctx: typer.Context,
    issue_id: Annotated[str, typer.Argument(help="Issue that depends")],
    depends_on_id: Annotated[str, typer.Argument(help="Issue that is depended upon")],
    json_output: JsonFlag = False,
):
    """Remove a dependency (no error if it does not exist)."""
    with _session(ctx, json_output) as cache:
        issue_id = resolve_issue_id(cache, issue_id)
        depends_on_id = resolve_issue_id(cache, depends_on_id)
        removed = remove_dependency(cache, issue_id, depends_on_id)

        if json_output:
            _print_json({"issue_id": issue_id, "depends_on_id": depends_on_id, "removed": removed})
            return
        if removed:
            print(f"Removed dependency: {issue_id} on {depends_on_id}")
        else:
            print(f"No dependency: {issue_id} on {depends_on_id}")


@dep_app.command("tree")
def dep_tree(
    ctx: typer.Context,
    issue_id: Annotated[str, typer.Argument(help="Issue ID")],
    max_depth: Annotated[int, typer.Option(help="Maximum depth to display")] = 10,
    json_output: JsonFlag = False,
):
    """Show an issue's children and dependencies as a tree."""
    with _session(ctx, json_output) as cache:
        tree = dependency_tree(cache, resolve_issue_id(cache, issue_id), max_depth=max_depth)

        if json_output:
            _print_json(tree)
            return
        for line in render_tree(tree):
            print(line)


@dep_app.command("cycles")
def dep_cycles(ctx: typer.Context, json_output: JsonFlag = False):
    """Report cycles among blocks dependencies."""
    with _session(ctx, json_output) as cache:
        cycles = detect_cycles(cache)

        if json_output:
            _print_json(cycles)
            return
        if not cycles:
            print("No dependency cycles")
            return
        for cycle in cycles:
            print("Cycle: " + " -> ".join(cycle))


@label_app.command("add")
def label_add(
    ctx: typer.Context,
    issue_id: Annotated[str, typer.Argument(help="Issue ID")],
    label: Annotated[str, typer.Argument(help="Label")],
    json_output: JsonFlag = False,
):
    """Add a label to an issue."""
    with _session(ctx, json_output) as cache:
        issue = add_label(cache, resolve_issue_id(cache, issue_id), label)

        if json_output:
            _print_json(issue_to_record(cache, issue))
            return
        print(f"Labels on {issue['id']}: {', '.join(issue['labels'])}")


@label_app.command("remove")
def label_remove(
    ctx: typer.Context,
    issue_id: Annotated[str, typer.Argument(help="Issue ID")],
    label: Annotated[str, typer.Argument(help="Label")],
    json_output: JsonFlag = False,
):
    """Remove a label from an issue."""
    with _session(ctx, json_output) as cache:
        issue = remove_label(cache, resolve_issue_id(cache, issue_id), label)

        if json_output:
            _print_json(issue_to_record(cache, issue))
            return
        print(f"Labels on {issue['id']}: {', '.join(issue['labels']) or '(none)'}")


@app.command()
def comment(
    ctx: typer.Context,
    issue_id: Annotated[str, typer.Argument(help="Issue ID")],
    text: Annotated[str, typer.Argument(help="Comment text")],
    json_output: JsonFlag = False,
):
    """Add a comment to an issue."""
    with _session(ctx, json_output) as cache:
        comment_data = add_comment(cache, resolve_issue_id(cache, issue_id), text)

        if json_output:
            _print_json(comment_data)
            return

        timestamp = comment_data["created_at"][:19].replace("T", " ")
        print(f"Added comment to {comment_data['issue_id']}:")
        print(f"  [{timestamp}] {comment_data['author']}: {text}")


@app.command(name="export")
def export_cmd(
    ctx: typer.Context,
    output: Annotated[Path, typer.Option("--output", "-o", help="Snapshot file to write")],
    json_output: JsonFlag = False,
):
    """Export all issues as a JSONL snapshot."""
    with _session(ctx, json_output) as cache:
        count = export_issues(cache, output)

        if json_output:
            _print_json({"exported": count, "path": str(output)})
            return
        print(f"Exported {count} issue(s) to {output}")


@app.command(name="import")
def import_cmd(
    ctx: typer.Context,
    source: Annotated[Path, typer.Argument(help="Snapshot file to read")],
    update_existing: Annotated[bool, typer.Option("--update", help="Update issues that already exist")] = False,
    json_output: JsonFlag = False,
):
    """Import issues from a JSONL snapshot."""
    with _session(ctx, json_output) as cache:
        if not source.exists():
            raise ValidationError(f"File not found: {source}")
        stats = import_issues(cache, source, update=update_existing)

        if json_output:
            _print_json(stats)
            return
        print(
            f"Imported from {source}: {stats['created']} created, {stats['updated']} updated, "
            f"{stats['skipped']} skipped, {stats['errors']} error(s)"
        )


@app.command()
def compact(
    ctx: typer.Context,
    days: Annotated[Optional[int], typer.Option(help="Compact issues closed more than this many days ago")] = None,
    json_output: JsonFlag = False,
):
    """Fold old closed issues into summary records."""
    with _session(ctx, json_output) as cache:
        compacted = compact_issues(cache, older_than_days=days)

        if json_output:
            _print_json({"compacted": compacted})
            return
        print(f"Compacted {len(compacted)} issue(s)")
        for issue_id in compacted:
            print(f"  {issue_id}")


@app.command()
def migrate(
    ctx: typer.Context,
    dry_run: Annotated[bool, typer.Option("--dry-run", "--inspect", help="Show the id mapping without changing anything")] = False,
    json_output: JsonFlag = False,
):
    """Upgrade sequential ids (bd-1) to hash ids (bd-a3f8)."""
    with _session(ctx, json_output) as cache:
        mapping = migrate_to_hash_ids(cache, dry_run=dry_run)

        if json_output:
            _print_json({"dry_run": dry_run, "mapping": mapping})
            return
        if not mapping:
            print("No sequential ids to migrate")
            return
        verb = "Would rename" if dry_run else "Renamed"
        for old_id, new_id in sorted(mapping.items()):
            print(f"{verb} {old_id} -> {new_id}")


def _print_report(report: MergeReport, json_output: bool) -> None:
    if json_output:
        _print_json(report.to_dict())
        return
    _warn(report.warnings)
    print(f"Merged log: {len(report.events)} event(s)")
    for old_id, new_id in sorted(report.renamed.items()):
        print(f"  renamed {old_id} -> {new_id}")
    for conflict in report.conflicts:
        typer.echo(f"Warning [{conflict.kind}]: {conflict}", err=True)


@app.command()
def sync(
    ctx: typer.Context,
    sources: Annotated[List[Path], typer.Option("--from", help="Another replica's log (repeatable)")],
    json_output: JsonFlag = False,
):
    """Reconcile other replicas' logs into this workspace."""
    with _session(ctx, json_output) as cache:
        missing = [str(p) for p in sources if not p.exists()]
        if missing:
            raise ValidationError(f"File not found: {', '.join(missing)}")
        _print_report(sync_from(cache, list(sources)), json_output)


@app.command()
def merge(
    base: Annotated[Path, typer.Argument(help="Common ancestor (%O)")],
    ours: Annotated[Path, typer.Argument(help="Our version, overwritten with the result (%A)")],
    theirs: Annotated[Path, typer.Argument(help="Their version (%B)")],
    json_output: JsonFlag = False,
):
    """Git merge driver for beads logs."""
    try:
        report = merge_files(base, ours, theirs)
    except BeadsError as e:
        _fail(e, json_output)
    _print_report(report, json_output)


@app.command()
def stats(ctx: typer.Context, json_output: JsonFlag = False):
    """Show issue statistics."""
    with _session(ctx, json_output) as cache:
        data = get_statistics(cache)

        if json_output:
            _print_json(data)
            return
        print(f"Total:        {data['total']}")
        print(f"Open:         {data['open']}")
        print(f"In progress:  {data['in_progress']}")
        print(f"Blocked:      {data['blocked_total']}")
        print(f"Closed:       {data['closed']}")
        print(f"Ready:        {data['ready']}")


@app.command()
def daemon(
    ctx: typer.Context,
    interval: Annotated[float, typer.Option(help="Seconds between log checks")] = 2.0,
    iterations: Annotated[Optional[int], typer.Option(hidden=True)] = None,
    json_output: JsonFlag = False,
):
    """Keep the query cache warm, rebuilding when the log changes.

    With --json, one summary object is printed when the watcher stops.
    """
    with _session(ctx, json_output) as cache:
        if not json_output:
            print(f"Watching {cache.beads_dir} (Ctrl-C to stop)")
        rebuilds = 0

        def on_rebuild(warnings):
            nonlocal rebuilds
            rebuilds += 1
            _warn(warnings)

        try:
            watch(cache, interval=interval, iterations=iterations, on_rebuild=on_rebuild)
        except KeyboardInterrupt:
            pass
        logger.info("Daemon stopped after %d rebuild(s)", rebuilds)

        if json_output:
            _print_json({"beads_dir": str(cache.beads_dir), "rebuilds": rebuilds})


def main():
    """Entry point for the bd command."""
    app()
