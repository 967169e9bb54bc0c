"""ID generation for Beads - collision-resistant hierarchical hash ids.

Top-level ids look like ``bd-a3f8`` (prefix, hyphen, 4-6 hex chars).
Children append a sequential index: ``bd-a3f8.1``, ``bd-a3f8.1.2``.
Hash parts always contain at least one hex letter, so they never look like
the old sequential ids (``bd-12``).
"""

import hashlib
import os
import re
import time
from typing import Iterable, Optional, Set

from beads_core.constants import (
    MAX_HASH_LENGTH,
    MAX_ID_RETRIES,
    MAX_NESTING_DEPTH,
    MIN_HASH_LENGTH,
)
from beads_core.exceptions import IDCollisionError, InvalidParentError

__all__ = [
    "generate_id",
    "derive_id",
    "allocate_id",
    "next_child_id",
    "choose_hash_length",
    "id_depth",
    "parent_of",
    "root_of",
    "is_sequential_id",
]


def choose_hash_length(existing_count: int, min_length: int = MIN_HASH_LENGTH) -> int:
    """Pick a hash length that keeps collision odds negligible.

    Grows with the number of existing top-level ids so the birthday bound
    stays well under 1%: 4 hex chars up to ~100 ids, 5 up to ~400,
    6 beyond that.
    """
    if existing_count < 100:
        length = 4
    elif existing_count < 400:
        length = 5
    else:
        length = 6
    return max(min_length, min(MAX_HASH_LENGTH, length))


def _hash_part(digest: str, size: int) -> Optional[str]:
    part = digest[:size]
    if part.isdigit():
        return None
    return part


def generate_id(
    prefix: str,
    title: str = "",
    existing_ids: Optional[Set[str]] = None,
    length: Optional[int] = None,
    max_retries: int = MAX_ID_RETRIES,
) -> str:
    """Generate a collision-resistant top-level id.

    Format: {prefix}-{hex-hash}

    Args:
        prefix: Workspace id prefix
        title: Issue title (mixed into the entropy)
        existing_ids: Set of existing IDs to check for collisions
        length: Hash length; chosen from the size of existing_ids when None
        max_retries: Maximum attempts to generate unique ID

    Returns:
        Unique ID string in format "bd-a3f8"

    Raises:
        IDCollisionError: If unable to generate unique ID after max_retries

    Implementation notes:
        - SHA256 of title + nanosecond timestamp + 16 random bytes
        - The second half of the retries widens the hash by one character
    """
    if existing_ids is None:
        existing_ids = set()

    if length is None:
        top_level = sum(1 for i in existing_ids if "." not in i)
        length = choose_hash_length(top_level)

    for attempt in range(max_retries):
        entropy = f"{title}|{time.time_ns()}|{os.urandom(16).hex()}".encode("utf-8")
        digest = hashlib.sha256(entropy).hexdigest()

        size = length if attempt < max_retries // 2 else min(length + 1, MAX_HASH_LENGTH)
        part = _hash_part(digest, size)
        if part is None:
            continue

        issue_id = f"{prefix}-{part}"
        if issue_id not in existing_ids:
            return issue_id

    raise IDCollisionError(
        f"Unable to generate unique ID for prefix '{prefix}' after {max_retries} attempts"
    )


def derive_id(
    prefix: str,
    seed: str,
    existing_ids: Iterable[str],
    length: int = MIN_HASH_LENGTH,
) -> str:
    """Deterministically derive a top-level id from ``seed``.

    Used wherever two replicas must independently arrive at the same id
    (merge renames, migration). Widens the hash until it is free; past the
    maximum width a counter is mixed into the seed.
    """
    taken = set(existing_ids)
    salt = 0
    while True:
        material = seed if salt == 0 else f"{seed}|{salt}"
        digest = hashlib.sha256(material.encode("utf-8")).hexdigest()
        for size in range(length, MAX_HASH_LENGTH + 1):
            part = _hash_part(digest, size)
            if part is None:
                continue
            candidate = f"{prefix}-{part}"
            if candidate not in taken:
                return candidate
        salt += 1


def id_depth(issue_id: str) -> int:
    """Nesting depth: 0 for top-level, 1 for ``bd-a3f8.1`` and so on."""
    return issue_id.count(".")


def parent_of(issue_id: str) -> Optional[str]:
    """Parent id implied by a hierarchical id, or None for top-level ids."""
    if "." not in issue_id:
        return None
    return issue_id.rsplit(".", 1)[0]


def root_of(issue_id: str) -> str:
    """Top-level ancestor implied by a hierarchical id."""
    return issue_id.split(".", 1)[0]


def next_child_id(parent_id: str, existing_ids: Iterable[str]) -> str:
    """Next sequential child id under ``parent_id``.

    Indices start at 1 and continue after the highest existing index, so
    gaps left by deleted children are not reused.
    """
    pattern = re.compile(re.escape(parent_id) + r"\.(\d+)$")
    highest = 0
    for existing in existing_ids:
        match = pattern.match(existing)
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{parent_id}.{highest + 1}"


def allocate_id(
    prefix: str,
    existing_ids: Set[str],
    parent_id: Optional[str] = None,
    title: str = "",
    min_length: int = MIN_HASH_LENGTH,
) -> str:
    """Allocate an id for a new issue.

    Args:
        prefix: Workspace id prefix
        existing_ids: All ids currently known (live, closed and deleted)
        parent_id: Parent for hierarchical decomposition (optional)
        title: Issue title, mixed into the entropy of top-level ids
        min_length: Lower bound for the hash length

    Raises:
        InvalidParentError: If parent_id is unknown or nesting would exceed
            MAX_NESTING_DEPTH levels
    """
    if parent_id is None:
        top_level = sum(1 for i in existing_ids if "." not in i)
        length = choose_hash_length(top_level, min_length)
        return generate_id(prefix, title, existing_ids=existing_ids, length=length)

    if parent_id not in existing_ids:
        raise InvalidParentError(f"Parent issue {parent_id} not found")

    if id_depth(parent_id) + 1 > MAX_NESTING_DEPTH:
        raise InvalidParentError(
            f"Cannot nest under {parent_id}: maximum depth is {MAX_NESTING_DEPTH} levels"
        )

    return next_child_id(parent_id, existing_ids)


def is_sequential_id(issue_id: str) -> bool:
    """True for old-style sequential ids such as ``bd-12`` or ``bd-12.1``."""
    _, sep, tail = root_of(issue_id).rpartition("-")
    return bool(sep) and tail.isdigit()
