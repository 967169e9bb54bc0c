"""Graph algorithms for Beads - reachability and cycle detection.

Pure functions over adjacency maps (node -> list of nodes it depends on),
shared by the dependency manager and the merge reconciler.
"""

from typing import Dict, List, Optional, Set

__all__ = [
    "find_path",
    "find_cycles",
]


def find_path(adjacency: Dict[str, List[str]], start: str, goal: str) -> Optional[List[str]]:
    """Return a path start -> ... -> goal following edges, or None.

    Iterative depth-first search with a visited set.
    """
    if start == goal:
        return [start]

    stack = [(start, [start])]
    visited: Set[str] = {start}

    while stack:
        node, path = stack.pop()
        for neighbour in sorted(adjacency.get(node, []), reverse=True):
            if neighbour == goal:
                return path + [neighbour]
            if neighbour not in visited:
                visited.add(neighbour)
                stack.append((neighbour, path + [neighbour]))

    return None


def _normalize(cycle: List[str]) -> List[str]:
    """Rotate so the smallest id comes first; the closing node is repeated."""
    body = cycle[:-1]
    start = body.index(min(body))
    rotated = body[start:] + body[:start]
    return rotated + [rotated[0]]


def find_cycles(adjacency: Dict[str, List[str]]) -> List[List[str]]:
    """Find cycles in a directed graph.

    Reports one path per back edge found by a depth-first scan, each
    normalized to start at its smallest id and de-duplicated, e.g.
    ``[["bd-a", "bd-b", "bd-a"]]``. Output is sorted, so it is stable across
    runs and replicas.
    """
    white, grey, black = 0, 1, 2
    colour: Dict[str, int] = {}
    cycles: Dict[tuple, List[str]] = {}

    nodes = set(adjacency)
    for targets in adjacency.values():
        nodes.update(targets)

    for root in sorted(nodes):
        if colour.get(root, white) != white:
            continue

        # Explicit stack of (node, iterator over neighbours) to avoid recursion limits
        path = [root]
        colour[root] = grey
        stack = [iter(sorted(adjacency.get(root, [])))]

        while stack:
            advanced = False
            for neighbour in stack[-1]:
                state = colour.get(neighbour, white)
                if state == grey:
                    cycle = _normalize(path[path.index(neighbour):] + [neighbour])
                    cycles.setdefault(tuple(cycle), cycle)
                elif state == white:
                    colour[neighbour] = grey
                    path.append(neighbour)
                    stack.append(iter(sorted(adjacency.get(neighbour, []))))
                    advanced = True
                    break
            if not advanced:
                colour[path.pop()] = black
                stack.pop()

    return [cycles[key] for key in sorted(cycles)]
