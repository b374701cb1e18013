"""
unsafe_paths.callgraph
======================

Per-file call graph and the search for paths from safe public entry points
to unsafe sinks.

Nodes are qualified function paths (``module::name``).  Edges are stored as
insertion-ordered sets per caller, so repeated call sites collapse into one
structural edge while the search order still follows the source order.

Node classes
------------
``unsafe_functions``
    Declared ``unsafe fn`` or containing an ``unsafe`` block.
``public_functions``
    Declared ``pub``.
``public_unsafe_functions``
    Public and containing an ``unsafe`` block.
``public_non_unsafe_functions``
    Public and not declared ``unsafe fn``.  May contain internally unsafe
    functions; those are the degenerate single-node paths.

Valid paths
-----------
A path ``[p0, ..., pn]`` with ``n >= 1`` is reported when ``p0`` is a
public non-unsafe function, ``pn`` is unsafe, no intermediate is unsafe
or public-unsafe, and no node after ``p0`` is public (minimality).  A
function that is public, not declared unsafe and internally unsafe is
reported on its own as ``[p0]`` and is not used as the origin of longer
paths.

Public API
----------
    CallGraph           - graph, node classes and path search
    callgraph_summary   - multi-line human-readable description
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Deque, Dict, Iterable, List, Optional, Sequence, Set

from .config import DEFAULT_MAX_SEARCH_DEPTH
from .models import FunctionCall, FunctionInfo, PathNodeInfo, UnsafePath

_log = logging.getLogger(__name__)


class CallGraph:
    """Call graph of one file.

    Attributes
    ----------
    functions : dict[str, FunctionInfo]
        Known functions by qualified path, in definition order.
    calls : dict[str, dict[str, None]]
        Caller -> ordered set of callees.
    reverse_calls : dict[str, dict[str, None]]
        Callee -> ordered set of callers.
    max_depth : int
        Maximum number of call edges in a searched path.
    """

    def __init__(self, max_depth: int = DEFAULT_MAX_SEARCH_DEPTH) -> None:
        self.max_depth = max_depth
        self.functions: Dict[str, FunctionInfo] = {}
        self.calls: Dict[str, Dict[str, None]] = {}
        self.reverse_calls: Dict[str, Dict[str, None]] = {}
        self.call_sites = 0
        self.unsafe_functions: Set[str] = set()
        self.public_functions: Set[str] = set()
        self.public_unsafe_functions: Set[str] = set()
        self.public_non_unsafe_functions: Set[str] = set()

    @classmethod
    def build(
        cls,
        functions: Dict[str, FunctionInfo],
        calls: Iterable[FunctionCall],
        max_depth: int = DEFAULT_MAX_SEARCH_DEPTH,
    ) -> "CallGraph":
        graph = cls(max_depth)
        for info in functions.values():
            graph.add_function(info)
        for call in calls:
            graph.add_call(call.caller, call.callee)
        return graph

    # ----- construction -----------------------------------------------------

    def add_function(self, info: FunctionInfo) -> None:
        """Register *info* and place it in the node classes it belongs to."""
        name = info.full_path
        self.functions[name] = info
        public = info.visibility.is_public
        if info.is_unsafe:
            self.unsafe_functions.add(name)
        if public:
            self.public_functions.add(name)
            if info.has_internal_unsafe:
                self.public_unsafe_functions.add(name)
            if not info.is_unsafe_declared:
                self.public_non_unsafe_functions.add(name)

    def add_call(self, caller: str, callee: str) -> None:
        self.call_sites += 1
        self.calls.setdefault(caller, {})[callee] = None
        self.reverse_calls.setdefault(callee, {})[caller] = None

    # ----- queries ----------------------------------------------------------

    def callees(self, name: str) -> List[str]:
        return list(self.calls.get(name, ()))

    def callers(self, name: str) -> List[str]:
        return list(self.reverse_calls.get(name, ()))

    def transitive_callees(self, name: str) -> Set[str]:
        """Every node reachable from *name* through one or more calls."""
        visited: Set[str] = set()
        worklist: Deque[str] = deque(self.calls.get(name, ()))
        while worklist:
            node = worklist.popleft()
            if node in visited:
                continue
            visited.add(node)
            worklist.extend(self.calls.get(node, ()))
        return visited

    @property
    def targets(self) -> Set[str]:
        """Sinks a longer path may end in: unsafe and not public."""
        return self.unsafe_functions - self.public_functions

    def degenerate_entries(self) -> List[str]:
        """Public, not declared unsafe, yet internally unsafe functions."""
        return [
            name for name in self.functions
            if name in self.public_unsafe_functions
            and name in self.public_non_unsafe_functions
        ]

    def reachable_targets(self, origin: str) -> Set[str]:
        return self.transitive_callees(origin) & self.targets

    # ----- path predicates --------------------------------------------------

    def is_valid_path(self, path: Sequence[str]) -> bool:
        if not path:
            return False
        if len(path) == 1:
            only = path[0]
            return (
                only in self.public_non_unsafe_functions
                and only in self.public_unsafe_functions
            )
        if path[0] not in self.public_non_unsafe_functions:
            return False
        if path[-1] not in self.unsafe_functions:
            return False
        return all(
            node not in self.unsafe_functions
            and node not in self.public_unsafe_functions
            for node in path[1:-1]
        )

    def is_minimal_path(self, path: Sequence[str]) -> bool:
        """No node after the origin is public."""
        return all(node not in self.public_functions for node in path[1:])

    # ----- search -----------------------------------------------------------

    def find_valid_path_names(self) -> List[List[str]]:
        """All valid minimal paths, as lists of qualified names."""
        degenerate = self.degenerate_entries()
        found: List[List[str]] = [[name] for name in degenerate]
        handled = set(degenerate)
        for origin in self.functions:
            if origin not in self.public_non_unsafe_functions or origin in handled:
                continue
            reachable = self.reachable_targets(origin)
            if not reachable:
                continue
            candidates: List[List[str]] = []
            self._dfs(origin, reachable, [], set(), 0, candidates)
            found.extend(
                path for path in candidates
                if len(path) > 1
                and self.is_valid_path(path)
                and self.is_minimal_path(path)
            )
        return found

    def _dfs(
        self,
        node: str,
        targets: Set[str],
        path: List[str],
        visited: Set[str],
        depth: int,
        out: List[List[str]],
    ) -> None:
        if depth > self.max_depth or node in visited:
            return
        if path and node not in targets and (
            node in self.unsafe_functions or node in self.public_unsafe_functions
        ):
            return
        visited.add(node)
        path.append(node)
        if node in targets:
            out.append(list(path))
        else:
            for callee in self.calls.get(node, ()):
                self._dfs(callee, targets, path, visited, depth + 1, out)
        path.pop()
        visited.discard(node)

    def find_valid_paths(self) -> List[UnsafePath]:
        """All valid minimal paths, with a snapshot of every node."""
        return [
            [self.node_info(name) for name in path]
            for path in self.find_valid_path_names()
        ]

    def node_info(self, name: str) -> PathNodeInfo:
        info = self.functions.get(name)
        if info is None:
            _log.debug("No function record for %s, using defaults", name)
            return PathNodeInfo(full_path=name)
        return PathNodeInfo.from_function(info)

    # ----- statistics -------------------------------------------------------

    def statistics(self) -> Dict[str, Any]:
        return {
            "functions": len(self.functions),
            "call_sites": self.call_sites,
            "edges": sum(len(callees) for callees in self.calls.values()),
            "unsafe_functions": len(self.unsafe_functions),
            "public_functions": len(self.public_functions),
            "public_unsafe_functions": len(self.public_unsafe_functions),
            "public_non_unsafe_functions": len(self.public_non_unsafe_functions),
        }

    def __repr__(self) -> str:
        stats = self.statistics()
        return f"CallGraph(functions={stats['functions']}, edges={stats['edges']})"


# ---------------------------------------------------------------------------
# Convenience utilities
# ---------------------------------------------------------------------------

def callgraph_summary(cg: CallGraph, title: Optional[str] = None) -> str:
    """Return a human-readable multi-line summary."""
    stats = cg.statistics()
    lines = [
        title or "Call Graph Summary",
        f"  Functions:            {stats['functions']}",
        f"  Call sites:           {stats['call_sites']}",
        f"  Distinct edges:       {stats['edges']}",
        f"  Unsafe:               {stats['unsafe_functions']}",
        f"  Public:               {stats['public_functions']}",
        f"  Public + unsafe:      {stats['public_unsafe_functions']}",
        f"  Public, safe sig:     {stats['public_non_unsafe_functions']}",
    ]
    for name in cg.functions:
        tags = []
        if name in cg.public_functions:
            tags.append("pub")
        if name in cg.unsafe_functions:
            tags.append("unsafe")
        lines.append(
            f"  {name} [{', '.join(tags) or '-'}]: "
            f"calls [{', '.join(cg.callees(name))}]"
        )
    return "\n".join(lines)
