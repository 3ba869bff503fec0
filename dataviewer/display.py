"""
View model for rendering a parse result.

Trees are shown as collapsible nodes; tables as a grid of strings. Expansion
state is a frozenset of node paths owned by the caller: toggling returns a
new set instead of mutating a shared one.
"""

from __future__ import annotations

import json
from typing import Any, Dict, FrozenSet, Iterator, List, Literal, Sequence

from .models import ParseError, ParseResult, TableResult, TreeResult

ROOT = "root"

Expanded = FrozenSet[str]
ViewKind = Literal["tree", "table", "error"]


def view_kind(result: ParseResult) -> ViewKind:
    if isinstance(result, ParseError):
        return "error"
    return result.kind


def child_path(parent: str, key: Any) -> str:
    return f"{parent}/{key}"


def toggle(expanded: Expanded, path: str) -> Expanded:
    if path in expanded:
        return expanded - {path}
    return expanded | {path}


def _children(node: Any) -> Iterator[tuple]:
    if isinstance(node, dict):
        return iter(node.items())
    return iter(enumerate(node))


def _container_paths(node: Any, path: str) -> Iterator[str]:
    if isinstance(node, (dict, list)) and node:
        yield path
        for key, value in _children(node):
            yield from _container_paths(value, child_path(path, key))


def expand_all(value: Any) -> Expanded:
    """Every non-empty container path in value, root included."""
    return frozenset(_container_paths(value, ROOT))


def _scalar(node: Any) -> str:
    return json.dumps(node, ensure_ascii=False)


def tree_lines(value: Any, expanded: Expanded = frozenset(), indent: str = "  ") -> List[str]:
    """
    Render value as indented text lines.

    Expanded containers are marked ▼ and list their children; collapsed ones
    are marked ► and shown as {...} or [...].
    """
    lines: List[str] = []

    def walk(node: Any, path: str, label: str, depth: int) -> None:
        pad = indent * depth
        if not isinstance(node, (dict, list)):
            lines.append(f"{pad}{label}{_scalar(node)}")
            return

        opening, closing = ("[", "]") if isinstance(node, list) else ("{", "}")
        if not node:
            lines.append(f"{pad}{label}{opening}{closing}")
            return
        if path not in expanded:
            lines.append(f"{pad}{label}► {opening}...{closing}")
            return

        lines.append(f"{pad}{label}▼ {opening}")
        for key, child in _children(node):
            key_label = f"{key}: " if isinstance(node, list) else f"{_scalar(key)}: "
            walk(child, child_path(path, key), key_label, depth + 1)
        lines.append(f"{pad}{closing}")

    walk(value, ROOT, "", 0)
    return lines


def table_columns(rows: Sequence[Dict[str, Any]]) -> List[str]:
    """Union of keys across all rows, in first-seen order."""
    columns: Dict[str, None] = {}
    for row in rows:
        for key in row:
            columns.setdefault(key, None)
    return list(columns)


def table_cells(rows: Sequence[Dict[str, Any]]) -> List[List[str]]:
    columns = table_columns(rows)
    return [[str(row[c]) if c in row else "" for c in columns] for row in rows]


def error_lines(error: ParseError) -> List[str]:
    lines = ["Error", error.message]
    if error.original_data_preview:
        lines += ["Data Preview:", error.original_data_preview]
    return lines


def render(result: ParseResult, expanded: Expanded = frozenset()) -> List[str]:
    """Plain-text rendering, dispatched on the result variant."""
    if isinstance(result, TreeResult):
        return tree_lines(result.value, expanded)
    if isinstance(result, TableResult):
        if not result.rows:
            return ["No data available"]
        columns = table_columns(result.rows)
        return [" | ".join(columns)] + [" | ".join(cells) for cells in table_cells(result.rows)]
    return error_lines(result)
