"""Canonical ordering for every emitted collection.

Sort order: source file (case-insensitive) -> line -> column -> kind -> id.
The raw file string is the last key so that two files differing only in case
still sort the same way every run.
"""

from typing import Any, Dict, Iterable, List, Tuple

from .models import parse_source_ref

CANONICAL_ORDER = ["file", "line", "column", "kind", "id"]

CanonicalKey = Tuple[str, int, int, str, str, str]


def _fields_from_dict(item: Dict[str, Any]) -> Tuple[str, int, int, str, str]:
    source = item.get("source_ref") or item.get("sourceRef") or (item.get("evidence") or {}).get("source")
    file_part, line, column = parse_source_ref(source)
    file_part = item.get("file", file_part) or ""
    line = item.get("line", line) or 0
    column = item.get("column", column) or 0
    kind = item.get("kind") or item.get("type") or ""
    return file_part, line, column, kind, item.get("id") or ""


def canonical_key(item: Any) -> CanonicalKey:
    """Return the comparator key for an expectation, finding, trace or dict."""
    if hasattr(item, "canonical_fields"):
        file_part, line, column, kind, ident = item.canonical_fields()
    elif isinstance(item, dict):
        file_part, line, column, kind, ident = _fields_from_dict(item)
    else:
        raise TypeError(f"Cannot derive canonical key for {type(item).__name__}")
    file_part = str(file_part or "")
    return (
        file_part.lower(),
        int(line or 0),
        int(column or 0),
        str(kind or ""),
        str(ident or ""),
        file_part,
    )


def canonical_sort(items: Iterable[Any]) -> List[Any]:
    """Sort items with the canonical comparator. Idempotent and input-order independent."""
    return sorted(items, key=canonical_key)
