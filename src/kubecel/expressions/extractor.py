"""Dependency extraction without a full conversion.

Two scans are offered:

- :func:`extract_from_value` walks a structured value (mappings, sequences,
  markers, CEL literals) and collects the markers it contains.
- :func:`extract_from_text` runs a union of regular expressions over raw
  expression text. It is used when the converter rejects an expression and
  as the cheap "does this need conversion" check.

:func:`rewrite_fallback` produces best-effort CEL for a few shapes the
converter may reject (optional chaining mixed with ``??``, plain dotted
paths) so that a fallback result can still carry usable text.
"""

from __future__ import annotations

import re
from collections.abc import Collection, Iterable

from kubecel.expressions.markers import (
    DEFAULT_MAX_DEPTH,
    SCHEMA_RESOURCE_ID,
    DependencyMarker,
    Value,
    dedupe_markers,
    infer_type,
    iter_markers,
)
from kubecel.expressions.parser import can_parse

__all__ = [
    "extract_from_value",
    "extract_from_text",
    "has_references",
    "rewrite_fallback",
    "split_top_level",
]

_PATH_CHARS = r"[A-Za-z0-9_.?\[\]]+"

_SCHEMA_PATTERN = re.compile(rf"\bschema\.({_PATH_CHARS})")
_RESOURCES_PATTERN = re.compile(r"\bresources\.(\w+)\.([A-Za-z0-9_.]+)")
_DIRECT_PATTERN = re.compile(r"\b(\w+)\.(status|spec|metadata)((?:\.\w+)*)")
_BRACKET_PATTERN = re.compile(
    r"""\b(\w+)\[["'](status|spec|metadata)["']\]((?:\[["']\w+["']\])*)"""
)
_BRACKET_KEY = re.compile(r"""\[["'](\w+)["']\]""")
_HOLE_PATTERN = re.compile(r"\$\{([^{}]*)\}")
_SIMPLE_PATH = re.compile(r"^[A-Za-z_$][\w$]*(?:\??\.[A-Za-z_$][\w$]*|\??\[\d+\])*$")

_RESERVED_ROOTS = frozenset({"resources", "schema"})


def extract_from_value(value: Value, max_depth: int = DEFAULT_MAX_DEPTH) -> list[DependencyMarker]:
    """Collect the markers reachable from ``value``, de-duplicated."""
    return dedupe_markers(iter_markers(value, max_depth))


def _clean_path(raw: str) -> str:
    path = raw.replace("?.", ".").replace("?[", "[")
    while True:
        trimmed = path.rstrip(".?[")
        if trimmed.count("]") > trimmed.count("[") and trimmed.endswith("]"):
            trimmed = trimmed[:-1]
        if trimmed == path:
            return path
        path = trimmed


def _marker(resource_id: str, raw_path: str) -> DependencyMarker | None:
    path = _clean_path(raw_path)
    if not path:
        return None
    if resource_id == "schema":
        resource_id = SCHEMA_RESOURCE_ID
    return DependencyMarker(resource_id, path, infer_type(path))


def _scan(text: str, resource_names: Collection[str]) -> list[tuple[int, DependencyMarker]]:
    found: list[tuple[int, DependencyMarker | None]] = []

    for name in resource_names:
        pattern = re.compile(rf"\b{re.escape(name)}(?:\?\.|\.)({_PATH_CHARS})")
        for match in pattern.finditer(text):
            found.append((match.start(), _marker(name, match.group(1))))

    for match in _SCHEMA_PATTERN.finditer(text):
        found.append((match.start(), _marker(SCHEMA_RESOURCE_ID, match.group(1))))

    for match in _RESOURCES_PATTERN.finditer(text):
        found.append((match.start(), _marker(match.group(1), match.group(2))))

    for match in _DIRECT_PATTERN.finditer(text):
        root = match.group(1)
        if root == "resources":
            continue
        found.append((match.start(), _marker(root, match.group(2) + match.group(3))))

    for match in _BRACKET_PATTERN.finditer(text):
        root = match.group(1)
        if root in _RESERVED_ROOTS:
            continue
        keys = _BRACKET_KEY.findall(match.group(3))
        found.append((match.start(), _marker(root, ".".join([match.group(2), *keys]))))

    return [(position, marker) for position, marker in found if marker is not None]


def extract_from_text(text: str, resource_names: Iterable[str] = ()) -> list[DependencyMarker]:
    """Find references in ``text`` by pattern.

    The rules overlap on purpose (``resources.web.status.x`` is matched by
    several of them); the union of their matches is returned in source order
    with repeats removed. Template holes (``${...}``) are scanned again on
    their own.

    Args:
        text: Raw expression text.
        resource_names: Names of the resources in scope.

    Returns:
        De-duplicated markers in order of first appearance.
    """
    names = tuple(resource_names)
    found = _scan(text, names)
    for hole in _HOLE_PATTERN.finditer(text):
        offset = hole.start(1)
        found.extend((offset + pos, marker) for pos, marker in _scan(hole.group(1), names))
    found.sort(key=lambda item: item[0])
    return dedupe_markers(marker for _, marker in found)


def has_references(text: str, resource_names: Iterable[str] = ()) -> bool:
    """Cheap check used to decide whether ``text`` needs conversion at all."""
    return bool(extract_from_text(text, resource_names))


def split_top_level(text: str, separator: str) -> list[str]:
    """Split ``text`` on ``separator`` outside brackets and string literals."""
    parts: list[str] = []
    depth = 0
    quote: str | None = None
    start = 0
    i = 0
    while i < len(text):
        char = text[i]
        if quote:
            if char == "\\":
                i += 2
                continue
            if char == quote:
                quote = None
        elif char in "\"'`":
            quote = char
        elif char in "([{":
            depth += 1
        elif char in ")]}":
            depth -= 1
        elif depth == 0 and text.startswith(separator, i):
            parts.append(text[start:i].strip())
            i += len(separator)
            start = i
            continue
        i += 1
    parts.append(text[start:].strip())
    return parts


def _qualify(text: str, resource_names: Collection[str]) -> str:
    """Prefix bare resource roots with ``resources.``."""
    for name in resource_names:
        text = re.sub(
            rf"(?<![\w.$]){re.escape(name)}(?=\??[.\[])",
            f"resources.{name}",
            text,
        )
    return text


def _null_chain(parts: list[str]) -> str:
    result = parts[-1]
    for part in reversed(parts[:-1]):
        alternate = f"({result})" if " ? " in result else result
        result = f"{part} != null ? {part} : {alternate}"
    return result


def rewrite_fallback(text: str, resource_names: Iterable[str] = ()) -> str | None:
    """Best-effort CEL for ``text`` when the converter gave up.

    Handles, in order: ``?.`` combined with ``??`` (split on top-level
    ``??`` and nested right to left), pure ``?.`` (kept as written once it
    re-parses), pure ``??`` with exactly two operands and a plain dotted
    path. Returns ``None`` for anything else.
    """
    names = tuple(resource_names)
    source = text.strip()
    has_optional = "?." in source
    has_nullish = "??" in source

    if has_optional and has_nullish:
        parts = split_top_level(source, "??")
        if len(parts) < 2 or not all(parts):
            return None
        return _null_chain([_qualify(part, names) for part in parts])

    if has_optional:
        if not can_parse(source):
            return None
        return _qualify(source, names)

    if has_nullish:
        parts = split_top_level(source, "??")
        if len(parts) != 2 or not all(parts):
            return None
        return _null_chain([_qualify(part, names) for part in parts])

    if _SIMPLE_PATH.match(source):
        return _qualify(source, names)
    return None
