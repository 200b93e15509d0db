"""Rebuild nested form answers and resolve which entity type they target.

Marketplace answers arrive as flat key/value pairs produced by an HTML form,
for example ``iteration_vote[iteration_id]=1``. ``parse_answers`` turns them
back into the nested mapping the form was built from, following the usual
form-encoding conventions:

* ``a[b][c]=v`` and ``a.b.c=v`` nest mappings,
* ``a[]=v`` appends to a list,
* ``a[][b]=v`` builds a list of mappings, starting a new element whenever the
  last one already holds ``b``.

``resolve_entity`` then walks the top-level keys in order and returns the
first nested mapping whose key names a persistable entity in the registry.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

from hitsync.reconcile.entities import EntityRegistry

_HEAD_RE = re.compile(r"^([^\[\]]+)")
_BRACKET_RE = re.compile(r"\[([^\[\]]*)\]")

AnswerPairs = Iterable[tuple[str, str]] | Mapping[str, str]


class AnswerParseError(ValueError):
    """Answer keys cannot be combined into one nested mapping."""


def parse_answers(pairs: AnswerPairs) -> dict[str, Any]:
    """Reconstruct a nested mapping from flat, bracket-annotated answer keys."""

    items = pairs.items() if isinstance(pairs, Mapping) else pairs
    result: dict[str, Any] = {}
    for key, value in items:
        _assign(result, split_key(key), value, key)
    return result


def split_key(key: str) -> list[str]:
    """Split ``a.b[c][]`` into ``["a", "b", "c", ""]``."""

    head_match = _HEAD_RE.match(key)
    if head_match is None:
        raise AnswerParseError(f"Answer key has no name: {key!r}")

    segments = head_match.group(1).split(".")
    if any(not part for part in segments):
        raise AnswerParseError(f"Answer key has an empty dotted segment: {key!r}")

    position = head_match.end()
    while position < len(key):
        bracket = _BRACKET_RE.match(key, position)
        if bracket is None:
            raise AnswerParseError(f"Malformed answer key: {key!r}")
        segments.append(bracket.group(1))
        position = bracket.end()
    return segments


def type_name_for_key(key: str) -> str:
    """Derive an entity type name from an answer key: ``iteration_vote`` -> ``IterationVote``."""

    return "".join(part[:1].upper() + part[1:] for part in re.split(r"[_\-\s]+", key) if part)


def resolve_entity(
    answers: Mapping[str, Any],
    registry: EntityRegistry,
) -> tuple[type | None, dict[str, Any] | None]:
    """Return the entity type and its sub-mapping for the first plausible nested key.

    Earlier keys win; later nested mappings are ignored even when they would
    resolve as well. ``(None, None)`` means the submission targets nothing known.
    """

    for key, value in answers.items():
        if not isinstance(value, Mapping):
            continue
        model = registry.resolve(type_name_for_key(key))
        if model is None or not registry.is_persistable(model):
            continue
        return model, dict(value)
    return None, None


def _assign(target: dict[str, Any], segments: list[str], value: str, full_key: str) -> None:
    head, rest = segments[0], segments[1:]
    if head == "":
        raise AnswerParseError(f"Unexpected list marker in answer key: {full_key!r}")

    if not rest:
        if isinstance(target.get(head), (dict, list)):
            raise AnswerParseError(f"Expected nested value for {head!r} in {full_key!r}")
        target[head] = value
        return

    if rest[0] == "":
        items = target.setdefault(head, [])
        if not isinstance(items, list):
            raise AnswerParseError(f"Expected list for {head!r} in {full_key!r}")
        child_segments = rest[1:]
        if not child_segments:
            items.append(value)
            return
        last = items[-1] if items else None
        if isinstance(last, dict) and not _has_path(last, child_segments):
            _assign(last, child_segments, value, full_key)
            return
        element: dict[str, Any] = {}
        _assign(element, child_segments, value, full_key)
        items.append(element)
        return

    child = target.setdefault(head, {})
    if not isinstance(child, dict):
        raise AnswerParseError(f"Expected mapping for {head!r} in {full_key!r}")
    _assign(child, rest, value, full_key)


def _has_path(mapping: dict[str, Any], segments: list[str]) -> bool:
    current: Any = mapping
    for segment in segments:
        if segment == "":
            return True
        if not isinstance(current, dict) or segment not in current:
            return False
        current = current[segment]
    return True
