"""Inventory diff: decides what must move.

Rules:
- Include and exclude are two independent pattern sets; exclude always wins.
- Patterns use glob semantics (`*` any run, `?` one character) against the
  path relative to the operation root.
- Paths rejected by the patterns are never touched, on either side.
- Comparison signal, best first: content hash (both sides), size plus
  modification time, size alone.
- Non-delete actions come first, sorted by path; deletes come last, sorted
  by path, so an interrupted run never deletes before it has copied.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from core.domain.models import (
    ActionKind,
    InventoryEntry,
    SkipReason,
    TransferAction,
    TransferPlan,
)

PATTERN_SEPARATOR = ";"


def compile_glob(pattern: str) -> re.Pattern[str]:
    """Translate a glob with only `*` and `?` wildcards into an anchored regex."""

    parts: list[str] = []
    for ch in pattern:
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts) + r"\Z", re.DOTALL)


def compile_path_glob(pattern: str) -> re.Pattern[str]:
    """Segment-aware glob used by address wildcards.

    `*` and `?` stay inside one path segment; `**` spans any number of
    segments (`**/` also matches zero of them).
    """

    parts: list[str] = []
    index = 0
    while index < len(pattern):
        if pattern.startswith("**/", index):
            parts.append("(?:.*/)?")
            index += 3
        elif pattern.startswith("**", index):
            parts.append(".*")
            index += 2
        elif pattern[index] == "*":
            parts.append("[^/]*")
            index += 1
        elif pattern[index] == "?":
            parts.append("[^/]")
            index += 1
        else:
            parts.append(re.escape(pattern[index]))
            index += 1
    return re.compile("".join(parts) + r"\Z", re.DOTALL)


def glob_depth(pattern: str) -> int | None:
    """Number of path segments a pattern spans; None when `**` leaves it unbounded."""

    if "**" in pattern:
        return None
    return len([segment for segment in pattern.split("/") if segment])


def split_patterns(value: str | None) -> frozenset[str]:
    """`"*.tmp;logs/*"` -> {"*.tmp", "logs/*"}."""

    if not value:
        return frozenset()
    return frozenset(part.strip() for part in value.split(PATTERN_SEPARATOR) if part.strip())


@dataclass(frozen=True)
class PatternFilter:
    include: frozenset[str] = field(default_factory=frozenset)
    exclude: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_strings(cls, include: str | None = None, exclude: str | None = None) -> PatternFilter:
        return cls(include=split_patterns(include), exclude=split_patterns(exclude))

    def __post_init__(self) -> None:
        object.__setattr__(self, "_include_re", [compile_glob(p) for p in sorted(self.include)])
        object.__setattr__(self, "_exclude_re", [compile_glob(p) for p in sorted(self.exclude)])

    def rejection(self, path: str) -> SkipReason | None:
        """Why `path` is out of scope, or None when it is admitted."""

        if any(rx.match(path) for rx in self._exclude_re):  # type: ignore[attr-defined]
            return SkipReason.PATTERN_EXCLUDED
        if self._include_re and not any(rx.match(path) for rx in self._include_re):  # type: ignore[attr-defined]
            return SkipReason.NOT_INCLUDED
        return None

    def admits(self, path: str) -> bool:
        return self.rejection(path) is None


def _seconds(value: datetime) -> int:
    return int(value.timestamp())


def entries_differ(source: InventoryEntry, destination: InventoryEntry) -> bool:
    """True when `destination` does not hold the same content as `source`."""

    if source.content_hash and destination.content_hash:
        return source.content_hash.lower() != destination.content_hash.lower()
    if source.size_bytes != destination.size_bytes:
        return True
    if source.last_modified is not None and destination.last_modified is not None:
        # Stores stamp uploads with their own clock, so only a newer source counts.
        return _seconds(source.last_modified) > _seconds(destination.last_modified)
    return False


def _leaves(entries: Iterable[InventoryEntry]) -> list[InventoryEntry]:
    return [entry for entry in entries if not entry.is_directory]


def _ordered(actions: list[TransferAction]) -> TransferPlan:
    head = sorted((a for a in actions if a.kind is not ActionKind.DELETE), key=lambda a: a.relative_path)
    tail = sorted((a for a in actions if a.kind is ActionKind.DELETE), key=lambda a: a.relative_path)
    return TransferPlan(actions=tuple(head + tail))


def diff(
    source: Iterable[InventoryEntry],
    destination: Iterable[InventoryEntry],
    *,
    include: frozenset[str] | set[str] = frozenset(),
    exclude: frozenset[str] | set[str] = frozenset(),
    mirror: bool = False,
) -> TransferPlan:
    """Compare two inventories and produce the ordered plan reconciling them."""

    patterns = PatternFilter(include=frozenset(include), exclude=frozenset(exclude))
    destination_index = {entry.relative_path: entry for entry in _leaves(destination)}
    source_paths: set[str] = set()
    actions: list[TransferAction] = []

    for entry in _leaves(source):
        path = entry.relative_path
        source_paths.add(path)
        target = destination_index.get(path)

        rejection = patterns.rejection(path)
        if rejection is not None:
            actions.append(
                TransferAction(
                    kind=ActionKind.SKIP,
                    relative_path=path,
                    source=entry,
                    destination=target,
                    reason=rejection,
                )
            )
            continue

        if target is None:
            actions.append(TransferAction(kind=ActionKind.ADD, relative_path=path, source=entry))
        elif entries_differ(entry, target):
            actions.append(
                TransferAction(kind=ActionKind.UPDATE, relative_path=path, source=entry, destination=target)
            )
        else:
            actions.append(
                TransferAction(
                    kind=ActionKind.SKIP,
                    relative_path=path,
                    source=entry,
                    destination=target,
                    reason=SkipReason.UNCHANGED,
                )
            )

    if mirror:
        for path, target in destination_index.items():
            if path in source_paths or not patterns.admits(path):
                continue
            actions.append(TransferAction(kind=ActionKind.DELETE, relative_path=path, destination=target))

    return _ordered(actions)


def plan_removal(
    inventory: Iterable[InventoryEntry],
    *,
    include: frozenset[str] | set[str] = frozenset(),
    exclude: frozenset[str] | set[str] = frozenset(),
) -> TransferPlan:
    """`rm`: every entry admitted by the patterns becomes a Delete."""

    patterns = PatternFilter(include=frozenset(include), exclude=frozenset(exclude))
    actions: list[TransferAction] = []
    for entry in _leaves(inventory):
        rejection = patterns.rejection(entry.relative_path)
        if rejection is not None:
            actions.append(
                TransferAction(
                    kind=ActionKind.SKIP,
                    relative_path=entry.relative_path,
                    destination=entry,
                    reason=rejection,
                )
            )
        else:
            actions.append(
                TransferAction(kind=ActionKind.DELETE, relative_path=entry.relative_path, destination=entry)
            )
    return _ordered(actions)
