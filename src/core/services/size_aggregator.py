"""`du`: fold inventories into size rows."""

from __future__ import annotations

from typing import Iterable, Sequence

from core.domain.models import InventoryEntry, Location, SizeRow

_UNITS = ("KiB", "MiB", "GiB", "TiB", "PiB")


def format_size(size_bytes: int, *, human_readable: bool = False) -> str:
    """Bytes as an integer string, or in binary units with one decimal place."""

    if not human_readable:
        return str(size_bytes)
    if size_bytes < 1024:
        return f"{size_bytes} B"
    value = float(size_bytes)
    unit = _UNITS[0]
    for unit in _UNITS:
        value /= 1024
        if value < 1024:
            break
    return f"{value:.1f} {unit}"


def _label(root: Location, relative_path: str) -> str:
    if not relative_path or (not root.is_prefix and relative_path == root.name):
        return root.display()
    if root.is_remote:
        return root.as_prefix().display() + relative_path
    return root.join(relative_path)


def aggregate(
    inventories: Sequence[tuple[Location, Iterable[InventoryEntry]]],
    *,
    summarize: bool = False,
    human_readable: bool = False,
    total: bool = False,
) -> list[SizeRow]:
    """One row per leaf (or per root with `summarize`), plus an optional total row."""

    rows: list[SizeRow] = []
    grand_total = 0

    for root, entries in inventories:
        leaves = [entry for entry in entries if not entry.is_directory]
        root_total = sum(entry.size_bytes for entry in leaves)
        grand_total += root_total

        if summarize:
            rows.append(
                SizeRow(
                    label=root.display(),
                    size_bytes=root_total,
                    display_size=format_size(root_total, human_readable=human_readable),
                )
            )
            continue

        for entry in sorted(leaves, key=lambda e: e.relative_path):
            rows.append(
                SizeRow(
                    label=_label(root, entry.relative_path),
                    size_bytes=entry.size_bytes,
                    display_size=format_size(entry.size_bytes, human_readable=human_readable),
                )
            )

    if total:
        rows.append(
            SizeRow(
                label="total",
                size_bytes=grand_total,
                display_size=format_size(grand_total, human_readable=human_readable),
                is_total=True,
            )
        )
    return rows
