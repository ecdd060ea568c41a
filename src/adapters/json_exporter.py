"""Exportación JSON del resumen de un comando (`--json-summary PATH`).

- Formato estable: claves ordenadas, UTF-8.
- Un elemento por acción del plan, con su resultado y motivo.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from core.domain.models import TransferSummary


def summary_payload(summary: TransferSummary, *, command: str) -> dict[str, Any]:
    return {
        "command": command,
        "dry_run": summary.dry_run,
        "cancelled": summary.cancelled,
        "duration_seconds": round(summary.duration, 3),
        "log_file": summary.log_file,
        "counts": {
            "succeeded": summary.succeeded,
            "failed": summary.failed,
            "skipped": summary.skipped,
        },
        "bytes_transferred": summary.bytes_transferred,
        "items": [
            {
                "action": result.action.kind.value,
                "path": result.action.relative_path,
                "outcome": result.outcome.value,
                "reason": result.reason,
                "bytes": result.bytes_transferred,
            }
            for result in summary.results
        ],
    }


def export_summary_json(*, summary: TransferSummary, command: str, output_path: Path) -> Path:
    """Write the summary of `command` to `output_path` and return the path."""

    output_path.parent.mkdir(parents=True, exist_ok=True)
    payload = summary_payload(summary, command=command)
    output_path.write_text(
        json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True) + "\n",
        encoding="utf-8",
    )
    return output_path
