from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any

from .models import record_to_dict


def append_jsonl(path: str | Path, payload: dict[str, Any]) -> None:
    path_obj = Path(path)
    path_obj.parent.mkdir(parents=True, exist_ok=True)
    with path_obj.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(payload, ensure_ascii=False))
        handle.write("\n")


def read_jsonl(path: str | Path) -> list[dict[str, Any]]:
    path_obj = Path(path)
    if not path_obj.exists():
        return []
    entries: list[dict[str, Any]] = []
    with path_obj.open("r", encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                continue
    return entries


class AuditLog:
    """Append-only JSONL trail. Consumers de-duplicate on the ``id`` field."""

    def __init__(self, log_dir: str | Path) -> None:
        self.log_dir = Path(log_dir)
        self.paths = {
            "violations": self.log_dir / "violations.jsonl",
            "transitions": self.log_dir / "phase_transitions.jsonl",
            "status_changes": self.log_dir / "status_changes.jsonl",
            "anomalies": self.log_dir / "anomalies.jsonl",
            "errors": self.log_dir / "evaluation_errors.jsonl",
        }
        # Accounts are evaluated on several threads but share these files.
        self._lock = threading.Lock()

    def write(self, kind: str, record: Any) -> None:
        path = self.paths[kind]
        payload = record if isinstance(record, dict) else record_to_dict(record)
        with self._lock:
            append_jsonl(path, payload)
