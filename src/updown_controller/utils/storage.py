from __future__ import annotations
import json
import os
from pathlib import Path
from datetime import datetime, timezone
from typing import Iterator, List, Tuple


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def append_event(path: str, event: dict) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    event = {"ts": _utc_now(), **event}
    with p.open("a") as f:
        f.write(json.dumps(event, default=str) + "\n")


def append_jsonl(path: str, record: dict) -> None:
    """Append one record as-is; the caller owns the ``ts`` field."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("a") as f:
        f.write(json.dumps(record, default=str) + "\n")


def read_jsonl(path: str) -> Iterator[dict]:
    p = Path(path)
    if not p.exists():
        return
    with p.open() as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(obj, dict):
                yield obj


def scan_jsonl(path: str, offset: int = 0) -> Tuple[List[dict], int]:
    """Records appended since byte ``offset``, plus the offset to resume from.

    A trailing line without a newline is left for the next scan.
    """
    p = Path(path)
    if not p.exists():
        return [], offset
    rows = []
    with p.open("rb") as f:
        f.seek(offset)
        for raw in f:
            if not raw.endswith(b"\n"):
                break
            offset += len(raw)
            try:
                obj = json.loads(raw)
            except ValueError:
                continue
            if isinstance(obj, dict):
                rows.append(obj)
    return rows, offset


def save_snapshot(path: str, payload: dict) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_suffix(p.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2, default=str))
    os.replace(tmp, p)


def load_snapshot(path: str) -> dict:
    p = Path(path)
    if not p.exists():
        return {}
    return json.loads(p.read_text())
