from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import get_settings


def reports_root() -> Path:
    root = get_settings().reports_dir()
    root.mkdir(parents=True, exist_ok=True)
    return root


def events_path(root: Path | None = None) -> Path:
    return (root or reports_root()) / 'events.jsonl'


def report_filename(generated_at: datetime) -> str:
    return f'fleet_report_{generated_at.strftime("%Y%m%d_%H%M%S")}.pdf'


def write_bytes_atomic(path: Path, content: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + '.tmp')
    try:
        tmp.write_bytes(content)
        tmp.replace(path)
    finally:
        if tmp.exists():
            tmp.unlink()


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding='utf-8'))


def append_event(event: str, *, root: Path | None = None, **extra: Any) -> None:
    now = datetime.now(timezone.utc).isoformat()
    row = {
        'ts': now,
        'event': event,
        **extra,
    }
    events_file = events_path(root)
    events_file.parent.mkdir(parents=True, exist_ok=True)
    with events_file.open('a', encoding='utf-8') as f:
        f.write(json.dumps(row, ensure_ascii=False, default=str) + '\n')
