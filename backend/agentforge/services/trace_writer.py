"""Append-only JSONL sink for agent phase traces."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any


class JsonlTraceWriter:
    """Writes one JSON object per line. Writes are serialized per writer."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    async def write(self, path: str | Path, record: dict[str, Any], append: bool = True) -> None:
        line = json.dumps(record, default=str, ensure_ascii=False) + "\n"
        target = Path(path)
        async with self._lock:
            await asyncio.to_thread(self._write_line, target, line, append)

    @staticmethod
    def _write_line(path: Path, line: str, append: bool) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a" if append else "w", encoding="utf-8") as fh:
            fh.write(line)


def read_trace(path: str | Path) -> list[dict[str, Any]]:
    """Load every record of a JSONL trace file."""
    records = []
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        if line.strip():
            records.append(json.loads(line))
    return records
