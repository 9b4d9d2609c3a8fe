"""Plain-text session log written alongside the TODO document."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

HEADER_RULE = "═" * 39


class SessionLog:
    def __init__(self, log_file: str | Path) -> None:
        self.log_file = Path(log_file)

    def write_header(self, start_time: datetime) -> None:
        self._write(f"{HEADER_RULE}\nRalph Session: {start_time.isoformat()}\n{HEADER_RULE}\n")

    def append(self, message: str) -> None:
        timestamp = datetime.now().strftime("%H:%M:%S")
        self._write(f"[{timestamp}] {message}\n")

    def _write(self, text: str) -> None:
        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        with self.log_file.open("a", encoding="utf-8") as handle:
            handle.write(text)
