from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from .utils import ensure_parent


class RunState(str, Enum):
    INIT = "INIT"
    VALIDATE_INPUT = "VALIDATE_INPUT"
    ARCHIVE = "ARCHIVE"
    SAMPLE_FIX = "SAMPLE_FIX"
    SNP_FIX = "SNP_FIX"
    SYNC_GENOTYPES = "SYNC_GENOTYPES"
    COPY_THROUGH = "COPY_THROUGH"
    DONE = "DONE"
    FAILED = "FAILED"


class RunLog:
    """Record orchestrator state transitions so a failed run shows where it stopped."""

    def __init__(
        self,
        path: Path,
        *,
        session: str,
        bfile: str,
        out_prefix: str,
        started_at: Optional[datetime] = None,
    ) -> None:
        self.path = path
        self.latest_path = self.path.parent / "latest.json"
        self.session = session
        self.started_at = started_at or datetime.now()
        self.state = RunState.INIT
        self._state_started = self.started_at
        self.data: Dict[str, object] = {
            "session": session,
            "bfile": bfile,
            "out": out_prefix,
            "started_at": self._fmt(self.started_at),
            "status": "running",
            "states": [
                {"state": RunState.INIT.value, "started_at": self._fmt(self.started_at)},
            ],
        }
        self._write()

    @staticmethod
    def _fmt(dt: datetime) -> str:
        return dt.isoformat(timespec="seconds")

    def _write(self) -> None:
        ensure_parent(self.path)
        tmp_path = self.path.parent / f"{self.path.name}.tmp"
        tmp_path.write_text(json.dumps(self.data, indent=2), encoding="utf-8")
        tmp_path.replace(self.path)

        latest_payload: Dict[str, object] = {
            "session": self.session,
            "progress_file": self.path.name,
            "status": self.data["status"],
            "state": self.state.value,
            "started_at": self.data["started_at"],
        }
        if "finished_at" in self.data:
            latest_payload["finished_at"] = self.data["finished_at"]

        tmp_latest = self.latest_path.parent / f"{self.latest_path.name}.tmp"
        tmp_latest.write_text(json.dumps(latest_payload, indent=2), encoding="utf-8")
        tmp_latest.replace(self.latest_path)

    def _close_current(self, now: datetime, status: str, message: Optional[str] = None) -> None:
        entry = self.data["states"][-1]
        entry["status"] = status
        entry["finished_at"] = self._fmt(now)
        entry["duration_seconds"] = round((now - self._state_started).total_seconds(), 2)
        if message:
            entry["message"] = message

    def enter(self, state: RunState, **details: object) -> None:
        now = datetime.now()
        self._close_current(now, "completed")
        self.state = state
        self._state_started = now
        entry: Dict[str, object] = {"state": state.value, "started_at": self._fmt(now)}
        entry.update(details)
        self.data["states"].append(entry)
        self._write()

    def finish(self, *, summary: Optional[Dict[str, object]] = None) -> None:
        self.enter(RunState.DONE)
        now = datetime.now()
        self._close_current(now, "completed")
        self.data["status"] = "completed"
        self.data["finished_at"] = self._fmt(now)
        if summary:
            self.data["summary"] = summary
        self._write()

    def fail(self, message: str) -> None:
        now = datetime.now()
        failed_in = self.state
        self._close_current(now, "failed", message)
        self.state = RunState.FAILED
        self.data["states"].append(
            {"state": RunState.FAILED.value, "started_at": self._fmt(now), "failed_in": failed_in.value}
        )
        self.data["status"] = "failed"
        self.data["finished_at"] = self._fmt(now)
        self.data["message"] = message
        self._write()
