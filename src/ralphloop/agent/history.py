"""Run history journal and its JSON persistence."""

from __future__ import annotations

import dataclasses
import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path

from ralphloop.agent.models import (
    HistoryEntry,
    IterationRecord,
    LoopStatus,
    RunConfig,
    Signal,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_HISTORY_DIR = Path.home() / ".ralph" / "history"
INDEX_FILENAME = "index.json"
INDEX_VERSION = 1
HISTORY_ID_LENGTH = 10

IndexRow = dict[str, object]


def generate_history_id() -> str:
    return uuid.uuid4().hex[:HISTORY_ID_LENGTH]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def create_history_entry(config: RunConfig, prompt: str) -> HistoryEntry:
    return HistoryEntry(
        id=generate_history_id(),
        timestamp=_now().isoformat(),
        project_root=config.project_root,
        prompt=prompt,
        config=config.snapshot(),
    )


def create_iteration_record(
    start_time: datetime,
    output: str,
    signal: Signal | None,
    *,
    end_time: datetime | None = None,
) -> IterationRecord:
    """Build a record whose ``number`` is assigned by :func:`add_iteration`."""
    finished = end_time or _now()
    return IterationRecord(
        number=0,
        start_time=start_time.isoformat(),
        end_time=finished.isoformat(),
        duration=(finished - start_time).total_seconds(),
        output=output,
        signal=signal,
    )


def add_iteration(entry: HistoryEntry, iteration: IterationRecord) -> HistoryEntry:
    numbered = dataclasses.replace(iteration, number=len(entry.iterations) + 1)
    return dataclasses.replace(entry, iterations=(*entry.iterations, numbered))


def finalize_history_entry(
    entry: HistoryEntry, result: LoopStatus, total_duration: float
) -> HistoryEntry:
    if entry.result is not LoopStatus.RUNNING:
        msg = f"History entry {entry.id} is already finalized as {entry.result.value}"
        raise ValueError(msg)
    if result is LoopStatus.RUNNING:
        raise ValueError("A history entry cannot be finalized as running")
    return dataclasses.replace(entry, result=result, total_duration=total_duration)


def history_filename(entry: HistoryEntry) -> str:
    date = datetime.fromisoformat(entry.timestamp).date().isoformat()
    return f"{date}-{entry.id}.json"


def entry_to_dict(entry: HistoryEntry) -> dict[str, object]:
    return {
        "id": entry.id,
        "timestamp": entry.timestamp,
        "project_root": entry.project_root,
        "prompt": entry.prompt,
        "config": dict(entry.config),
        "iterations": [
            {
                "number": record.number,
                "start_time": record.start_time,
                "end_time": record.end_time,
                "duration": record.duration,
                "output": record.output,
                "signal": record.signal.to_dict() if record.signal else None,
            }
            for record in entry.iterations
        ],
        "result": entry.result.value,
        "total_duration": entry.total_duration,
    }


def entry_from_dict(payload: dict[str, object]) -> HistoryEntry:
    raw_iterations = payload.get("iterations")
    iterations = tuple(
        IterationRecord(
            number=int(item.get("number", 0)),
            start_time=str(item.get("start_time", "")),
            end_time=str(item.get("end_time", "")),
            duration=float(item.get("duration", 0.0)),
            output=str(item.get("output", "")),
            signal=Signal.from_dict(item["signal"]) if item.get("signal") else None,
        )
        for item in (raw_iterations if isinstance(raw_iterations, list) else [])
        if isinstance(item, dict)
    )
    config = payload.get("config")
    return HistoryEntry(
        id=str(payload["id"]),
        timestamp=str(payload["timestamp"]),
        project_root=str(payload.get("project_root", "")),
        prompt=str(payload.get("prompt", "")),
        config=config if isinstance(config, dict) else {},
        iterations=iterations,
        result=LoopStatus(str(payload.get("result", LoopStatus.RUNNING.value))),
        total_duration=float(payload.get("total_duration", 0.0)),
    )


def index_row(entry: HistoryEntry) -> IndexRow:
    return {
        "id": entry.id,
        "timestamp": entry.timestamp,
        "project_root": entry.project_root,
        "result": entry.result.value,
        "iteration_count": len(entry.iterations),
        "total_duration": entry.total_duration,
    }


class HistoryStore:
    """Stores one JSON document per run plus a summary index."""

    def __init__(self, history_dir: str | Path | None = None) -> None:
        self.history_dir = Path(history_dir) if history_dir else DEFAULT_HISTORY_DIR

    @property
    def index_file(self) -> Path:
        return self.history_dir / INDEX_FILENAME

    def ensure_dir(self) -> None:
        if not self.history_dir.exists():
            self.history_dir.mkdir(parents=True, exist_ok=True)
            LOGGER.debug("history_dir_created", extra={"path": str(self.history_dir)})

    def load_index(self) -> dict[str, object]:
        self.ensure_dir()
        empty: dict[str, object] = {"version": INDEX_VERSION, "entries": []}
        if not self.index_file.exists():
            return empty
        try:
            with self.index_file.open("r", encoding="utf-8") as fh:
                parsed = json.load(fh)
        except (OSError, json.JSONDecodeError):
            LOGGER.exception("history_index_unreadable", extra={"path": str(self.index_file)})
            return empty
        if not isinstance(parsed, dict) or not isinstance(parsed.get("entries"), list):
            LOGGER.error("history_index_malformed", extra={"path": str(self.index_file)})
            return empty
        if parsed.get("version") != INDEX_VERSION:
            LOGGER.warning(
                "history_index_version_mismatch",
                extra={"found": parsed.get("version"), "expected": INDEX_VERSION},
            )
        return parsed

    def save_index(self, index: dict[str, object]) -> None:
        self.ensure_dir()
        self.index_file.write_text(json.dumps(index, indent=2), encoding="utf-8")

    def save(self, entry: HistoryEntry) -> Path:
        """Write ``entry`` and upsert its index row. Raises ``OSError`` on failure."""
        self.ensure_dir()
        path = self.history_dir / history_filename(entry)
        path.write_text(json.dumps(entry_to_dict(entry), indent=2), encoding="utf-8")
        LOGGER.debug("history_entry_saved", extra={"path": str(path)})

        index = self.load_index()
        rows = _index_rows(index)
        row = index_row(entry)
        for position, existing in enumerate(rows):
            if existing.get("id") == entry.id:
                rows[position] = row
                break
        else:
            rows.append(row)
        self.save_index({"version": INDEX_VERSION, "entries": rows})
        return path

    def load(self, history_id: str) -> HistoryEntry | None:
        self.ensure_dir()
        for path in sorted(self.history_dir.glob("*.json")):
            if path.name == INDEX_FILENAME or history_id not in path.name:
                continue
            try:
                with path.open("r", encoding="utf-8") as fh:
                    return entry_from_dict(json.load(fh))
            except (OSError, ValueError, KeyError, TypeError):
                LOGGER.exception("history_entry_unreadable", extra={"path": str(path)})
                return None
        return None

    def list_recent(self, limit: int | None = 10) -> list[IndexRow]:
        rows = _index_rows(self.load_index())
        rows.sort(key=_row_sort_key, reverse=True)
        if limit is None:
            return rows
        return rows[: max(limit, 0)]


def _index_rows(index: dict[str, object]) -> list[IndexRow]:
    entries = index.get("entries")
    if not isinstance(entries, list):
        return []
    return [row for row in entries if isinstance(row, dict)]


def _row_sort_key(row: IndexRow) -> datetime:
    try:
        parsed = datetime.fromisoformat(str(row.get("timestamp", "")))
    except ValueError:
        return datetime.min.replace(tzinfo=timezone.utc)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed
