"""Execution log: append-only record of every run.

`record()` is durable before it returns. For the file-backed log this means the
line has been flushed and fsync'ed; a crash afterwards cannot lose it.

Each execution's history is totally ordered. Appends for different executions
may interleave freely.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import JsonValue

from express_workflow.core.errors import ExecutionFinalizedError, NotFoundError
from express_workflow.workflow.records import (
    ExecutionRecord,
    ExecutionStatus,
    StepEvent,
    utc_now,
)

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.\-]{0,127}")


class ExecutionLog(ABC):
    """Durable, append-only store of Execution Records."""

    @abstractmethod
    def start(
        self, *, execution_id: str, workflow_id: str, input: JsonValue
    ) -> tuple[ExecutionRecord, bool]:
        """Record a new RUNNING execution.

        Returns:
            The stored record and whether it was created by this call. An
            existing execution id is returned unchanged with ``False``.
        """

    @abstractmethod
    def record(self, execution_id: str, event: StepEvent) -> None:
        """Append a step event. Raises NotFoundError / ExecutionFinalizedError."""

    @abstractmethod
    def finish(
        self,
        execution_id: str,
        status: ExecutionStatus,
        *,
        output: JsonValue = None,
        error: str | None = None,
        error_type: str | None = None,
    ) -> ExecutionRecord:
        """Move a RUNNING execution to a terminal status."""

    @abstractmethod
    def get(self, execution_id: str) -> ExecutionRecord: ...

    @abstractmethod
    def list(
        self, *, status: ExecutionStatus | None = None, limit: int | None = None
    ) -> list[ExecutionRecord]:
        """Executions, most recently started first."""

    def get_history(self, execution_id: str) -> list[StepEvent]:
        return list(self.get(execution_id).step_history)


def _finalized(record: ExecutionRecord) -> ExecutionFinalizedError:
    return ExecutionFinalizedError(
        f"Execution {record.execution_id} is {record.status.value}; its history is closed"
    )


def _sort_and_limit(
    records: list[ExecutionRecord], status: ExecutionStatus | None, limit: int | None
) -> list[ExecutionRecord]:
    if status is not None:
        records = [r for r in records if r.status == status]
    records.sort(key=lambda r: r.start_time, reverse=True)
    return records if limit is None else records[:limit]


class MemoryExecutionLog(ExecutionLog):
    """Process-local log. Nothing survives a restart; meant for tests and demos."""

    def __init__(self) -> None:
        self._records: dict[str, ExecutionRecord] = {}
        self._lock = threading.Lock()

    def start(
        self, *, execution_id: str, workflow_id: str, input: JsonValue
    ) -> tuple[ExecutionRecord, bool]:
        with self._lock:
            existing = self._records.get(execution_id)
            if existing is not None:
                return existing, False
            record = ExecutionRecord(
                execution_id=execution_id, workflow_id=workflow_id, input=input
            )
            self._records[execution_id] = record
            return record, True

    def record(self, execution_id: str, event: StepEvent) -> None:
        with self._lock:
            current = self._get_unlocked(execution_id)
            if current.status.is_terminal:
                raise _finalized(current)
            self._records[execution_id] = current.model_copy(
                update={"step_history": [*current.step_history, event]}
            )

    def finish(
        self,
        execution_id: str,
        status: ExecutionStatus,
        *,
        output: JsonValue = None,
        error: str | None = None,
        error_type: str | None = None,
    ) -> ExecutionRecord:
        if not status.is_terminal:
            raise ValueError("finish() requires a terminal status")
        with self._lock:
            current = self._get_unlocked(execution_id)
            if current.status.is_terminal:
                raise _finalized(current)
            final = current.model_copy(
                update={
                    "status": status,
                    "end_time": utc_now(),
                    "output": output,
                    "error": error,
                    "error_type": error_type,
                }
            )
            self._records[execution_id] = final
            return final

    def get(self, execution_id: str) -> ExecutionRecord:
        with self._lock:
            return self._get_unlocked(execution_id)

    def list(
        self, *, status: ExecutionStatus | None = None, limit: int | None = None
    ) -> list[ExecutionRecord]:
        with self._lock:
            records = list(self._records.values())
        return _sort_and_limit(records, status, limit)

    def _get_unlocked(self, execution_id: str) -> ExecutionRecord:
        record = self._records.get(execution_id)
        if record is None:
            raise NotFoundError(execution_id)
        return record


class JsonlExecutionLog(ExecutionLog):
    """One append-only JSON Lines file per execution.

    Layout:
        <root>/<execution_id>.jsonl

    The first line is the ``started`` entry, followed by one ``step`` entry per
    executed step and, once the run is over, a single ``finished`` entry. Records
    are rebuilt by replaying the file.

    Appends to one execution are serialized by a per-execution lock; runs that
    are still RUNNING are remembered so a step append does not replay the file.
    The log assumes a single writing process per root directory.
    """

    def __init__(self, root: Path, *, fsync: bool = True) -> None:
        self.root = root
        self.fsync = fsync
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._running: set[str] = set()
        self.root.mkdir(parents=True, exist_ok=True)

    def start(
        self, *, execution_id: str, workflow_id: str, input: JsonValue
    ) -> tuple[ExecutionRecord, bool]:
        if not _SAFE_ID.fullmatch(execution_id):
            raise ValueError(f"Execution id is not usable as a file name: {execution_id!r}")
        path = self._path(execution_id)
        record = ExecutionRecord(execution_id=execution_id, workflow_id=workflow_id, input=input)
        header = {"type": "started", "record": _dump_header(record)}
        with self._lock_for(execution_id):
            try:
                self._append(path, header, create=True)
            except FileExistsError:
                try:
                    existing = self._replay(path, execution_id)
                except NotFoundError:
                    # Created but the header never made it to disk.
                    logger.warning(
                        "Rewriting execution file without a started entry",
                        extra={"execution_id": execution_id},
                    )
                    self._rewrite(path, header)
                else:
                    if not existing.status.is_terminal:
                        self._running.add(execution_id)
                    return existing, False
            self._running.add(execution_id)
        logger.debug("Execution started", extra={"execution_id": execution_id})
        return record, True

    def record(self, execution_id: str, event: StepEvent) -> None:
        path = self._path(execution_id)
        with self._lock_for(execution_id):
            if execution_id not in self._running:
                current = self._replay(path, execution_id)
                if current.status.is_terminal:
                    raise _finalized(current)
                self._running.add(execution_id)
            self._append(path, {"type": "step", "event": event.model_dump(mode="json")})

    def finish(
        self,
        execution_id: str,
        status: ExecutionStatus,
        *,
        output: JsonValue = None,
        error: str | None = None,
        error_type: str | None = None,
    ) -> ExecutionRecord:
        if not status.is_terminal:
            raise ValueError("finish() requires a terminal status")
        path = self._path(execution_id)
        with self._lock_for(execution_id):
            current = self._replay(path, execution_id)
            if current.status.is_terminal:
                raise _finalized(current)
            final = current.model_copy(
                update={
                    "status": status,
                    "end_time": utc_now(),
                    "output": output,
                    "error": error,
                    "error_type": error_type,
                }
            )
            self._append(
                path,
                {
                    "type": "finished",
                    "status": status.value,
                    "end_time": final.end_time.isoformat() if final.end_time else None,
                    "output": output,
                    "error": error,
                    "error_type": error_type,
                },
            )
            self._running.discard(execution_id)
            with self._guard:
                # Later callers replay the file and find it finished.
                self._locks.pop(execution_id, None)
            return final

    def get(self, execution_id: str) -> ExecutionRecord:
        path = self._path(execution_id)
        with self._lock_for(execution_id):
            return self._replay(path, execution_id)

    def list(
        self, *, status: ExecutionStatus | None = None, limit: int | None = None
    ) -> list[ExecutionRecord]:
        records: list[ExecutionRecord] = []
        for path in sorted(self.root.glob("*.jsonl")):
            try:
                with self._lock_for(path.stem):
                    records.append(self._replay(path, path.stem))
            except (NotFoundError, ValueError):
                logger.warning("Skipping unreadable execution file", extra={"path": str(path)})
        return _sort_and_limit(records, status, limit)

    def _lock_for(self, execution_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(execution_id, threading.Lock())

    def _path(self, execution_id: str) -> Path:
        if not _SAFE_ID.fullmatch(execution_id):
            raise NotFoundError(execution_id)
        return self.root / f"{execution_id}.jsonl"

    def _append(self, path: Path, entry: dict[str, object], *, create: bool = False) -> None:
        line = json.dumps(entry, ensure_ascii=False) + "\n"
        with open(path, "x" if create else "a", encoding="utf-8") as f:
            f.write(line)
            f.flush()
            if self.fsync:
                os.fsync(f.fileno())
        if create and self.fsync:
            _fsync_dir(path.parent)

    def _rewrite(self, path: Path, entry: dict[str, object]) -> None:
        tmp = path.with_name(path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(json.dumps(entry, ensure_ascii=False) + "\n")
            f.flush()
            if self.fsync:
                os.fsync(f.fileno())
        os.replace(tmp, path)
        if self.fsync:
            _fsync_dir(path.parent)

    def _replay(self, path: Path, execution_id: str) -> ExecutionRecord:
        if not path.exists():
            raise NotFoundError(execution_id)

        lines = path.read_text(encoding="utf-8").splitlines()
        header: dict[str, object] | None = None
        outcome: dict[str, object] = {}
        history: list[dict[str, object]] = []
        for lineno, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                # A torn final line from a crash mid-write was never acknowledged.
                if lineno == len(lines):
                    logger.warning(
                        "Ignoring truncated log line",
                        extra={"execution_id": execution_id, "line": lineno},
                    )
                    break
                raise

            kind = entry.get("type")
            if kind == "started":
                header = entry["record"]
            elif kind == "step":
                history.append(entry["event"])
            elif kind == "finished":
                outcome = {k: v for k, v in entry.items() if k != "type"}

        if header is None:
            raise NotFoundError(execution_id)
        return ExecutionRecord.model_validate({**header, **outcome, "step_history": history})


def _dump_header(record: ExecutionRecord) -> dict[str, object]:
    return record.model_dump(mode="json", exclude={"step_history"})


def _fsync_dir(directory: Path) -> None:
    if not hasattr(os, "O_DIRECTORY"):
        return
    fd = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)
