"""Inbound queues.

The listener only relies on the `InboundQueue` contract:

- `receive()` hands out at most one message, or None when nothing is available
- `acknowledge(message_id)` removes a received message for good

Delivery is at-least-once. A message that is received but never acknowledged
(e.g. the listener crashed) is delivered again later.
"""

from __future__ import annotations

import collections
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True, slots=True)
class InboundMessage:
    message_id: str
    body: str | bytes
    attributes: dict[str, str] = field(default_factory=dict)


class InboundQueue(ABC):
    @abstractmethod
    def receive(self, timeout_seconds: float | None = None) -> InboundMessage | None:
        """Return the next message, waiting up to `timeout_seconds` (None = don't wait)."""

    @abstractmethod
    def acknowledge(self, message_id: str) -> None:
        """Delete a received message so it is never delivered again."""

    @abstractmethod
    def send(self, body: str) -> str:
        """Enqueue a message body and return its id."""

    def close(self) -> None:  # noqa: B027 (optional hook)
        """Release client resources."""


class MemoryQueue(InboundQueue):
    """Thread-safe in-process queue."""

    def __init__(self) -> None:
        self._pending: collections.deque[InboundMessage] = collections.deque()
        self._leased: dict[str, InboundMessage] = {}
        self._cond = threading.Condition()

    def send(self, body: str) -> str:
        message = InboundMessage(message_id=uuid.uuid4().hex, body=body)
        with self._cond:
            self._pending.append(message)
            self._cond.notify()
        return message.message_id

    def receive(self, timeout_seconds: float | None = None) -> InboundMessage | None:
        with self._cond:
            if not self._pending and timeout_seconds:
                self._cond.wait_for(lambda: bool(self._pending), timeout=timeout_seconds)
            if not self._pending:
                return None
            message = self._pending.popleft()
            self._leased[message.message_id] = message
            return message

    def acknowledge(self, message_id: str) -> None:
        with self._cond:
            if self._leased.pop(message_id, None) is None:
                raise KeyError(message_id)

    def requeue_unacknowledged(self) -> int:
        """Make every received-but-unacknowledged message deliverable again."""

        with self._cond:
            leased = list(self._leased.values())
            self._leased.clear()
            self._pending.extendleft(reversed(leased))
            self._cond.notify_all()
            return len(leased)

    @property
    def pending_count(self) -> int:
        with self._cond:
            return len(self._pending)

    @property
    def unacknowledged_count(self) -> int:
        with self._cond:
            return len(self._leased)


def discover_pending_items(pending_dir: Path) -> list[Path]:
    """Return pending message files in a stable order."""

    if not pending_dir.exists():
        return []

    candidates = [p for p in pending_dir.iterdir() if p.is_file()]
    # Stable ordering: filename sort (send() names files by enqueue time).
    return sorted(candidates, key=lambda p: p.name)


def move_to_processed(*, item_path: Path, processed_dir: Path) -> Path:
    """Move an acknowledged message file to the processed directory.

    Returns:
        The destination path.
    """

    processed_dir.mkdir(parents=True, exist_ok=True)
    dest = processed_dir / item_path.name
    if dest.exists():
        raise FileExistsError(f"Processed destination already exists: {dest}")
    return item_path.replace(dest)


class DirectoryQueue(InboundQueue):
    """A queue made of files.

    Layout:
        <root>/pending/     one file per message, body = file content
        <root>/processed/   acknowledged messages

    The message id is the file name. Files received by a listener that died
    before acknowledging them are still in pending/ and are delivered again by
    the next listener.
    """

    def __init__(self, root: Path, *, poll_interval_seconds: float = 0.1) -> None:
        self.root = root
        self.pending_dir = root / "pending"
        self.processed_dir = root / "processed"
        self._tmp_dir = root / ".tmp"
        self._poll_interval = poll_interval_seconds
        self._leased: set[str] = set()
        self._lock = threading.Lock()
        self.pending_dir.mkdir(parents=True, exist_ok=True)

    def send(self, body: str) -> str:
        message_id = f"{time.time_ns():020d}-{uuid.uuid4().hex[:8]}.msg"
        self._tmp_dir.mkdir(parents=True, exist_ok=True)
        tmp = self._tmp_dir / message_id
        tmp.write_text(body, encoding="utf-8")
        # Rename so receivers never observe a half-written file.
        tmp.replace(self.pending_dir / message_id)
        return message_id

    def receive(self, timeout_seconds: float | None = None) -> InboundMessage | None:
        deadline = time.monotonic() + (timeout_seconds or 0.0)
        while True:
            message = self._try_receive()
            if message is not None:
                return message
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            time.sleep(min(self._poll_interval, remaining))

    def _try_receive(self) -> InboundMessage | None:
        with self._lock:
            for path in discover_pending_items(self.pending_dir):
                if path.name in self._leased:
                    continue
                try:
                    body = path.read_text(encoding="utf-8")
                except FileNotFoundError:
                    # Acknowledged by another process between listing and reading.
                    continue
                self._leased.add(path.name)
                return InboundMessage(message_id=path.name, body=body)
            return None

    def acknowledge(self, message_id: str) -> None:
        with self._lock:
            item = self.pending_dir / message_id
            if not item.exists() and (self.processed_dir / message_id).exists():
                self._leased.discard(message_id)
                return
            if not item.exists():
                raise KeyError(message_id)
            move_to_processed(item_path=item, processed_dir=self.processed_dir)
            self._leased.discard(message_id)
