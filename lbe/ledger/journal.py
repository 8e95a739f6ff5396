"""Append-only journal of worker activity."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

import orjson

from lbe.ledger.events import Event, EventType, new_event


class EventJournal:
    """Append-only JSONL journal with sequence tracking."""

    def __init__(self, journal_path: str) -> None:
        self.journal_path = Path(journal_path)
        self.journal_path.mkdir(parents=True, exist_ok=True)
        self.events_file = self.journal_path / "events.jsonl"
        self.sequence_file = self.journal_path / "sequence.txt"
        self._sequence = self._load_sequence()

    def _load_sequence(self) -> int:
        seq = 0
        if self.sequence_file.exists():
            try:
                seq = int(self.sequence_file.read_text().strip())
            except ValueError:
                seq = 0
        # sequence.txt may lag the log after a crash between the two writes.
        if self.events_file.exists():
            seq = max(seq, self._read_last_sequence())
        return seq

    def _read_last_sequence(self) -> int:
        try:
            with open(self.events_file, "rb") as handle:
                handle.seek(0, os.SEEK_END)
                size = handle.tell()
                if size == 0:
                    return 0
                offset = min(size, 4096)
                handle.seek(-offset, os.SEEK_END)
                chunk = handle.read(offset)
        except OSError:
            return 0
        lines = chunk.splitlines()
        if not lines:
            return 0
        try:
            return int(orjson.loads(lines[-1]).get("sequence_num", 0))
        except orjson.JSONDecodeError:
            return 0

    def _next_sequence(self) -> int:
        self._sequence += 1
        self.sequence_file.write_text(str(self._sequence))
        return self._sequence

    def last_sequence(self) -> int:
        return self._sequence

    def append(
        self,
        event_type: EventType,
        payload: dict,
        metadata: dict | None = None,
    ) -> Event:
        """Create and append a new entry, then return it."""
        event = new_event(event_type, payload, self._next_sequence(), metadata)
        with open(self.events_file, "ab") as handle:
            handle.write(orjson.dumps(event.to_dict()) + b"\n")
        return event

    def iter_events(self) -> Iterable[Event]:
        if not self.events_file.exists():
            return iter(())

        def _iter() -> Iterable[Event]:
            with open(self.events_file, "rb") as handle:
                for line in handle:
                    if not line.strip():
                        continue
                    yield Event.from_dict(orjson.loads(line))

        return _iter()

    def tail(self, limit: int) -> list[Event]:
        """Return the last N entries, oldest first."""
        if limit <= 0 or not self.events_file.exists():
            return []
        file_size = self.events_file.stat().st_size
        chunk_size = 4096
        max_bytes = 1024 * 1024
        buffer = b""
        read_bytes = 0
        with open(self.events_file, "rb") as handle:
            while read_bytes < file_size and read_bytes < max_bytes:
                read_size = min(chunk_size, file_size - read_bytes)
                handle.seek(-(read_bytes + read_size), os.SEEK_END)
                buffer = handle.read(read_size) + buffer
                read_bytes += read_size
                if len(buffer.splitlines()) >= limit + 1:
                    break
        lines = buffer.splitlines()
        if read_bytes < file_size:
            # First line is likely truncated.
            lines = lines[1:]
        events: list[Event] = []
        for line in lines[-limit:]:
            if not line.strip():
                continue
            try:
                events.append(Event.from_dict(orjson.loads(line)))
            except orjson.JSONDecodeError:
                continue
        return events
