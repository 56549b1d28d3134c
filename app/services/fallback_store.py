from __future__ import annotations

import json
import threading
from contextlib import nullcontext
from pathlib import Path

from app.schemas.quote import FallbackRecord


class FallbackStore:
    """Append-only per-symbol quote history backed by a JSON-lines file.

    The latest record for a symbol is the one with the greatest observed_at,
    so out-of-order or duplicate timestamps are accepted as-is.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path else None
        self._history: dict[str, list[FallbackRecord]] = {}
        self._latest: dict[str, FallbackRecord] = {}
        self._symbol_locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._file_lock = threading.Lock()
        self._persisted_count = 0
        self._load_persisted_records()

    def _lock_for(self, symbol: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._symbol_locks.get(symbol)
            if lock is None:
                lock = threading.Lock()
                self._symbol_locks[symbol] = lock
            return lock

    def _load_persisted_records(self) -> None:
        if not self._path or not self._path.exists():
            return

        skipped = 0
        for line in self._path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                record = FallbackRecord.model_validate(json.loads(line))
            except ValueError:
                skipped += 1
                continue
            self._index(record)
            self._persisted_count += 1

        print(
            f"[STORE][load] path={self._path} records={self._persisted_count} skipped={skipped}",
            flush=True,
        )

    def _index(self, record: FallbackRecord) -> None:
        self._history.setdefault(record.symbol, []).append(record)
        current = self._latest.get(record.symbol)
        if current is None or record.observed_at >= current.observed_at:
            self._latest[record.symbol] = record

    def _append_line(self, record: FallbackRecord) -> None:
        if not self._path:
            return
        with self._file_lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(record.model_dump_json() + "\n")
            self._persisted_count += 1

    def record(self, symbol: str, price: float, observed_at: float) -> FallbackRecord:
        record = FallbackRecord(symbol=symbol.strip().upper(), price=float(price), observed_at=float(observed_at))
        with self._lock_for(record.symbol):
            self._append_line(record)
            self._index(record)
        return record

    def _read_lock(self, symbol: str):
        # reads never register a lock
        return self._symbol_locks.get(symbol) or nullcontext()

    def last_known(self, symbol: str) -> FallbackRecord | None:
        key = symbol.strip().upper()
        with self._read_lock(key):
            return self._latest.get(key)

    def history(self, symbol: str) -> list[FallbackRecord]:
        key = symbol.strip().upper()
        with self._read_lock(key):
            return list(self._history.get(key, []))

    def metrics(self) -> dict[str, int]:
        return {
            "symbols": len(self._latest),
            "persisted_count": self._persisted_count,
        }
