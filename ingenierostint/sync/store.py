from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Protocol

log = logging.getLogger("ingenierostint.store")

STATE_KEY = "telemetry_state"
STORE_VERSION = "1.0"


@dataclass(frozen=True, slots=True)
class StoredEntry:
    data: Any
    timestamp: float


class SnapshotStore(Protocol):
    def get(self, key: str) -> Optional[StoredEntry]: ...

    def set(self, key: str, data: Any, timestamp: float) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    def __init__(self) -> None:
        self._items: dict[str, StoredEntry] = {}

    def get(self, key: str) -> Optional[StoredEntry]:
        return self._items.get(key)

    def set(self, key: str, data: Any, timestamp: float) -> None:
        # copia JSON: mismo aislamiento que el store en disco
        self._items[key] = StoredEntry(json.loads(json.dumps(data)), float(timestamp))

    def delete(self, key: str) -> None:
        self._items.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._items


class JsonFileStore:
    """Un archivo JSON por clave: {"data", "timestamp", "version"}."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    def _path(self, key: str) -> Path:
        safe = "".join(c if c.isalnum() or c in "-_" else "_" for c in key)
        return self._root / f"{safe}.json"

    def get(self, key: str) -> Optional[StoredEntry]:
        p = self._path(key)
        if not p.exists():
            return None
        wrapped = json.loads(p.read_text(encoding="utf-8"))
        if not isinstance(wrapped, dict) or "data" not in wrapped:
            raise ValueError(f"store: malformed entry {p}")
        ts = float(wrapped["timestamp"])
        if not math.isfinite(ts):
            raise ValueError(f"store: bad timestamp in {p}")
        return StoredEntry(wrapped["data"], ts)

    def set(self, key: str, data: Any, timestamp: float) -> None:
        self._root.mkdir(parents=True, exist_ok=True)
        p = self._path(key)
        tmp = p.with_suffix(".tmp")
        body = json.dumps({"data": data, "timestamp": float(timestamp), "version": STORE_VERSION})
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(body)
            f.flush()
            try:
                os.fsync(f.fileno())
            except OSError:
                pass
        os.replace(tmp, p)

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass


def load_snapshot(store: SnapshotStore, key: str, retention_s: float, now: float) -> Optional[Any]:
    """Entrada vigente o None. Corrupta o vencida: se borra y cuenta como ausente."""
    try:
        entry = store.get(key)
    except (ValueError, TypeError, KeyError, OSError) as e:
        log.warning("Snapshot %s corrupted (%s); discarding", key, e)
        _safe_delete(store, key)
        return None

    if entry is None:
        return None

    age = now - entry.timestamp
    if retention_s > 0 and age > retention_s:
        log.info("Snapshot %s expired (%.0f min old)", key, age / 60.0)
        _safe_delete(store, key)
        return None
    return entry.data


def _safe_delete(store: SnapshotStore, key: str) -> None:
    try:
        store.delete(key)
    except Exception:
        log.warning("Could not delete snapshot %s", key, exc_info=True)
