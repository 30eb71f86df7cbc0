import json
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

from loguru import logger


class KeyValueStore(Protocol):
    """One serialized blob per namespace. Implementations may raise OSError."""

    def read(self, namespace: str) -> Optional[str]: ...

    def write(self, namespace: str, blob: str) -> None: ...

    def delete(self, namespace: str) -> None: ...


class JsonFileStore:
    def __init__(self, root: str):
        self.root = Path(root)

    def _path(self, namespace: str) -> Path:
        return self.root / f"{namespace}.json"

    def read(self, namespace: str) -> Optional[str]:
        path = self._path(namespace)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def write(self, namespace: str, blob: str) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self._path(namespace)
        tmp = path.with_suffix(".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            f.write(blob)
        tmp.replace(path)

    def delete(self, namespace: str) -> None:
        self._path(namespace).unlink(missing_ok=True)


class MemoryStore:
    def __init__(self):
        self.blobs: Dict[str, str] = {}

    def read(self, namespace: str) -> Optional[str]:
        return self.blobs.get(namespace)

    def write(self, namespace: str, blob: str) -> None:
        self.blobs[namespace] = blob

    def delete(self, namespace: str) -> None:
        self.blobs.pop(namespace, None)


class CacheStore:
    """
    TTL cache over a single namespace blob:
      {"written_at": ts, "entries": {key: {"payload": ..., "written_at": ts, "ttl": s}}}
    Expiry is lazy: stale entries read as absent and are pruned on the next write.
    Backend failures never reach callers; they degrade to a miss / dropped write.
    """
    def __init__(self, backend: KeyValueStore, namespace: str, clock: Callable[[], float] = time.time):
        self.backend = backend
        self.namespace = namespace
        self.clock = clock
        self.mu = threading.Lock()
        self.hits = 0
        self.misses = 0
        self._entries: Optional[Dict[str, Dict[str, Any]]] = None

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if self._entries is not None:
            return self._entries
        entries: Dict[str, Dict[str, Any]] = {}
        try:
            blob = self.backend.read(self.namespace)
            if blob:
                data = json.loads(blob)
                raw = data.get("entries") if isinstance(data, dict) else None
                if isinstance(raw, dict):
                    for k, e in raw.items():
                        if isinstance(e, dict) and {"payload", "written_at", "ttl"} <= e.keys():
                            entries[k] = e
                else:
                    logger.warning(f"cache[{self.namespace}]: unexpected blob shape, treating as empty")
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"cache[{self.namespace}]: unreadable blob ({e}), treating as empty")
        self._entries = entries
        return entries

    def _visible(self, entry: Dict[str, Any], now: float) -> bool:
        try:
            return now - float(entry["written_at"]) < float(entry["ttl"])
        except (TypeError, ValueError):
            return False

    def _flush(self, entries: Dict[str, Dict[str, Any]]) -> None:
        try:
            blob = json.dumps({"written_at": self.clock(), "entries": entries})
            self.backend.write(self.namespace, blob)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"cache[{self.namespace}]: write failed, continuing without persistence: {e}")

    def get(self, key: str) -> Optional[Any]:
        with self.mu:
            entry = self._load().get(key)
            if entry is None or not self._visible(entry, self.clock()):
                self.misses += 1
                return None
            self.hits += 1
            return entry["payload"]

    def set(self, key: str, value: Any, ttl: float, check: bool = True) -> None:
        """`check=False` skips the up-front serializability test for payloads built from models."""
        with self.mu:
            entries = self._load()
            now = self.clock()
            # opportunistic pruning of anything already expired
            for k in [k for k, e in entries.items() if not self._visible(e, now)]:
                entries.pop(k, None)
            if check:
                try:
                    json.dumps(value)
                except (TypeError, ValueError) as e:
                    logger.error(f"cache[{self.namespace}]: payload for {key} not serializable: {e}")
                    return
            entries[key] = {"payload": value, "written_at": now, "ttl": float(ttl)}
            self._flush(entries)

    def clear(self, key: str) -> None:
        with self.mu:
            entries = self._load()
            if entries.pop(key, None) is not None:
                self._flush(entries)

    def clear_all(self) -> None:
        with self.mu:
            self._entries = {}
            self.hits = self.misses = 0
            try:
                self.backend.delete(self.namespace)
            except OSError as e:
                logger.error(f"cache[{self.namespace}]: clear failed: {e}")

    def keys(self) -> List[str]:
        with self.mu:
            now = self.clock()
            return [k for k, e in self._load().items() if self._visible(e, now)]

    def stats(self) -> Dict[str, Any]:
        with self.mu:
            entries = self._load()
            now = self.clock()
            live = sum(1 for e in entries.values() if self._visible(e, now))
            total = self.hits + self.misses
            return {
                "namespace": self.namespace,
                "entries": len(entries),
                "live_entries": live,
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": round(self.hits / total * 100, 1) if total else 0.0,
            }
