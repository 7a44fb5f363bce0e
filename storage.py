# storage.py
import json
import logging
import os
import tempfile
import time
from threading import Lock
from typing import Any, List
from urllib.parse import quote, unquote

log = logging.getLogger(__name__)

DATA_DIR = "data"


def _atomic_write(path: str, data: str) -> None:
    """Write a file atomically to avoid corruption."""
    os.makedirs(os.path.dirname(path), exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".kv.", dir=os.path.dirname(path))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.remove(tmp)


class JsonKeyValueStore:
    """
    Durable key -> JSON value storage, one file per key under `data_dir`.

    Values are always read and written whole: callers load a partition,
    change it in memory and put it back. Keys may contain any characters
    (site names carry accents); they are percent-encoded into file names.
    """

    SUFFIX = ".json"

    def __init__(self, data_dir: str = None):
        self.data_dir = data_dir or DATA_DIR
        self._lock = Lock()
        os.makedirs(self.data_dir, exist_ok=True)

    def path_for(self, key: str) -> str:
        return os.path.join(self.data_dir, quote(key, safe="") + self.SUFFIX)

    def get(self, key: str, default: Any = None) -> Any:
        path = self.path_for(key)
        with self._lock:
            if not os.path.exists(path):
                return default
            try:
                with open(path, "r", encoding="utf-8") as f:
                    return json.load(f)
            except (OSError, ValueError) as e:
                log.warning("Unreadable value for %r (%s); using default", key, e)
                return default

    def put(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False, indent=2)
        with self._lock:
            _atomic_write(self.path_for(key), payload)

    def delete(self, key: str) -> None:
        path = self.path_for(key)
        with self._lock:
            if os.path.exists(path):
                os.remove(path)

    def keys(self) -> List[str]:
        return sorted(
            unquote(name[: -len(self.SUFFIX)])
            for name in os.listdir(self.data_dir)
            if name.endswith(self.SUFFIX) and not name.startswith(".")
        )


_last_id = 0
_id_lock = Lock()


def new_id() -> int:
    """Millisecond-timestamp ids, bumped so they never repeat in a process."""
    global _last_id
    with _id_lock:
        candidate = max(int(time.time() * 1000), _last_id + 1)
        _last_id = candidate
        return candidate
