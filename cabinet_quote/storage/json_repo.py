from __future__ import annotations

import glob
import json
import logging
import os
import shutil
import tempfile
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union
from uuid import uuid4

from pydantic import BaseModel

from cabinet_quote.errors import ConflictError, NotFoundError

log = logging.getLogger(__name__)

# one lock per file, shared by every repository opened on it
_LOCKS: Dict[str, threading.RLock] = {}
_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> threading.RLock:
    key = str(path.resolve())
    with _LOCKS_GUARD:
        lock = _LOCKS.get(key)
        if lock is None:
            lock = _LOCKS[key] = threading.RLock()
        return lock


def _json_default(o: Any) -> Any:
    if isinstance(o, (date, datetime)):
        return o.isoformat()
    return str(o)


class JsonRepository:
    """
    Keyed record store backed by one JSON file (a list of objects).
    - configurable primary key
    - unique secondary keys checked and written under a single lock (add_unique)
    - backup rotation (backup_enabled, backup_keep)
    - skips the write when the content did not change
    """

    def __init__(
        self,
        filepath: Union[str, Path],
        entity_name: str = "entity",
        key: str = "id",
        *,
        backup_enabled: bool = False,
        backup_keep: int = 5,
    ) -> None:
        self.filepath = Path(filepath)
        self.entity_name = entity_name
        self.key = key
        self.backup_enabled = backup_enabled
        self.backup_keep = max(0, int(backup_keep))

        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        self._lock = _lock_for(self.filepath)
        with self._lock:
            if not self.filepath.exists():
                self._write_raw([])

    # ---------------- low level I/O ---------------- #

    def _read_raw(self) -> List[Dict[str, Any]]:
        with self._lock:
            try:
                with self.filepath.open("r", encoding="utf-8") as f:
                    data = json.load(f)
                return data if isinstance(data, list) else []
            except FileNotFoundError:
                return []
            except json.JSONDecodeError:
                # corrupt file: keep a copy aside and start from an empty list
                backup = self.filepath.with_suffix(".corrupt.json")
                log.warning("Corrupt %s store %s, copied to %s", self.entity_name, self.filepath, backup)
                try:
                    shutil.copy2(self.filepath, backup)
                except OSError as e:
                    log.warning("Could not back up corrupt file %s: %s", self.filepath, e)
                return []

    def _rotate_backups(self) -> None:
        if not self.backup_enabled or self.backup_keep <= 0:
            return
        pattern = str(self.filepath.with_suffix(".*.bak.json"))
        files = sorted(glob.glob(pattern))
        # keep the most recent ones
        if len(files) > self.backup_keep:
            for old in files[: len(files) - self.backup_keep]:
                Path(old).unlink(missing_ok=True)

    def _write_raw(self, data: Iterable[Mapping[str, Any]]) -> None:
        with self._lock:
            new_dump = json.dumps(list(data), ensure_ascii=False, indent=2, default=_json_default)

            if self.filepath.exists():
                if self.filepath.read_text(encoding="utf-8") == new_dump:
                    return

                if self.backup_enabled:
                    ts = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
                    shutil.copy2(self.filepath, self.filepath.with_suffix(f".{ts}.bak.json"))
                    self._rotate_backups()

            # write to a temp file, then swap it in
            fd, tmp = tempfile.mkstemp(dir=str(self.filepath.parent), suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(new_dump)
                os.replace(tmp, self.filepath)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise

    # ---------------- helpers ---------------- #

    @staticmethod
    def _to_dict(item: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
        if isinstance(item, BaseModel):
            return item.model_dump(mode="json")
        return dict(item)

    # ---------------- CRUD ---------------- #

    def list_all(self) -> List[Dict[str, Any]]:
        return self._read_raw()

    def get_by_id(self, obj_id: Any) -> Optional[Dict[str, Any]]:
        k = self.key
        for it in self._read_raw():
            if str(it.get(k)) == str(obj_id):
                return it
        return None

    def add(self, item: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
        return self.add_unique(item)

    def add_unique(
        self,
        item: Union[BaseModel, Mapping[str, Any]],
        unique: Sequence[str] = (),
    ) -> Dict[str, Any]:
        """Insert a record; the primary key and every field in `unique` must be free."""
        record = self._to_dict(item)
        k = self.key
        if not record.get(k):
            record[k] = uuid4().hex
        with self._lock:
            data = self._read_raw()
            for field in (k, *unique):
                value = record.get(field)
                if value is None:
                    continue
                if any(str(d.get(field)) == str(value) for d in data):
                    raise ConflictError(self.entity_name, field, value)
            data.append(record)
            self._write_raw(data)
        return record

    def update(self, item: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
        record = self._to_dict(item)
        k = self.key
        obj_id = record.get(k)
        if not obj_id:
            raise ValueError(f"Cannot update {self.entity_name} without '{k}'")
        with self._lock:
            data = self._read_raw()
            for idx, existing in enumerate(data):
                if str(existing.get(k)) == str(obj_id):
                    merged = {**existing, **record}
                    data[idx] = merged
                    self._write_raw(data)
                    return merged
        raise NotFoundError(self.entity_name, obj_id)

    def upsert(self, item: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
        with self._lock:
            try:
                return self.update(item)
            except NotFoundError:
                return self.add(item)

    def delete(self, obj_id: Any) -> bool:
        k = self.key
        with self._lock:
            data = self._read_raw()
            new_data = [d for d in data if str(d.get(k)) != str(obj_id)]
            changed = len(new_data) != len(data)
            if changed:
                self._write_raw(new_data)
        return changed

    # ---------------- queries ---------------- #

    def find(self, predicate: Callable[[Dict[str, Any]], bool]) -> List[Dict[str, Any]]:
        return [r for r in self._read_raw() if predicate(r)]

    def find_one(self, predicate: Callable[[Dict[str, Any]], bool]) -> Optional[Dict[str, Any]]:
        for r in self._read_raw():
            if predicate(r):
                return r
        return None

    def count(self, predicate: Callable[[Dict[str, Any]], bool]) -> int:
        return sum(1 for r in self._read_raw() if predicate(r))
