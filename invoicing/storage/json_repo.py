from __future__ import annotations

import glob
import json
import logging
import os
import shutil
import tempfile
import threading
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import BaseModel

logger = logging.getLogger(__name__)

# one lock per file, shared by every repository opened on that file
_locks: Dict[str, threading.RLock] = {}
_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.RLock:
    k = str(path.resolve())
    with _locks_guard:
        lock = _locks.get(k)
        if lock is None:
            lock = _locks[k] = threading.RLock()
        return lock


def _json_default(o: Any) -> Any:
    if isinstance(o, (date, datetime)):
        return o.isoformat()
    if isinstance(o, Decimal):
        return str(o)
    raise TypeError(f"Object of type {o.__class__.__name__} is not JSON serializable")


class ConflictError(Exception):
    """Raised by ``compare_and_swap`` when the stored version moved on."""


class JsonRepository:
    """
    JSON document collection stored as a list in a single file.

    - Every read-modify-write runs under a per-file lock (``lock``, an RLock
      callers may hold to group several operations), so ``compare_and_swap``
      is atomic within the process.
    - Writes go through a temp file + ``os.replace``.
    - Identical content is not rewritten; backups rotate (backup_keep).
    """

    def __init__(
        self,
        filepath: Union[str, Path],
        entity_name: str = "entity",
        key: str = "id",
        *,
        backup_enabled: bool = True,
        backup_keep: int = 5,
    ) -> None:
        self.filepath = Path(filepath)
        self.entity_name = entity_name
        self.key = key
        self.backup_enabled = backup_enabled
        self.backup_keep = max(0, int(backup_keep))

        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        self.lock = _lock_for(self.filepath)
        with self.lock:
            if not self.filepath.exists():
                self._write_raw([])

    # ---------------- low level I/O ---------------- #

    def _read_raw(self) -> List[Dict[str, Any]]:
        try:
            with self.filepath.open("r", encoding="utf-8") as f:
                data = json.load(f)
            return data if isinstance(data, list) else []
        except FileNotFoundError:
            return []
        except json.JSONDecodeError:
            backup = self.filepath.with_suffix(".corrupt.json")
            logger.warning("%s store %s is corrupt, copied to %s", self.entity_name, self.filepath, backup)
            shutil.copy2(self.filepath, backup)
            return []

    def _rotate_backups(self) -> None:
        if not self.backup_enabled or self.backup_keep <= 0:
            return
        pattern = str(self.filepath.with_suffix(".*.bak.json"))
        files = sorted(glob.glob(pattern))
        for old in files[: max(0, len(files) - self.backup_keep)]:
            Path(old).unlink(missing_ok=True)

    def _write_raw(self, data: Iterable[Mapping[str, Any]]) -> None:
        with self.lock:
            new_dump = json.dumps(list(data), ensure_ascii=False, indent=2, default=_json_default)

            if self.filepath.exists():
                if self.filepath.read_text(encoding="utf-8") == new_dump:
                    return
                if self.backup_enabled and self.backup_keep > 0:
                    ts = datetime.now().strftime("%Y%m%d-%H%M%S")
                    shutil.copy2(self.filepath, self.filepath.with_suffix(f".{ts}.bak.json"))
                    self._rotate_backups()

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
        return json.loads(json.dumps(dict(item), default=_json_default))

    def _same_key(self, row: Mapping[str, Any], value: Any) -> bool:
        return str(row.get(self.key)) == str(value)

    # ---------------- CRUD ---------------- #

    def list_all(self) -> List[Dict[str, Any]]:
        with self.lock:
            return self._read_raw()

    def get_by_id(self, obj_id: Any) -> Optional[Dict[str, Any]]:
        for it in self.list_all():
            if self._same_key(it, obj_id):
                return it
        return None

    def add(self, item: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
        record = self._to_dict(item)
        k = self.key
        if not record.get(k):
            raise ValueError(f"Cannot add {self.entity_name} without '{k}'")
        with self.lock:
            data = self._read_raw()
            if any(self._same_key(d, record[k]) for d in data):
                raise ValueError(f"{self.entity_name} with {k}={record[k]} already exists")
            data.append(record)
            self._write_raw(data)
        return record

    def update(self, item: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
        record = self._to_dict(item)
        obj_id = record.get(self.key)
        if not obj_id:
            raise ValueError(f"Cannot update {self.entity_name} without '{self.key}'")
        with self.lock:
            data = self._read_raw()
            for idx, existing in enumerate(data):
                if self._same_key(existing, obj_id):
                    merged = {**existing, **record}
                    data[idx] = merged
                    self._write_raw(data)
                    return merged
        raise KeyError(f"{self.entity_name} with {self.key}={obj_id} not found")

    def delete(self, obj_id: Any) -> bool:
        with self.lock:
            data = self._read_raw()
            new_data = [d for d in data if not self._same_key(d, obj_id)]
            changed = len(new_data) != len(data)
            if changed:
                self._write_raw(new_data)
        return changed

    def compare_and_swap(
        self,
        item: Union[BaseModel, Mapping[str, Any]],
        expected_version: Optional[int],
        version_field: str = "version",
    ) -> Dict[str, Any]:
        """
        Replace the row with ``item`` only if its stored ``version_field``
        still equals ``expected_version`` (``None``: the row must not exist).
        The written row gets ``expected_version + 1``.
        """
        record = self._to_dict(item)
        obj_id = record.get(self.key)
        if not obj_id:
            raise ValueError(f"Cannot swap {self.entity_name} without '{self.key}'")
        with self.lock:
            data = self._read_raw()
            idx = next((i for i, d in enumerate(data) if self._same_key(d, obj_id)), -1)
            current = data[idx].get(version_field, 0) if idx >= 0 else None
            if current != expected_version:
                raise ConflictError(
                    f"{self.entity_name} {obj_id}: expected version {expected_version}, found {current}"
                )
            record[version_field] = (expected_version or 0) + 1
            if idx >= 0:
                data[idx] = record
            else:
                data.append(record)
            self._write_raw(data)
        return record

    # ---------------- queries ---------------- #

    def find(self, predicate: Callable[[Dict[str, Any]], bool]) -> List[Dict[str, Any]]:
        return [r for r in self.list_all() if predicate(r)]

    def find_one(self, predicate: Callable[[Dict[str, Any]], bool]) -> Optional[Dict[str, Any]]:
        for r in self.list_all():
            if predicate(r):
                return r
        return None
