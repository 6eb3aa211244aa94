"""
JSON file persistence for the configured servers.

The file holds a list of objects with id, name, address, port, category and
description. A missing file is an empty fleet; an unreadable or malformed
file is an error, so a broken file is never silently overwritten with an
empty list.
"""

import json
import logging
import os
import stat
import tempfile
import threading
from pathlib import Path
from typing import List, Union

from pydantic import ValidationError

from app.errors import StoreError, TargetNotFoundError
from app.models.target import Target, TargetCreate, TargetUpdate

logger = logging.getLogger(__name__)

_NEW_FILE_MODE = 0o644


class JsonTargetStore:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def list(self) -> List[Target]:
        with self._lock:
            return self._load()

    def save(self, targets: List[Target]) -> None:
        with self._lock:
            self._write(targets)

    def get(self, target_id: int) -> Target:
        for target in self.list():
            if target.id == target_id:
                return target
        raise TargetNotFoundError(target_id)

    def add(self, data: TargetCreate) -> Target:
        with self._lock:
            targets = self._load()
            next_id = max((t.id for t in targets), default=0) + 1
            target = Target(id=next_id, **data.model_dump())
            targets.append(target)
            self._write(targets)
        logger.info("Added target %s (%s:%s) with id %s", target.name, target.address, target.port, target.id)
        return target

    def update(self, target_id: int, changes: TargetUpdate) -> Target:
        with self._lock:
            targets = self._load()
            index = self._index_of(targets, target_id)
            merged = targets[index].model_dump()
            merged.update(changes.model_dump(exclude_unset=True, exclude_none=True))
            try:
                updated = Target.model_validate(merged)
            except ValidationError as exc:
                raise ValueError(f"invalid update for target {target_id}: {exc}") from exc
            targets[index] = updated
            self._write(targets)
        logger.info("Updated target %s", target_id)
        return updated

    def delete(self, target_id: int) -> Target:
        with self._lock:
            targets = self._load()
            index = self._index_of(targets, target_id)
            removed = targets.pop(index)
            self._write(targets)
        logger.info("Deleted target %s (%s)", removed.id, removed.name)
        return removed

    @staticmethod
    def _index_of(targets: List[Target], target_id: int) -> int:
        for index, target in enumerate(targets):
            if target.id == target_id:
                return index
        raise TargetNotFoundError(target_id)

    def _load(self) -> List[Target]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.exception("Reading server list %s failed", self.path)
            raise StoreError(f"could not read server list {self.path}: {exc}") from exc

        if not isinstance(data, list):
            raise StoreError(f"server list {self.path} must contain a JSON list")
        try:
            return [Target.model_validate(item) for item in data]
        except ValidationError as exc:
            raise StoreError(f"server list {self.path} contains an invalid entry: {exc}") from exc

    def _file_mode(self) -> int:
        # mkstemp creates 0600 files; keep the mode of the file being replaced
        try:
            return stat.S_IMODE(os.stat(self.path).st_mode)
        except FileNotFoundError:
            return _NEW_FILE_MODE

    def _write(self, targets: List[Target]) -> None:
        data = [t.model_dump() for t in targets]
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # Write next to the target and rename so readers never see half a file
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                os.chmod(tmp_name, self._file_mode())
                os.replace(tmp_name, self.path)
            except BaseException:
                os.unlink(tmp_name)
                raise
        except OSError as exc:
            logger.exception("Writing server list %s failed", self.path)
            raise StoreError(f"could not write server list {self.path}: {exc}") from exc
