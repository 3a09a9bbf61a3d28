from __future__ import annotations

import glob
import json
import logging
import shutil
import threading
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union
from uuid import uuid4

from pydantic import BaseModel

from invoicing.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


def _json_default(o: Any) -> Any:
    if isinstance(o, (date, datetime)):
        return o.isoformat()
    if isinstance(o, Decimal):
        return float(o)
    raise TypeError(f"Object of type {o.__class__.__name__} is not JSON serializable")


class JsonRepository:
    """
    Repo JSON générique (une liste de documents par fichier).
    - Clé primaire configurable
    - Verrouillage optimiste optionnel via un champ de version
    - Rotation de backups (backup_enabled, backup_keep)
    - N'écrit pas si le contenu ne change pas
    """

    def __init__(
        self,
        filepath: Union[str, Path],
        entity_name: str = "entity",
        key: str = "id",
        *,
        version_field: Optional[str] = None,
        backup_enabled: bool = True,
        backup_keep: int = 5,
    ) -> None:
        self.filepath = Path(filepath)
        self.entity_name = entity_name
        self.key = key
        self.version_field = version_field
        self._lock = threading.RLock()
        self.backup_enabled = backup_enabled
        self.backup_keep = max(0, int(backup_keep))

        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        if not self.filepath.exists():
            self._write_raw([])

    # ---------------- I/O bas niveau ---------------- #

    def _read_raw(self) -> List[Record]:
        try:
            with self.filepath.open("r", encoding="utf-8") as f:
                data = json.load(f, parse_float=Decimal)
            return data if isinstance(data, list) else []
        except FileNotFoundError:
            return []
        except json.JSONDecodeError:
            # Fichier corrompu → mis de côté, on repart sur liste vide
            backup = self.filepath.with_suffix(".corrupt.json")
            shutil.copy2(self.filepath, backup)
            logger.warning("Corrupt %s store %s moved aside to %s", self.entity_name, self.filepath, backup)
            return []

    def _rotate_backups(self) -> None:
        if not self.backup_enabled or self.backup_keep <= 0:
            return
        pattern = str(self.filepath.with_suffix(".*.bak.json"))
        files = sorted(glob.glob(pattern))
        # garde les plus récents
        for old in files[: max(0, len(files) - self.backup_keep)]:
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

            # écriture via fichier temporaire puis remplacement
            tmp = self.filepath.with_suffix(".tmp")
            tmp.write_text(new_dump, encoding="utf-8")
            tmp.replace(self.filepath)

    # ---------------- Helpers ---------------- #

    @staticmethod
    def _to_dict(item: Union[BaseModel, Mapping[str, Any]]) -> Record:
        if isinstance(item, BaseModel):
            return item.model_dump(by_alias=True)
        return dict(item)

    def _same_key(self, record: Mapping[str, Any], obj_id: Any) -> bool:
        return str(record.get(self.key)) == str(obj_id)

    # ---------------- CRUD ---------------- #

    def list_all(self) -> List[Record]:
        return self._read_raw()

    def get_by_id(self, obj_id: Any) -> Optional[Record]:
        for it in self._read_raw():
            if self._same_key(it, obj_id):
                return it
        return None

    def require(self, obj_id: Any) -> Record:
        found = self.get_by_id(obj_id)
        if found is None:
            raise NotFoundError(self.entity_name, obj_id)
        return found

    def add(self, item: Union[BaseModel, Mapping[str, Any]]) -> Record:
        record = self._to_dict(item)
        k = self.key
        if not record.get(k):
            record[k] = uuid4().hex
        with self._lock:
            data = self._read_raw()
            if any(self._same_key(d, record[k]) for d in data):
                raise ConflictError(f"{self.entity_name} with {k}={record[k]} already exists")
            if self.version_field:
                record[self.version_field] = 1
            data.append(record)
            self._write_raw(data)
        return record

    def update(self, item: Union[BaseModel, Mapping[str, Any]]) -> Record:
        """
        Remplace le document de même clé.
        Avec version_field : le document doit porter la version lue,
        sinon ConflictError (écriture concurrente) ; la version est incrémentée.
        """
        record = self._to_dict(item)
        k = self.key
        obj_id = record.get(k)
        if not obj_id:
            raise ValueError(f"Cannot update {self.entity_name} without '{k}'")
        with self._lock:
            data = self._read_raw()
            for idx, existing in enumerate(data):
                if not self._same_key(existing, obj_id):
                    continue
                if self.version_field:
                    stored = existing.get(self.version_field, 0)
                    if record.get(self.version_field, 0) != stored:
                        raise ConflictError(
                            f"{self.entity_name} {obj_id} was modified concurrently "
                            f"(expected version {record.get(self.version_field, 0)}, stored {stored})"
                        )
                    record[self.version_field] = stored + 1
                data[idx] = record
                self._write_raw(data)
                return record
        raise NotFoundError(self.entity_name, obj_id)

    def update_many(self, ids: Iterable[Any], changes: Mapping[str, Any]) -> int:
        """Applique les mêmes champs à plusieurs documents en une seule écriture."""
        wanted = {str(i) for i in ids}
        with self._lock:
            data = self._read_raw()
            count = 0
            for d in data:
                if str(d.get(self.key)) in wanted:
                    d.update(changes)
                    count += 1
            if count:
                self._write_raw(data)
        return count

    def delete(self, obj_id: Any) -> bool:
        with self._lock:
            data = self._read_raw()
            new_data = [d for d in data if not self._same_key(d, obj_id)]
            changed = len(new_data) != len(data)
            if changed:
                self._write_raw(new_data)
        return changed

    # ---------------- Recherches ---------------- #

    def find(self, predicate: Callable[[Record], bool]) -> List[Record]:
        return [r for r in self._read_raw() if predicate(r)]

    def find_one(self, predicate: Callable[[Record], bool]) -> Optional[Record]:
        for r in self._read_raw():
            if predicate(r):
                return r
        return None

    def transaction(self):
        """Verrou réentrant pour enchaîner lecture + contrôle + écriture sans interférence."""
        return self._lock
