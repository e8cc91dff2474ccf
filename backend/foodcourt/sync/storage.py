"""
Локальное хранилище клиента: строковые ключи → строковые значения.
JsonlStore — журнал JSON-строк только на дозапись; удаление пишется надгробием.
Испорченные строки и значения считаются отсутствующими, а не ошибкой.
"""
import json
import os
from pathlib import Path
from typing import Any, Iterator, Optional

from foodcourt.core.logging_config import get_logger

logger = get_logger(__name__)


class ClientStore:
    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def keys(self, prefix: str = "") -> Iterator[str]:
        raise NotImplementedError

    def get_json(self, key: str) -> Any:
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Испорченное значение по ключу %s — считаем отсутствующим", key)
            return None

    def set_json(self, key: str, value: Any) -> None:
        self.set(key, json.dumps(value, ensure_ascii=False, sort_keys=True))


class MemoryStore(ClientStore):
    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> Iterator[str]:
        return iter([k for k in self._data if k.startswith(prefix)])


class JsonlStore(ClientStore):
    """
    Каждая запись — строка {"k": ключ, "v": значение} или {"k": ключ, "d": 1}.
    Переживает перезапуск клиента; compact() переписывает журнал текущим состоянием.
    """

    COMPACT_MIN_LINES = 200

    def __init__(self, path):
        self.path = Path(path)
        self._data: dict[str, str] = {}
        self._lines = 0
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        skipped = 0
        with self.path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                self._lines += 1
                try:
                    record = json.loads(line)
                    key = record["k"]
                except (ValueError, KeyError, TypeError):
                    skipped += 1
                    continue
                if not isinstance(key, str):
                    skipped += 1
                elif record.get("d"):
                    self._data.pop(key, None)
                elif isinstance(record.get("v"), str):
                    self._data[key] = record["v"]
                else:
                    skipped += 1
        if skipped:
            logger.warning("%s: пропущено испорченных строк: %s", self.path, skipped)

    def _append(self, record: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False) + "\n")
            f.flush()
            os.fsync(f.fileno())
        self._lines += 1
        if self._lines > max(self.COMPACT_MIN_LINES, 4 * len(self._data)):
            self.compact()

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self._data.get(key) == value:
            return
        self._data[key] = value
        self._append({"k": key, "v": value})

    def delete(self, key: str) -> None:
        if key not in self._data:
            return
        del self._data[key]
        self._append({"k": key, "d": 1})

    def keys(self, prefix: str = "") -> Iterator[str]:
        return iter([k for k in self._data if k.startswith(prefix)])

    def compact(self) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            for key, value in self._data.items():
                f.write(json.dumps({"k": key, "v": value}, ensure_ascii=False) + "\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)
        self._lines = len(self._data)
