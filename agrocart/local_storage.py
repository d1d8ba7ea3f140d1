"""
Client-side cart persistence.

The guest cart lives in a key/value store as one JSON array under a single
well-known key, the same way a browser keeps it in localStorage.
"""
import json
import logging
import os
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from agrocart.config import Config
from agrocart.models import CartLine

logger = logging.getLogger(__name__)


class LocalStorage:
    """Minimal string key/value store"""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError


class MemoryStorage(LocalStorage):
    """In-process storage, used for tests and short-lived sessions"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileStorage(LocalStorage):
    """One ``<key>.json`` file per key inside a directory"""

    def __init__(self, directory: Optional[str] = None):
        self.directory = directory or Config.CART_STORAGE_DIR
        os.makedirs(self.directory, exist_ok=True)

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, f"{key}.json")

    def get(self, key: str) -> Optional[str]:
        try:
            with open(self._path(key), "r", encoding="utf-8") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(value)
        os.replace(tmp_path, path)

    def remove(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            pass


def dump_lines(lines: Iterable[CartLine]) -> str:
    return json.dumps([line.model_dump(mode="json", by_alias=True) for line in lines])


def parse_lines(payload: Optional[str]) -> List[CartLine]:
    """Parse a stored cart; malformed entries are skipped, unknown fields ignored"""
    if not payload:
        return []
    try:
        entries = json.loads(payload)
    except json.JSONDecodeError as e:
        logger.warning(f"Stored cart is not valid JSON, starting empty: {e}")
        return []
    if not isinstance(entries, list):
        logger.warning("Stored cart is not a JSON array, starting empty")
        return []

    lines: List[CartLine] = []
    for index, entry in enumerate(entries):
        try:
            line = CartLine.model_validate(entry)
        except PydanticValidationError as e:
            # Skip invalid items
            logger.warning(f"Failed to parse stored cart line {index}: {e.error_count()} errors")
            continue
        if line.quantity > 0:
            lines.append(line)
    return lines


def load_lines(storage: LocalStorage, key: Optional[str] = None) -> List[CartLine]:
    return parse_lines(storage.get(key or Config.CART_STORAGE_KEY))


def save_lines(storage: LocalStorage, lines: Iterable[CartLine], key: Optional[str] = None) -> None:
    storage.set(key or Config.CART_STORAGE_KEY, dump_lines(lines))
