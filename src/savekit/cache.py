from __future__ import annotations

from typing import Dict, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel


M = TypeVar("M", bound=BaseModel)


class DataCache:
    """
    In-memory cache of the last saved/loaded value per folder-save entry.

    - Keyed by (save_id, data_key); holds copies of model instances, so callers
      mutating a value they saved or loaded do not change the cached one.
    - Best-effort: a miss simply means the engine reads from disk.
    - Lookups are typed: an entry cached as another model class is a miss.
    - Not thread-safe, like the engine that owns it.
    """

    def __init__(self) -> None:
        self._data: Dict[Tuple[str, str], BaseModel] = {}

    @staticmethod
    def _key(save_id: str, data_key: str) -> Tuple[str, str]:
        return (save_id, data_key)

    def get(self, save_id: str, data_key: str, model: Type[M]) -> Optional[M]:
        value = self._data.get(self._key(save_id, data_key))
        if isinstance(value, model):
            return value.model_copy(deep=True)
        return None

    def put(self, save_id: str, data_key: str, value: BaseModel) -> None:
        self._data[self._key(save_id, data_key)] = value.model_copy(deep=True)

    def invalidate(self, save_id: str, data_key: Optional[str] = None) -> None:
        """Drop one entry, or every entry of `save_id` when `data_key` is None."""
        if data_key is not None:
            self._data.pop(self._key(save_id, data_key), None)
            return
        for key in [k for k in self._data if k[0] == save_id]:
            del self._data[key]

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)
