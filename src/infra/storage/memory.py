from typing import Dict, Optional


class MemoryStorage:
    """
    In-process key/value storage with the subset of the redis.asyncio client
    API the session store relies on (string values, get/set/delete).
    """

    def __init__(self) -> None:
        self._values: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    async def set(self, key: str, value: str) -> bool:
        self._values[key] = value
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._values.pop(key, None) is not None:
                removed += 1
        return removed

    async def exists(self, *keys: str) -> int:
        return sum(1 for key in keys if key in self._values)

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        self._values.clear()
