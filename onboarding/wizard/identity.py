"""Process-local identifiers joining providers to not-yet-persisted addresses."""

from __future__ import annotations

import uuid

TEMP_ID_PREFIX = "tmp-"


class TempIdAllocator:
    """Issue session-unique temp ids; durable ids are adopted as-is."""

    def __init__(self) -> None:
        self._issued: set[str] = set()

    def allocate(self) -> str:
        while True:
            temp_id = f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"
            if temp_id not in self._issued:
                self._issued.add(temp_id)
                return temp_id

    def adopt(self, durable_id: str) -> str:
        """Reserve a durable identifier so it doubles as the temp id."""
        self._issued.add(durable_id)
        return durable_id

    def __contains__(self, temp_id: object) -> bool:
        return temp_id in self._issued


def is_temporary(temp_id: str) -> bool:
    return str(temp_id or "").startswith(TEMP_ID_PREFIX)
