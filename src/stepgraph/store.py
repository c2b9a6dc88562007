# store.py
# Append-only versioned key/value store shared by the steps of one run.
#
# Writes never overwrite: each write appends a record whose version is the
# previous maximum + 1 (starting at 1). Only the execution loop and input
# seeding write here; the verifier and patch engine only read.

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel


class ArtifactVersion(BaseModel):
    version: int
    value: Any
    timestamp: str


class VersionedStore:
    """In-memory version log, keyed by string."""

    def __init__(self) -> None:
        self._log: dict[str, list[ArtifactVersion]] = {}

    def write(self, key: str, value: Any) -> int:
        """Append `value` under `key` and return its new version number."""
        history = self._log.setdefault(key, [])
        version = history[-1].version + 1 if history else 1
        history.append(
            ArtifactVersion(
                version=version,
                value=value,
                timestamp=datetime.now(timezone.utc).isoformat(),
            )
        )
        return version

    def read(self, key: str, latest: bool = True) -> Any | None:
        """Latest value by default, earliest when `latest=False`. None if absent."""
        history = self._log.get(key)
        if not history:
            return None
        return (history[-1] if latest else history[0]).value

    def exists(self, key: str) -> bool:
        return bool(self._log.get(key))

    def keys(self) -> list[str]:
        return list(self._log)

    def history(self, key: str) -> list[ArtifactVersion]:
        """Shallow copy of every record for `key`, oldest first."""
        return list(self._log.get(key, []))

    def seed(self, values: dict[str, Any]) -> None:
        for key, value in values.items():
            self.write(key, value)

    def snapshot(self) -> dict[str, Any]:
        """Latest value of every key."""
        return {key: history[-1].value for key, history in self._log.items() if history}
