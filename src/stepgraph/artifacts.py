# artifacts.py
# Write-only, best-effort persistence of run artifacts.
#
# Layout: <root>/<run_id>/<step path>/<file_name>. Nothing here is read back
# during a run; the store stays authoritative.

import json
from pathlib import Path
from typing import Any, Protocol


class ArtifactSink(Protocol):
    def write(self, run_id: str, step_id: str, file_name: str, content: str) -> Path | None: ...


class FileArtifactStore:
    def __init__(self, root: str | Path = "runs") -> None:
        self.root = Path(root)

    def write(self, run_id: str, step_id: str, file_name: str, content: str) -> Path:
        directory = self.root / run_id / step_id
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / file_name
        path.write_text(content, encoding="utf-8")
        return path


class NullArtifactStore:
    """Discards everything."""

    def write(self, run_id: str, step_id: str, file_name: str, content: str) -> None:
        return None


def write_json(sink: ArtifactSink, run_id: str, step_id: str, file_name: str, payload: Any) -> Path | None:
    return sink.write(run_id, step_id, file_name, json.dumps(payload, indent=2, default=str))
