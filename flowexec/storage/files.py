"""
JSON-file persistence for execution instances.

One record per execution, ``<directory>/<executionId>.json``. Writes go to
a temporary file in the same directory and are moved into place, so a
record on disk is always a complete snapshot.
"""

from pathlib import Path
from typing import List, Union
import asyncio
import logging
import os
import tempfile

from pydantic import ValidationError

from flowexec.engine.state import ExecutionInstance


logger = logging.getLogger(__name__)


class FileStateStore:
    """Persist execution instances as JSON documents."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, execution_id: str) -> Path:
        return self.directory / f"{execution_id}.json"

    # ------------------------------------------------------------------
    # Blocking helpers
    def _write(self, execution_id: str, payload: str) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=f".{execution_id}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, self.path_for(execution_id))
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _read_all(self) -> List[ExecutionInstance]:
        instances = []
        for path in sorted(self.directory.glob("*.json")):
            try:
                instances.append(ExecutionInstance.model_validate_json(path.read_text(encoding="utf-8")))
            except (OSError, ValidationError) as e:
                logger.error(f"Skipping unreadable execution record {path.name}: {e}")
        return instances

    # ------------------------------------------------------------------
    # Store API
    async def write(self, instance: ExecutionInstance) -> None:
        payload = instance.model_dump_json(by_alias=True)
        await asyncio.to_thread(self._write, instance.execution_id, payload)

    async def load_all(self) -> List[ExecutionInstance]:
        return await asyncio.to_thread(self._read_all)

    async def delete(self, execution_id: str) -> None:
        path = self.path_for(execution_id)
        await asyncio.to_thread(path.unlink, True)
