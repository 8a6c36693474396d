"""
Override/cache files for the planning and dependency stages

Both are human-editable YAML:

    # files to generate
    - src/main.py
    - README.md

    # shared dependencies
    - name: TodoItem
      description: record stored by the API
      symbols:
        id: integer primary key

A file that exists and is non-empty is used verbatim instead of calling
the stage provider. Otherwise the computed value is written back so later
runs (and manual edits) can reuse it.
"""

from pathlib import Path
from typing import List, Optional, Sequence

import aiofiles
import yaml

from smoldev.exceptions import ConfigError, FileWriteError
from smoldev.logging_config import logger
from smoldev.models import DependencyDescriptor


def file_exists_and_non_empty(path: Path) -> bool:
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


class OverrideStore:
    """Reads and writes one YAML override file"""

    def __init__(self, path: Optional[str]):
        self.path = Path(path) if path else None

    @property
    def enabled(self) -> bool:
        return self.path is not None

    def available(self) -> bool:
        return self.path is not None and file_exists_and_non_empty(self.path)

    async def _load(self):
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                text = await f.read()
        except OSError as e:
            raise ConfigError(f"failed to open file {self.path}: {e}", field=str(self.path)) from e
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"failed to parse YAML in {self.path}: {e}", field=str(self.path)) from e

    async def _dump(self, data) -> None:
        text = yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
        try:
            if self.path.parent and not self.path.parent.exists():
                self.path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self.path, "w", encoding="utf-8") as f:
                await f.write(text)
        except OSError as e:
            raise FileWriteError(str(self.path), e) from e
        logger.info(f"Wrote {self.path}")


class ManifestStore(OverrideStore):
    """YAML list of file paths"""

    async def load(self) -> List[str]:
        data = await self._load()
        if not isinstance(data, list) or not all(isinstance(p, str) for p in data):
            raise ConfigError(f"{self.path} must contain a YAML list of file paths", field=str(self.path))
        return data

    async def save(self, manifest: Sequence[str]) -> None:
        await self._dump(list(manifest))


class DependencyStore(OverrideStore):
    """YAML list of {name, description, symbols} records"""

    async def load(self) -> DependencyDescriptor:
        data = await self._load()
        reasoning = []
        if isinstance(data, dict) and "shared_dependencies" in data:
            reasoning = data.get("reasoning") or []
            data = data["shared_dependencies"]
        if not isinstance(data, list) or not all(isinstance(r, dict) for r in data):
            raise ConfigError(
                f"{self.path} must contain a YAML list of shared dependency records",
                field=str(self.path)
            )
        try:
            return DependencyDescriptor.from_records(data, reasoning)
        except ValueError as e:
            raise ConfigError(f"{self.path}: {e}", field=str(self.path)) from e

    async def save(self, dependencies: DependencyDescriptor) -> None:
        await self._dump(dependencies.to_records())
