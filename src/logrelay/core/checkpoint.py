"""
Checkpoint persistence.

A single checkpoint record per deploying identity. Last writer wins; no
concurrent runs against one record are supported.
"""

import hashlib
import json
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import structlog
from aiofiles import open as aio_open
from pydantic import ValidationError

from ..config import CheckpointSettings, get_settings
from ..models.log_record import Checkpoint
from .exceptions import CheckpointStoreError

logger = structlog.get_logger(__name__)


class CheckpointStore(ABC):
    """Load/save one checkpoint record."""

    @abstractmethod
    async def load(self) -> Optional[Checkpoint]:
        """
        Return the stored checkpoint, or None if none was ever written.

        Raises:
            CheckpointStoreError: if the store cannot be read
        """

    @abstractmethod
    async def save(self, checkpoint: Checkpoint) -> None:
        """
        Overwrite the stored checkpoint.

        Raises:
            CheckpointStoreError: if the store cannot be written
        """


class MemoryCheckpointStore(CheckpointStore):
    """In-process store, lost on restart."""

    def __init__(self, checkpoint: Optional[Checkpoint] = None) -> None:
        self.checkpoint = checkpoint
        self.writes = 0

    async def load(self) -> Optional[Checkpoint]:
        return self.checkpoint

    async def save(self, checkpoint: Checkpoint) -> None:
        self.checkpoint = checkpoint
        self.writes += 1


class FileCheckpointStore(CheckpointStore):
    """
    JSON checkpoint file under a root directory.

    Writes go to a temporary file that is renamed over the record, so a
    crash mid-write leaves the previous checkpoint intact.
    """

    def __init__(self, root_path: Path, key: str) -> None:
        self.root_path = Path(root_path)
        self.key = key
        self.path = self.root_path / f"{self._sanitize_key(key)}.json"

    @staticmethod
    def _sanitize_key(key: str) -> str:
        """
        Sanitize key for filesystem safety.

        Format: {safe_prefix}_{hash_suffix}
        Example: tenant-prod_1a2b3c4d
        """
        safe_prefix = re.sub(r'[^a-zA-Z0-9_-]', '', key)[:40]
        hash_suffix = hashlib.sha256(key.encode()).hexdigest()[:8]
        return f"{safe_prefix}_{hash_suffix}"

    async def load(self) -> Optional[Checkpoint]:
        try:
            async with aio_open(self.path, 'r') as f:
                raw = await f.read()
        except FileNotFoundError:
            logger.info("No checkpoint found", path=str(self.path))
            return None
        except OSError as e:
            logger.error("Error reading checkpoint", path=str(self.path), error=str(e))
            raise CheckpointStoreError(
                f"Cannot read checkpoint: {e.strerror or type(e).__name__}",
                details={"key": self.key},
            ) from e

        try:
            return Checkpoint.model_validate_json(raw)
        except ValidationError as e:
            logger.error("Corrupt checkpoint record", path=str(self.path), errors=e.error_count())
            raise CheckpointStoreError("Checkpoint record is corrupt", details={"key": self.key}) from e

    async def save(self, checkpoint: Checkpoint) -> None:
        tmp_path = self.path.with_suffix(".json.tmp")
        data = json.dumps(checkpoint.model_dump(mode="json"))

        try:
            self.root_path.mkdir(parents=True, exist_ok=True)
            async with aio_open(tmp_path, 'w') as f:
                await f.write(data)
                await f.flush()
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error("Error storing checkpoint", path=str(self.path), error=str(e))
            raise CheckpointStoreError(
                f"Cannot write checkpoint: {e.strerror or type(e).__name__}",
                details={"key": self.key},
            ) from e

        logger.debug("Checkpoint stored", path=str(self.path), cursor=checkpoint.cursor)

    def is_writable(self) -> bool:
        """Whether the root directory exists (or can be created) and accepts writes."""
        try:
            self.root_path.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        return os.access(self.root_path, os.W_OK)


# Global checkpoint store instance
_checkpoint_store: Optional[CheckpointStore] = None


def get_checkpoint_store(settings: Optional[CheckpointSettings] = None) -> CheckpointStore:
    """Get or create global checkpoint store instance."""
    global _checkpoint_store

    if _checkpoint_store is None:
        settings = settings or get_settings().checkpoint
        _checkpoint_store = FileCheckpointStore(settings.root_path, settings.key)

    return _checkpoint_store
