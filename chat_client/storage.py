"""JSON file persistence for saved conversation state."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import aiofiles

logger = logging.getLogger(__name__)

STORAGE_PREFIX = "chat-"
DEFAULT_NAMESPACE = "state"


class StateStorage:
    """Store one JSON document per namespace under `directory`.

    Failures are logged and reported as a missing value instead of raised;
    persistence is best effort.
    """

    def __init__(self, directory: Union[str, Path], namespace: str = DEFAULT_NAMESPACE) -> None:
        self.directory = Path(directory)
        self.namespace = namespace

    @property
    def path(self) -> Path:
        return self.directory / f"{STORAGE_PREFIX}{self.namespace}.json"

    async def save(self, data: Dict[str, Any]) -> bool:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self.path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(data, ensure_ascii=False))
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Failed to save state to %s: %s", self.path, exc)
            return False
        return True

    async def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                data = json.loads(await f.read())
        except (OSError, ValueError) as exc:
            logger.warning("Failed to load state from %s: %s", self.path, exc)
            return None
        return data if isinstance(data, dict) else None

    async def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Failed to remove state at %s: %s", self.path, exc)
