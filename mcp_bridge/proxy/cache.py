"""
Disk cache of the discovered tool list.

A fresh process has only a few seconds to answer the first tools/list
request, while live discovery can take much longer. The last discovered
tool list is therefore persisted and served on the next start until live
discovery catches up. Entries older than 24 hours are ignored.
"""

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .discovery import DiscoveredTool

logger = logging.getLogger(__name__)

MAX_CACHE_AGE_SECONDS = 24 * 60 * 60


@dataclass
class CachedToolRecord:
    """Persisted form of one discovered tool."""

    name: str
    description: str
    server_name: str
    input_schema: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedToolRecord":
        """
        Create a record from its JSON form.

        Raises:
            ValueError: If required fields are missing or mistyped
        """
        if not isinstance(data, dict):
            raise ValueError("cached tool must be an object")
        name = data.get("name")
        server_name = data.get("serverName")
        description = data.get("description")
        input_schema = data.get("inputSchema", {})
        if not isinstance(name, str) or not name:
            raise ValueError("cached tool is missing a name")
        if not isinstance(server_name, str) or not server_name:
            raise ValueError(f"cached tool '{name}' is missing a serverName")
        if description is not None and not isinstance(description, str):
            raise ValueError(f"cached tool '{name}' has a non-string description")
        if not isinstance(input_schema, dict):
            raise ValueError(f"cached tool '{name}' has a non-object inputSchema")
        return cls(
            name=name,
            description=description or "",
            server_name=server_name,
            input_schema=input_schema,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
            "serverName": self.server_name,
        }

    def to_discovered_tool(self) -> DiscoveredTool:
        return DiscoveredTool(
            name=self.name,
            description=self.description,
            input_schema=self.input_schema,
            server_name=self.server_name,
        )


class ToolsCache:
    """Reads and writes the tool list cache file."""

    def __init__(self, path: Union[str, Path], max_age: float = MAX_CACHE_AGE_SECONDS):
        """
        Initialize the cache.

        Args:
            path: Location of the cache file
            max_age: Age in seconds after which the cache is ignored
        """
        self.path = Path(path)
        self.max_age = max_age

    def save(self, records: List[CachedToolRecord], timestamp: Optional[float] = None) -> bool:
        """
        Persist the tool list, replacing any previous cache.

        Args:
            records: Tools to persist
            timestamp: Capture time in epoch seconds. Defaults to now.

        Returns:
            True if the file was written
        """
        captured = time.time() if timestamp is None else timestamp
        payload = {
            "timestamp": int(captured * 1000),
            "tools": [record.to_dict() for record in records],
        }

        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except OSError as e:
            logger.error(f"Failed to write tool cache {self.path}: {e}")
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            return False

        logger.info(f"Cached {len(records)} tools to {self.path}")
        return True

    def load(self, now: Optional[float] = None) -> Optional[List[CachedToolRecord]]:
        """
        Load the cached tool list.

        Returns:
            The cached records, or None if the cache is missing, invalid or stale
        """
        if not self.path.exists():
            logger.info(f"No tool cache at {self.path}")
            return None

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            timestamp_ms = data["timestamp"]
            tools_data = data["tools"]
            if not isinstance(timestamp_ms, (int, float)) or not isinstance(tools_data, list):
                raise ValueError("unexpected cache layout")
            records = [CachedToolRecord.from_dict(item) for item in tools_data]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to load tool cache {self.path}: {e}")
            return None

        age = (time.time() if now is None else now) - timestamp_ms / 1000.0
        if age > self.max_age:
            logger.info(f"Tool cache is stale ({age / 3600:.0f}h old), ignoring")
            return None

        logger.info(f"Loaded {len(records)} cached tools ({age / 60:.0f}m old)")
        return records

    def clear(self) -> bool:
        """
        Delete the cache file.

        Returns:
            True if a file was removed
        """
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        logger.info(f"Removed tool cache {self.path}")
        return True
