"""
zsearch Tool Cache - Tool-discovery cache.

Caches the merged tool listing so ``zsearch tools`` does not have to spawn
the vision server on every run. Entries are YAML files under the cache
directory, one per discovery key.
"""

import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

import yaml

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


def tool_discovery_key(filter_text: Optional[str] = None, include_vision: bool = True) -> str:
    """Cache key for one ``tools`` invocation."""
    return f"tools:{filter_text or 'all'}:{'vision' if include_vision else 'no-vision'}"


class ToolCache:
    """
    Filesystem-based cache for tool discovery.

    Cache structure:
    - <cache_dir>/tools/<key>.yaml - one listing per discovery key
    """

    def __init__(self, cache_dir: Path, ttl_ms: int = 86_400_000, enabled: bool = True):
        self.cache_dir = Path(cache_dir)
        self.tools_dir = self.cache_dir / "tools"
        self.ttl = timedelta(milliseconds=ttl_ms)
        self.enabled = enabled

    def _path(self, key: str) -> Path:
        return self.tools_dir / f"{_UNSAFE.sub('_', key)}.yaml"

    def get(self, key: str) -> Optional[Any]:
        """
        Get a cached listing.

        Returns None if disabled, not cached, unreadable or expired.
        """
        if not self.enabled:
            return None

        cache_file = self._path(key)
        if not cache_file.exists():
            return None

        try:
            with open(cache_file) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError):
            return None

        if not isinstance(data, dict):
            return None

        # Check expiry
        try:
            cached_at = datetime.fromisoformat(str(data.get("cached_at", "2000-01-01")))
        except ValueError:
            return None
        if datetime.utcnow() - cached_at > self.ttl:
            cache_file.unlink(missing_ok=True)
            return None

        return data.get("value")

    def set(self, key: str, value: Any) -> None:
        """Cache a listing. Write failures are ignored."""
        if not self.enabled:
            return

        data = {
            "key": key,
            "cached_at": datetime.utcnow().isoformat(),
            "value": value,
        }

        try:
            self.tools_dir.mkdir(parents=True, exist_ok=True)
            with open(self._path(key), "w") as f:
                yaml.safe_dump(data, f, default_flow_style=False)
        except OSError:
            pass

    def invalidate(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def clear(self) -> int:
        """
        Clear all cache entries.

        Returns:
            Number of entries cleared.
        """
        if not self.tools_dir.exists():
            return 0

        cleared = 0
        for cache_file in self.tools_dir.glob("*.yaml"):
            cache_file.unlink()
            cleared += 1
        return cleared
