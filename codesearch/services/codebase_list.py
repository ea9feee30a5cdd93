"""Catalog of clonable codebases, loaded once from a JSON list.

Entries are either plain clone URLs or objects:

```json
["https://github.com/org/repo.git",
 {"url": "git@host:team/api.git", "name": "api", "description": "Backend"}]
```
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CodebaseEntry:
    url: str
    name: str
    description: Optional[str] = None


def last_segment(url: str) -> str:
    """Repository name from a clone URL, without a trailing `.git`."""
    normalized = url.rstrip("/")
    parts = [p for p in normalized.split("/") if p]
    segment = parts[-1] if parts else normalized
    # scp-style URLs (git@host:repo.git) have no slash before the name
    segment = segment.rsplit(":", 1)[-1]
    return segment[:-4] if segment.endswith(".git") else segment


class CodebaseCatalog:
    """Read-only name -> CodebaseEntry mapping."""

    def __init__(self, entries: Iterable[CodebaseEntry] = ()) -> None:
        self._entries: Dict[str, CodebaseEntry] = {e.name: e for e in entries}

    @classmethod
    def load(cls, path: Optional[str]) -> "CodebaseCatalog":
        """Load the list; problems are logged and yield an empty catalog."""
        if not path:
            logger.error("[codebase-list] sources.codebase_list_path is not set; only local projects are available")
            return cls()
        try:
            with open(Path(path), "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("[codebase-list] Failed to read codebase list from %s: %s", path, e)
            return cls()
        if not isinstance(raw, list):
            logger.error("[codebase-list] Invalid format: expected array, got %s", type(raw).__name__)
            return cls()
        catalog = cls(cls._parse(raw))
        logger.info("[codebase-list] Loaded %d codebases from %s", len(catalog), path)
        return catalog

    @staticmethod
    def _parse(raw: List[object]) -> List[CodebaseEntry]:
        entries: List[CodebaseEntry] = []
        for item in raw:
            if isinstance(item, str) and item.strip():
                url = item.strip()
                entries.append(CodebaseEntry(url=url, name=last_segment(url)))
            elif isinstance(item, dict) and isinstance(item.get("url"), str):
                url = item["url"]
                name = item.get("name") if isinstance(item.get("name"), str) else last_segment(url)
                desc = item.get("description") if isinstance(item.get("description"), str) else None
                entries.append(CodebaseEntry(url=url, name=name, description=desc))
        return entries

    def get(self, name: str) -> Optional[CodebaseEntry]:
        return self._entries.get(name)

    def names(self) -> List[str]:
        return sorted(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)
