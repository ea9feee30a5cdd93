"""Pull bookkeeping: `<sources_dir>/metadata.json` records when each library
was last pulled so a checkout is refreshed at most once per day.

```json
{"libraries": {"react": {"lastPull": "2026-10-19T08:12:44.120000+00:00"}}}
```
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"


class PullMetadata:
    def __init__(self, sources_dir: Path) -> None:
        self.path = Path(sources_dir) / METADATA_FILE

    def load(self) -> Dict[str, Any]:
        """Read the file; a missing or unreadable file counts as no record."""
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {"libraries": {}}
        except (OSError, ValueError) as e:
            logger.warning("[metadata] Ignoring unreadable %s: %s", self.path, e)
            return {"libraries": {}}
        if isinstance(data, dict) and isinstance(data.get("libraries"), dict):
            return data
        return {"libraries": {}}

    def save(self, data: Dict[str, Any]) -> None:
        """Write atomically (temp file + replace).

        Failures are logged, not raised: the pull already happened.
        """
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            tmp.replace(self.path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            logger.warning("[metadata] Failed to save %s: %s", self.path, e)

    def last_pull(self, library: str) -> Optional[datetime]:
        entry = self.load()["libraries"].get(library)
        raw = entry.get("lastPull") if isinstance(entry, dict) else None
        if not isinstance(raw, str) or not raw:
            return None
        try:
            return datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None

    def mark_pulled(self, library: str, when: Optional[datetime] = None) -> None:
        data = self.load()
        stamp = when or datetime.now(timezone.utc)
        data["libraries"][library] = {"lastPull": stamp.isoformat()}
        self.save(data)

    def needs_pull(self, library: str, now: Optional[datetime] = None) -> bool:
        """True when there is no record or the last pull was before today (local date)."""
        last = self.last_pull(library)
        if last is None:
            return True
        now = now or datetime.now().astimezone()
        if last.tzinfo is None:
            last = last.astimezone()
        if now.tzinfo is None:
            now = now.astimezone()
        return last.astimezone(now.tzinfo).date() < now.date()
