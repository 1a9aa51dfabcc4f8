from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional


@dataclass
class Progress:
    item_index: int = 0
    cursor: Optional[str] = None
    # latest capture time already reconciled for the item at item_index
    resolved_upto: Optional[int] = None


class ProgressFile:
    """Resume point for long metric backfills, rewritten after every page."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)

    def load(self) -> Progress:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            item_index = int(raw.get("item_index", 0))
            cursor = raw.get("cursor")
            resolved = raw.get("resolved_upto")
            resolved_upto = int(resolved) if resolved is not None else None
        except FileNotFoundError:
            return Progress()
        except (ValueError, TypeError, AttributeError, OSError):
            # unreadable state restarts from zero
            return Progress()
        if item_index < 0:
            return Progress()
        return Progress(
            item_index=item_index,
            cursor=str(cursor) if cursor else None,
            resolved_upto=resolved_upto,
        )

    def save(self, progress: Progress) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(asdict(progress)), encoding="utf-8")
        os.replace(tmp, self.path)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
