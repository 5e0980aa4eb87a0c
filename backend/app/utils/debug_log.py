from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from app.core.config import settings

BACKEND_ROOT = Path(__file__).resolve().parents[2]


def trace_log_path() -> Path:
    log_dir = Path(settings.LOG_DIR)
    if not log_dir.is_absolute():
        log_dir = BACKEND_ROOT / log_dir
    return log_dir / settings.DEBUG_LOG_FILE


def append_trace(record: Dict[str, Any], path: Optional[Path] = None) -> None:
    """Append one timestamped NDJSON line. Never raises."""
    target = path or trace_log_path()
    line = {"ts": datetime.now(timezone.utc).isoformat(), **record}
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("a", encoding="utf-8") as f:
            f.write(json.dumps(line, ensure_ascii=False, default=str) + "\n")
    except OSError:
        # A full disk or read-only volume must not break the chat stream
        pass
