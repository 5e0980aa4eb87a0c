"""Server-sent event frames written on the chat stream."""

import json
from typing import Any, Dict

SSE_HEADERS: Dict[str, str] = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

DONE_FRAME = "data: [DONE]\n\n"


def data_frame(text: str) -> str:
    # Multi-line payloads become one data line per line; clients rejoin them with "\n".
    return "".join(f"data: {line}\n" for line in text.split("\n")) + "\n"


def meta_frame(payload: Dict[str, Any]) -> str:
    return f"event: meta\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"


def error_frame(message: str) -> str:
    return data_frame(f"[ERROR] {message}")
