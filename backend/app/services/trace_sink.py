from pathlib import Path
from typing import Optional

from app.core.config import settings
from app.core.logging import get_logger
from app.schemas.chat import ConversationTrace
from app.utils.debug_log import append_trace

logger = get_logger(__name__)


class TraceSink:
    """Receives one ConversationTrace per completed chat request."""

    def __init__(self, *, write_file: Optional[bool] = None, path: Optional[Path] = None):
        self.write_file = settings.TRACE_LOG_ENABLED if write_file is None else write_file
        self.path = path

    def emit(self, trace: ConversationTrace, *, city_code: Optional[str] = None) -> None:
        logger.info(
            f"Chat trace city={city_code} model={trace.model} latency_ms={trace.latency_ms} "
            f"docs={trace.retrieved_docs_count} fallback={trace.used_fallback}"
        )
        if self.write_file:
            payload = trace.to_log_payload()
            payload["city"] = city_code
            append_trace(payload, self.path)
