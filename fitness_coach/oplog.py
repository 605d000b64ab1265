"""Operation log sink.

Records duration, outcome and payload sizes of external calls. Nothing here
feeds back into pipeline decisions.
"""

import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator

logger = logging.getLogger(__name__)


@contextmanager
def log_operation(name: str, **meta: Any) -> Iterator[Dict[str, Any]]:
    """
    Time the wrapped block and log one line when it finishes.

    The yielded dict can be extended by the caller (e.g. response size),
    the extra keys end up in the log line.
    """
    start = time.perf_counter()
    try:
        yield meta
    except Exception as e:
        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.warning(
            "[OP] %s failed in %sms error=%s meta=%s",
            name,
            duration_ms,
            type(e).__name__,
            meta,
        )
        raise
    duration_ms = round((time.perf_counter() - start) * 1000, 2)
    meta["duration_ms"] = duration_ms
    logger.info("[OP] %s succeeded in %sms meta=%s", name, duration_ms, meta)
