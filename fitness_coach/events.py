"""Named events and a local step executor.

In production the step executor is a durable job-queue service. LocalStepExecutor
keeps the same contract in-process: events are queued, handlers run with a
StepContext, and a failed run is retried with the outputs of already-succeeded
steps replayed instead of re-executed.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Protocol, Tuple
from uuid import uuid4

from fitness_coach.config import EVENT_MAX_ATTEMPTS
from fitness_coach.errors import EventDeliveryFailure

logger = logging.getLogger(__name__)

NUTRITION_ANALYSIS_COMPLETED = "nutrition/analysis.completed"
NUTRITION_LOW_CONFIDENCE = "nutrition/low-confidence"


@dataclass(frozen=True)
class Event:
    name: str
    data: Dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid4()))
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventSender(Protocol):
    def send(self, event: Event) -> None: ...


class StepContext:
    """Passed to handlers. Each step id runs at most once successfully per function run."""

    def __init__(self, memo: Dict[str, Any], sender: EventSender):
        self._memo = memo
        self._sender = sender

    def run(self, step_id: str, fn: Callable[[], Any]) -> Any:
        if step_id in self._memo:
            logger.debug("Step %s already completed, replaying its output", step_id)
            return self._memo[step_id]
        result = fn()
        self._memo[step_id] = result
        return result

    def send_event(self, step_id: str, event: Event) -> str:
        def _send() -> str:
            self._sender.send(event)
            return event.id

        return self.run(step_id, _send)


Handler = Callable[[Event, StepContext], Any]


@dataclass
class _Function:
    function_id: str
    event_name: str
    handler: Handler


class LocalStepExecutor:
    """In-process event bus with per-step memoisation and bounded retries."""

    def __init__(self, max_attempts: int = EVENT_MAX_ATTEMPTS, backoff_s: float = 0.0):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.backoff_s = backoff_s
        self._functions: List[_Function] = []
        self._queue: Deque[Event] = deque()

    def register(self, function_id: str, event_name: str, handler: Handler) -> None:
        self._functions.append(_Function(function_id, event_name, handler))
        logger.info("Registered function %s on event %s", function_id, event_name)

    def send(self, event: Event) -> None:
        logger.info("[EVENTS] queued %s id=%s data=%s", event.name, event.id, event.data)
        self._queue.append(event)

    def pending(self) -> int:
        return len(self._queue)

    def run_pending(self) -> List[Tuple[str, str, Any]]:
        """
        Deliver every queued event (including ones queued by handlers).

        Returns (function_id, event_id, result) for each successful run.
        Raises EventDeliveryFailure after draining if any run exhausted its attempts.
        """
        results: List[Tuple[str, str, Any]] = []
        failures: List[Tuple[str, str, BaseException]] = []
        while self._queue:
            event = self._queue.popleft()
            for fn in self._functions:
                if fn.event_name != event.name:
                    continue
                try:
                    results.append((fn.function_id, event.id, self._run_function(fn, event)))
                except Exception as e:
                    failures.append((fn.function_id, event.id, e))

        if failures:
            raise EventDeliveryFailure(
                f"{len(failures)} function run(s) failed after {self.max_attempts} attempts",
                failures=failures,
            )
        return results

    def _run_function(self, fn: _Function, event: Event) -> Any:
        memo: Dict[str, Any] = {}
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = fn.handler(event, StepContext(memo, self))
                logger.info(
                    "[EVENTS] %s handled %s id=%s on attempt %s",
                    fn.function_id,
                    event.name,
                    event.id,
                    attempt,
                )
                return result
            except Exception as e:
                logger.warning(
                    "[EVENTS] %s attempt %s/%s failed for %s: %s (completed steps: %s)",
                    fn.function_id,
                    attempt,
                    self.max_attempts,
                    event.id,
                    e,
                    sorted(memo),
                )
                if attempt == self.max_attempts:
                    logger.error("[EVENTS] %s gave up on %s", fn.function_id, event.id)
                    raise
                if self.backoff_s:
                    time.sleep(self.backoff_s * 2 ** (attempt - 1))
