from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

WILDCARD = '*'

SESSION_STARTED = 'session.started'
SESSION_COMPLETED = 'session.completed'
CONVERSION_STARTED = 'conversion.started'
CONVERSION_STEP = 'conversion.step'
CONVERSION_STEP_COMPLETED = 'conversion.step_completed'
CONVERSION_STEP_FAILED = 'conversion.step_failed'
CONVERSION_COMPLETED = 'conversion.completed'
PERFORMANCE_ISSUE = 'performance.issue'
ERROR_RECORDED = 'error.recorded'
ERROR_RECOVERED = 'error.recovered'
ERROR_RECOVERY_FAILED = 'error.recovery_failed'

Subscriber = Callable[[str, Dict[str, Any]], None]


class EventBus:
  """Explicit observer registry; engines publish onto it, callers subscribe."""

  def __init__(self) -> None:
    self._subscribers: Dict[str, List[Subscriber]] = {}
    self._lock = threading.Lock()

  def subscribe(self, event_name: str, callback: Subscriber) -> Callable[[], None]:
    normalized = event_name.lower()
    with self._lock:
      self._subscribers.setdefault(normalized, []).append(callback)

    def unsubscribe() -> None:
      with self._lock:
        callbacks = self._subscribers.get(normalized, [])
        if callback in callbacks:
          callbacks.remove(callback)

    return unsubscribe

  def publish(self, event_name: str, payload: Dict[str, Any]) -> int:
    normalized = event_name.lower()
    with self._lock:
      targets = list(self._subscribers.get(normalized, [])) + list(self._subscribers.get(WILDCARD, []))
    delivered = 0
    for callback in targets:
      try:
        callback(normalized, payload)
        delivered += 1
      except Exception:
        logger.warning('Subscriber for %s raised; continuing', normalized, exc_info=True)
    return delivered

  def subscriber_count(self, event_name: str) -> int:
    with self._lock:
      return len(self._subscribers.get(event_name.lower(), []))
