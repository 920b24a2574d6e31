from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from convguard.config import Settings, settings as default_settings
from convguard.conversion import events
from convguard.conversion.events import EventBus
from convguard.conversion.models import Conversion, PerformanceIssue, ResourceSnapshot, isoformat
from convguard.conversion.tracker import ConversionTracker
from convguard.logging.event_logger import PERFORMANCE, LogSink
from convguard.resources.monitor import ResourceMonitor

logger = logging.getLogger(__name__)

SLOW_CONVERSION = 'slow_conversion'
HIGH_MEMORY_USAGE = 'high_memory_usage'


class PerformanceMonitor:
  """Periodic resource sampler plus per-conversion threshold checks."""

  def __init__(
    self,
    tracker: ConversionTracker,
    resource_monitor: Optional[ResourceMonitor] = None,
    log_sink: Optional[LogSink] = None,
    event_bus: Optional[EventBus] = None,
    settings: Optional[Settings] = None
  ) -> None:
    self.settings = settings or default_settings
    self.tracker = tracker
    self.resource_monitor = resource_monitor
    self.log_sink = log_sink
    self.event_bus = event_bus or EventBus()
    self.interval = self.settings.sample_interval_seconds
    self.time_threshold_ms = self.settings.conversion_time_threshold_ms
    self.memory_threshold_bytes = self.settings.memory_threshold_bytes
    self._samples: Deque[Dict[str, Any]] = deque(maxlen=self.settings.sample_capacity)
    self._lock = threading.Lock()
    self._stop = threading.Event()
    self._thread: Optional[threading.Thread] = None

  @property
  def running(self) -> bool:
    return self._thread is not None and self._thread.is_alive()

  def start(self) -> None:
    if self.running:
      return
    self._stop.clear()
    self._thread = threading.Thread(target=self._run, name='convguard-sampler', daemon=True)
    self._thread.start()
    logger.info('Performance sampling started (interval=%ss)', self.interval)

  def stop(self, timeout: float = 5.0) -> None:
    self._stop.set()
    if self._thread is not None:
      self._thread.join(timeout=timeout)
      self._thread = None
      logger.info('Performance sampling stopped')

  def _run(self) -> None:
    while not self._stop.wait(self.interval):
      try:
        self.sample()
      except Exception:
        logger.exception('Performance sample failed')

  def sample(self) -> Dict[str, Any]:
    counts = self.tracker.active_counts()
    if self.resource_monitor is not None:
      snapshot = self.resource_monitor.memory_snapshot()
    else:
      snapshot = ResourceSnapshot()
    entry = {
      'timestamp': isoformat(snapshot.timestamp) if snapshot.timestamp else None,
      'memory': snapshot.to_dict(),
      'active_conversions': counts['conversions'],
      'active_sessions': counts['sessions']
    }
    with self._lock:
      self._samples.append(entry)
    return entry

  def recent_samples(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    with self._lock:
      samples = list(self._samples)
    return samples[-limit:] if limit else samples

  def check_conversion(self, conversion: Conversion) -> List[PerformanceIssue]:
    issues: List[PerformanceIssue] = []
    duration = conversion.duration_ms or 0.0
    if duration > self.time_threshold_ms:
      issues.append(PerformanceIssue(
        type=SLOW_CONVERSION,
        message=f'Conversion took {duration:.0f}ms (threshold {self.time_threshold_ms:.0f}ms)',
        value=duration,
        threshold=self.time_threshold_ms
      ))
    peak = conversion.peak_memory
    if peak > self.memory_threshold_bytes:
      issues.append(PerformanceIssue(
        type=HIGH_MEMORY_USAGE,
        message=f'Peak memory {peak / (1024 ** 2):.1f}MB exceeded {self.memory_threshold_bytes / (1024 ** 2):.1f}MB',
        value=peak,
        threshold=self.memory_threshold_bytes
      ))

    for issue in issues:
      conversion.warnings.append(issue)
      payload = {
        'conversion_id': conversion.conversion_id,
        'artifact_id': conversion.info.artifact_id,
        'issue': issue.to_dict()
      }
      if self.log_sink is not None:
        self.log_sink.log_event(PERFORMANCE, issue.message, payload, level=logging.WARNING)
      self.event_bus.publish(events.PERFORMANCE_ISSUE, payload)
    return issues

  def clear(self) -> None:
    with self._lock:
      self._samples.clear()
