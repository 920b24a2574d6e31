from __future__ import annotations

import logging
import os
import platform
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from convguard.config import Settings, settings as default_settings
from convguard.conversion import events
from convguard.conversion.events import EventBus
from convguard.conversion.models import (
  Conversion,
  ErrorRecord,
  Session,
  StatisticsSnapshot,
  Status,
  Step
)
from convguard.conversion.statistics import StatisticsAggregator
from convguard.conversion.tracker import ConversionTracker
from convguard.logging.event_logger import CONVERSION, LogSink
from convguard.reports.generator import build_diagnostic_report, build_session_report, write_report
from convguard.resources.monitor import ResourceMonitor
from convguard.resources.performance import PerformanceMonitor

logger = logging.getLogger(__name__)


class ConversionMonitor:
  """Lifecycle façade: tracks conversions, aggregates statistics, raises alerts and writes reports."""

  def __init__(
    self,
    settings: Optional[Settings] = None,
    log_sink: Optional[LogSink] = None,
    resource_monitor: Optional[ResourceMonitor] = None,
    event_bus: Optional[EventBus] = None,
    tracker: Optional[ConversionTracker] = None,
    statistics: Optional[StatisticsAggregator] = None,
    performance: Optional[PerformanceMonitor] = None,
    clock: Callable[[], float] = time.time
  ) -> None:
    self.settings = settings or default_settings
    self.log_sink = log_sink
    self.resource_monitor = resource_monitor
    self.event_bus = event_bus or EventBus()
    self.clock = clock
    self.tracker = tracker or ConversionTracker(resource_monitor=resource_monitor, clock=clock)
    self.statistics = statistics or StatisticsAggregator()
    self.performance = performance or PerformanceMonitor(
      self.tracker,
      resource_monitor=resource_monitor,
      log_sink=log_sink,
      event_bus=self.event_bus,
      settings=self.settings
    )
    self.started_at = clock()

  def start(self) -> None:
    if self.settings.enable_performance_monitoring:
      self.performance.start()

  def shutdown(self) -> None:
    self.performance.stop()
    if self.log_sink is not None:
      self.log_sink.close()

  def _log(self, message: str, payload: Dict[str, Any], level: int = logging.INFO) -> None:
    if self.log_sink is not None:
      self.log_sink.log_event(CONVERSION, message, payload, level=level)

  def start_session(self, session_id: Optional[str] = None, **info: Any) -> Session:
    session = self.tracker.start_session(session_id, **info)
    payload = {'session_id': session.session_id, 'info': session.info.to_dict()}
    self._log('Session started', payload)
    self.event_bus.publish(events.SESSION_STARTED, payload)
    return session

  def start_conversion(self, session_id: str, conversion_id: Optional[str] = None, **info: Any) -> Conversion:
    conversion = self.tracker.start_conversion(session_id, conversion_id, **info)
    payload = {
      'session_id': session_id,
      'conversion_id': conversion.conversion_id,
      'info': conversion.info.to_dict()
    }
    self._log(f'Conversion started: {conversion.info.artifact_id}', payload)
    self.event_bus.publish(events.CONVERSION_STARTED, payload)
    return conversion

  def log_step(self, conversion_id: str, name: str, info: Optional[Dict[str, Any]] = None) -> Optional[Step]:
    step = self.tracker.log_step(conversion_id, name, info)
    if step is not None:
      payload = {'conversion_id': conversion_id, 'step': name, 'info': step.info}
      self._log(f'Step started: {name}', payload)
      self.event_bus.publish(events.CONVERSION_STEP, payload)
    return step

  def complete_step(self, conversion_id: str, name: str, result: Optional[Dict[str, Any]] = None) -> Optional[Step]:
    step = self.tracker.complete_step(conversion_id, name, result)
    if step is not None:
      payload = {'conversion_id': conversion_id, 'step': step.to_dict()}
      self._log(f'Step completed: {name}', payload)
      self.event_bus.publish(events.CONVERSION_STEP_COMPLETED, payload)
    return step

  def fail_step(
    self,
    conversion_id: str,
    name: str,
    error: BaseException,
    context: Optional[Dict[str, Any]] = None
  ) -> Optional[Step]:
    step = self.tracker.fail_step(conversion_id, name, error, context)
    if step is not None:
      payload = {'conversion_id': conversion_id, 'step': step.to_dict()}
      self._log(f'Step failed: {name}', payload, logging.ERROR)
      self.event_bus.publish(events.CONVERSION_STEP_FAILED, payload)
    return step

  def record_error(self, conversion_id: str, record: ErrorRecord) -> bool:
    return self.tracker.record_error(conversion_id, record)

  @contextmanager
  def step(self, conversion_id: str, name: str, info: Optional[Dict[str, Any]] = None) -> Iterator[Optional[Step]]:
    step = self.log_step(conversion_id, name, info)
    try:
      yield step
    except Exception as exc:
      self.fail_step(conversion_id, name, exc)
      raise
    else:
      self.complete_step(conversion_id, name)

  def complete_conversion(
    self,
    conversion_id: str,
    success: bool = True,
    result: Optional[Dict[str, Any]] = None
  ) -> Optional[Conversion]:
    conversion = self.tracker.complete_conversion(conversion_id, success, result)
    if conversion is None:
      return None
    self._finalize(conversion)
    return conversion

  def _finalize(self, conversion: Conversion) -> None:
    if self.settings.enable_performance_monitoring:
      issues = self.performance.check_conversion(conversion)
      self.statistics.record_performance_issues(len(issues))
    self.statistics.record_conversion(conversion)
    payload = {
      'conversion_id': conversion.conversion_id,
      'session_id': conversion.session_id,
      'status': conversion.status.value,
      'duration_ms': conversion.duration_ms,
      'peak_memory_bytes': conversion.peak_memory,
      'errors': len(conversion.errors),
      'warnings': len(conversion.warnings)
    }
    level = logging.INFO if conversion.status == Status.COMPLETED else logging.WARNING
    self._log(f'Conversion {conversion.status.value}: {conversion.info.artifact_id}', payload, level)
    self.event_bus.publish(events.CONVERSION_COMPLETED, payload)

  def complete_session(
    self,
    session_id: str,
    success: bool = True,
    result: Optional[Dict[str, Any]] = None
  ) -> Session:
    session = self.tracker.complete_session(session_id, success, result)
    payload = {
      'session_id': session_id,
      'status': session.status.value,
      'duration_ms': session.duration_ms,
      'statistics': session.statistics
    }
    self._log('Session completed', payload)
    if self.settings.enable_detailed_logging:
      report_path = self.settings.report_dir / f'session-{session_id}-{int(self.clock() * 1000)}.json'
      try:
        write_report(report_path, build_session_report(session))
        payload['report_path'] = str(report_path)
      except OSError:
        logger.exception('Failed to write session report for %s', session_id)
    self.event_bus.publish(events.SESSION_COMPLETED, payload)
    return session

  def sweep_stale(self, max_age_seconds: float) -> List[Conversion]:
    swept = self.tracker.sweep_stale(max_age_seconds)
    for conversion in swept:
      self._finalize(conversion)
    return swept

  def get_statistics(self) -> StatisticsSnapshot:
    return self.statistics.snapshot()

  def get_active_conversions(self) -> List[Conversion]:
    return self.tracker.active_conversions()

  def get_active_sessions(self) -> List[Session]:
    return self.tracker.active_sessions()

  def get_history(self, limit: Optional[int] = None) -> List[Conversion]:
    return self.tracker.history(limit)

  def system_info(self) -> Dict[str, Any]:
    info: Dict[str, Any] = {
      'platform': platform.platform(),
      'python_version': sys.version.split()[0],
      'pid': os.getpid(),
      'cwd': os.getcwd(),
      'uptime_seconds': round(self.clock() - self.started_at, 3)
    }
    if self.resource_monitor is not None:
      try:
        info['memory'] = self.resource_monitor.memory_snapshot().to_dict()
      except Exception as exc:
        info['memory'] = {'error': str(exc)}
    return info

  def generate_diagnostic_report(
    self,
    include_detailed_errors: bool = True,
    include_patterns: bool = True,
    include_health: bool = True,
    include_performance: bool = True,
    export_path: Optional[Path] = None,
    error_stats: Optional[Dict[str, Any]] = None
  ) -> Dict[str, Any]:
    report = build_diagnostic_report(
      self.get_statistics(),
      active_sessions=self.get_active_sessions(),
      active_conversions=self.get_active_conversions(),
      history=self.get_history(),
      system=self.system_info(),
      samples=self.performance.recent_samples(),
      include_detailed_errors=include_detailed_errors,
      include_patterns=include_patterns,
      include_health=include_health,
      include_performance=include_performance,
      error_stats=error_stats,
      history_limit=self.settings.report_history_limit,
      sample_limit=self.settings.report_sample_limit,
      time_threshold_ms=self.settings.conversion_time_threshold_ms,
      memory_threshold_bytes=self.settings.memory_threshold_bytes
    )
    if export_path is not None:
      try:
        write_report(Path(export_path), report)
        report['export_path'] = str(export_path)
      except OSError:
        logger.exception('Failed to export diagnostic report to %s', export_path)
    return report

  def clear(self, history: bool = True, statistics: bool = True, performance: bool = True) -> None:
    if history:
      self.tracker.clear_history()
    if statistics:
      self.statistics.clear()
    if performance:
      self.performance.clear()
    logger.info('Cleared monitor data (history=%s statistics=%s performance=%s)', history, statistics, performance)
