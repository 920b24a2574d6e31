from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
import traceback
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from convguard.config import Settings, settings as default_settings
from convguard.conversion import events
from convguard.conversion.categorizer import ErrorCategorizer
from convguard.conversion.events import EventBus
from convguard.conversion.models import (
  Categorization,
  ErrorRecord,
  HandlingResult,
  RecoveryResult,
  json_safe,
  utc_now
)
from convguard.conversion.strategies import RecoveryStrategyRegistry
from convguard.diagnostics.collector import DiagnosticsCollector
from convguard.logging.event_logger import ERRORS, LogSink
from convguard.resources.monitor import ResourceMonitor

logger = logging.getLogger(__name__)

MAX_ATTEMPTS_REASON = 'Max retry attempts exceeded'


@dataclass
class BackoffPolicy:
  base_delay: float = 1.0
  multiplier: float = 2.0
  max_delay: float = 30.0
  max_attempts: int = 3

  @classmethod
  def from_settings(cls, settings: Settings) -> 'BackoffPolicy':
    return cls(
      base_delay=settings.retry_base_delay,
      multiplier=settings.retry_multiplier,
      max_delay=settings.retry_max_delay,
      max_attempts=settings.max_retry_attempts
    )

  def delay_for(self, attempt: int) -> float:
    if attempt < 1:
      raise ValueError('attempt numbers start at 1')
    return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)


def generate_error_id(clock: Callable[[], float] = time.time) -> str:
  return f'err_{int(clock() * 1000)}_{uuid.uuid4().hex[:9]}'


class ConversionErrorHandler:
  """Classifies conversion failures, attempts bounded recovery and keeps the error ledger."""

  def __init__(
    self,
    settings: Optional[Settings] = None,
    log_sink: Optional[LogSink] = None,
    categorizer: Optional[ErrorCategorizer] = None,
    registry: Optional[RecoveryStrategyRegistry] = None,
    diagnostics: Optional[DiagnosticsCollector] = None,
    event_bus: Optional[EventBus] = None,
    backoff: Optional[BackoffPolicy] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    clock: Callable[[], float] = time.time
  ) -> None:
    self.settings = settings or default_settings
    self.log_sink = log_sink
    self.categorizer = categorizer or ErrorCategorizer()
    self.registry = registry or RecoveryStrategyRegistry(self.settings)
    self.diagnostics = diagnostics or DiagnosticsCollector(
      resource_monitor=ResourceMonitor(clock=clock),
      log_sink=log_sink,
      clock=clock
    )
    self.event_bus = event_bus or EventBus()
    self.backoff = backoff or BackoffPolicy.from_settings(self.settings)
    self.enable_recovery = self.settings.enable_recovery
    self.enable_diagnostics = self.settings.enable_diagnostics
    self.diagnostic_mode = self.settings.diagnostic_mode
    self._sleep = sleep
    self._clock = clock
    self._errors: Dict[str, ErrorRecord] = {}
    self._by_exception: Dict[int, str] = {}
    self._lock = threading.RLock()
    self.registry.verify(self.categorizer.recoverable_categories())

  async def handle_error(self, error: BaseException, context: Optional[Dict[str, Any]] = None) -> HandlingResult:
    context = context if context is not None else {}
    categorization = self.categorizer.categorize(error, context)
    record, created = self._record_for(error, context, categorization)

    if self.enable_diagnostics:
      record.diagnostics = self.diagnostics.collect(error, context)

    self._write_error_line(record, 'Conversion error recorded' if created else 'Conversion error repeated')
    self.event_bus.publish(events.ERROR_RECORDED, {'error': record.to_dict(), 'repeated': not created})

    result = HandlingResult(
      error_id=record.error_id,
      category=record.category,
      severity=record.severity,
      recoverable=record.recoverable,
      recovered=False,
      recovery_attempts=record.recovery_attempts,
      diagnostics=record.diagnostics
    )
    if not (self.enable_recovery and record.recoverable):
      return result

    recovery = self._check_budget(record)
    if recovery is None:
      strategy = self.registry.strategy_for(record.category)
      await self._sleep(self.backoff.delay_for(record.recovery_attempts + 1))
      recovery = self._claim_attempt(record)
      if recovery is None:
        try:
          recovery = strategy(record, context)
        except Exception as exc:
          logger.error('Recovery strategy for %s raised', record.category.value, exc_info=True)
          recovery = RecoveryResult(False, 'Recovery strategy failed', error=str(exc))

    record.recovered = recovery.success
    payload = {
      'error_id': record.error_id,
      'category': record.category.value,
      'attempt': record.recovery_attempts,
      'recovery': recovery.to_dict()
    }
    if recovery.success:
      logger.info('Recovered %s error %s: %s', record.category.value, record.error_id, recovery.reason)
      self._log(f'Recovery succeeded: {recovery.reason}', payload, logging.INFO)
      self.event_bus.publish(events.ERROR_RECOVERED, payload)
    else:
      self._log(f'Recovery failed: {recovery.reason}', payload, logging.WARNING)
      self.event_bus.publish(events.ERROR_RECOVERY_FAILED, payload)

    result.recovered = recovery.success
    result.recovery_attempts = record.recovery_attempts
    result.recovery_details = recovery
    return result

  def _check_budget(self, record: ErrorRecord) -> Optional[RecoveryResult]:
    with self._lock:
      if record.recovery_attempts < self.backoff.max_attempts:
        return None
    logger.warning('Recovery budget exhausted for %s (%s)', record.error_id, record.category.value)
    return RecoveryResult(False, MAX_ATTEMPTS_REASON)

  def _claim_attempt(self, record: ErrorRecord) -> Optional[RecoveryResult]:
    # Overlapping calls for one record may all pass the first check while sleeping.
    with self._lock:
      if record.recovery_attempts >= self.backoff.max_attempts:
        return RecoveryResult(False, MAX_ATTEMPTS_REASON)
      record.recovery_attempts += 1
    return None

  def _context_snapshot(self, context: Dict[str, Any]) -> Dict[str, Any]:
    try:
      return json_safe(context)
    except Exception as exc:
      logger.warning('Unable to serialize error context', exc_info=True)
      return {'error': str(exc)}

  def _record_for(
    self,
    error: BaseException,
    context: Dict[str, Any],
    categorization: Categorization
  ) -> Tuple[ErrorRecord, bool]:
    with self._lock:
      existing_id = context.get('error_id') or self._by_exception.get(id(error))
      existing = self._errors.get(existing_id) if existing_id else None
      if existing is not None and existing.category == categorization.category:
        existing.context = self._context_snapshot(context)
        return existing, False

      stack = None
      if error.__traceback__ is not None:
        stack = ''.join(traceback.format_exception(type(error), error, error.__traceback__))
      record = ErrorRecord(
        error_id=generate_error_id(self._clock),
        category=categorization.category,
        severity=categorization.severity,
        recoverable=categorization.recoverable,
        message=str(error),
        error_name=type(error).__name__,
        stack=stack,
        step=context.get('step') or context.get('phase') or context.get('operation'),
        conversion_id=context.get('conversion_id'),
        artifact_id=context.get('artifact_id'),
        context=self._context_snapshot(context),
        timestamp=utc_now(),
        exception=error
      )
      self._errors[record.error_id] = record
      self._by_exception[id(error)] = record.error_id
      context['error_id'] = record.error_id
      return record, True

  def _write_error_line(self, record: ErrorRecord, message: str) -> None:
    payload = record.to_dict()
    if not self.diagnostic_mode:
      payload['diagnostics'] = {'collected': record.diagnostics is not None}
    self._log(message, payload, logging.ERROR)

  def _log(self, message: str, payload: Dict[str, Any], level: int) -> None:
    if self.log_sink is None:
      return
    try:
      self.log_sink.log_event(ERRORS, message, payload, level=level)
    except Exception:
      logger.warning('Unable to write error log line', exc_info=True)

  def enable_diagnostic_mode(self) -> None:
    self.diagnostic_mode = True
    self.enable_diagnostics = True
    logger.info('Diagnostic mode enabled')

  def disable_diagnostic_mode(self) -> None:
    self.diagnostic_mode = False
    logger.info('Diagnostic mode disabled')

  def get_errors(self) -> List[ErrorRecord]:
    with self._lock:
      return list(self._errors.values())

  def get_error(self, error_id: str) -> Optional[ErrorRecord]:
    with self._lock:
      return self._errors.get(error_id)

  def get_errors_by_category(self) -> Dict[str, List[ErrorRecord]]:
    grouped: Dict[str, List[ErrorRecord]] = {}
    for record in self.get_errors():
      grouped.setdefault(record.category.value, []).append(record)
    return grouped

  def get_errors_by_artifact(self) -> Dict[str, List[ErrorRecord]]:
    grouped: Dict[str, List[ErrorRecord]] = {}
    for record in self.get_errors():
      grouped.setdefault(record.artifact_id or 'unknown', []).append(record)
    return grouped

  def get_error_stats(self) -> Dict[str, Any]:
    records = self.get_errors()
    by_category: Dict[str, int] = {}
    by_artifact: Dict[str, int] = {}
    for record in records:
      by_category[record.category.value] = by_category.get(record.category.value, 0) + 1
      artifact = record.artifact_id or 'unknown'
      by_artifact[artifact] = by_artifact.get(artifact, 0) + 1
    recovered = sum(1 for record in records if record.recovered)
    return {
      'total_errors': len(records),
      'errors_by_category': by_category,
      'errors_by_artifact': by_artifact,
      'recovered_errors': recovered,
      'unrecoverable_errors': sum(1 for record in records if not record.recoverable),
      'recovery_rate': recovered / len(records) if records else 0.0
    }

  def clear_errors(self) -> None:
    with self._lock:
      self._errors.clear()
      self._by_exception.clear()

  def export_error_report(self, path: Path) -> Optional[Path]:
    path = Path(path)
    report = {
      'generated_at': utc_now(),
      'statistics': self.get_error_stats(),
      'errors': [record.to_dict() for record in self.get_errors()]
    }
    try:
      path.parent.mkdir(parents=True, exist_ok=True)
      path.write_text(json.dumps(report, indent=2, default=str), encoding='utf-8')
    except OSError:
      logger.exception('Failed to export error report to %s', path)
      return None
    logger.info('Exported error report to %s', path)
    return path
