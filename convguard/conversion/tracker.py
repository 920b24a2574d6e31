from __future__ import annotations

import logging
import threading
import time
import traceback
import uuid
from typing import Any, Callable, Dict, List, Optional

from convguard.conversion.categorizer import ErrorCategorizer
from convguard.conversion.error_recovery import generate_error_id
from convguard.conversion.models import (
  Conversion,
  ConversionInfo,
  ErrorRecord,
  ResourceSnapshot,
  Session,
  SessionInfo,
  Status,
  Step,
  json_safe
)

logger = logging.getLogger(__name__)

ABANDONED_REASON = 'abandoned'


class SessionNotFoundError(LookupError):
  pass


class ConversionStateError(RuntimeError):
  pass


def _generate_id(prefix: str, clock: Callable[[], float]) -> str:
  return f'{prefix}_{int(clock() * 1000)}_{uuid.uuid4().hex[:9]}'


def _elapsed_ms(started_at: float, ended_at: float) -> float:
  return round(max(0.0, ended_at - started_at) * 1000, 3)


class ConversionTracker:
  """Owns the live session and conversion maps plus their completed history."""

  def __init__(
    self,
    resource_monitor=None,
    categorizer: Optional[ErrorCategorizer] = None,
    clock: Callable[[], float] = time.time
  ) -> None:
    self.resource_monitor = resource_monitor
    self.categorizer = categorizer or ErrorCategorizer()
    self.clock = clock
    self._sessions: Dict[str, Session] = {}
    self._conversions: Dict[str, Conversion] = {}
    self._history: List[Conversion] = []
    self._session_history: List[Session] = []
    self._lock = threading.RLock()

  def _snapshot(self) -> ResourceSnapshot:
    if self.resource_monitor is None:
      return ResourceSnapshot(timestamp=self.clock())
    try:
      return self.resource_monitor.memory_snapshot()
    except Exception:
      logger.warning('Unable to read process memory', exc_info=True)
      return ResourceSnapshot(timestamp=self.clock())

  def start_session(
    self,
    session_id: Optional[str] = None,
    session_type: str = 'unknown',
    source: str = 'unknown',
    expected_items: int = 0,
    **extra: Any
  ) -> Session:
    session_id = session_id or _generate_id('session', self.clock)
    snapshot = self._snapshot()
    session = Session(
      session_id=session_id,
      info=SessionInfo(type=session_type, source=source, expected_items=expected_items, extra=extra),
      started_at=self.clock(),
      start_snapshot=snapshot,
      peak_snapshot=snapshot
    )
    with self._lock:
      if session_id in self._sessions:
        raise ConversionStateError(f'Session {session_id} is already active')
      self._sessions[session_id] = session
    return session

  def start_conversion(
    self,
    session_id: str,
    conversion_id: Optional[str] = None,
    artifact_id: str = 'unknown',
    artifact_type: str = 'artifact',
    source: str = 'unknown',
    grouping: Optional[str] = None,
    input_path: Optional[str] = None,
    output_path: Optional[str] = None,
    **extra: Any
  ) -> Conversion:
    conversion_id = conversion_id or _generate_id('conv', self.clock)
    snapshot = self._snapshot()
    conversion = Conversion(
      conversion_id=conversion_id,
      session_id=session_id,
      info=ConversionInfo(
        artifact_id=artifact_id,
        type=artifact_type,
        source=source,
        grouping=grouping,
        input_path=input_path,
        output_path=output_path,
        extra=extra
      ),
      started_at=self.clock(),
      start_snapshot=snapshot,
      peak_snapshot=snapshot
    )
    with self._lock:
      session = self._sessions.get(session_id)
      if session is None:
        raise SessionNotFoundError(f'Session {session_id} not found')
      if conversion_id in self._conversions:
        raise ConversionStateError(f'Conversion {conversion_id} is already active')
      self._conversions[conversion_id] = conversion
      session.conversions[conversion_id] = conversion
    return conversion

  def log_step(self, conversion_id: str, name: str, info: Optional[Dict[str, Any]] = None) -> Optional[Step]:
    with self._lock:
      conversion = self._conversions.get(conversion_id)
      if conversion is None:
        logger.warning('Cannot log step %s: conversion %s is not active', name, conversion_id)
        return None
      existing = conversion.active_step(name)
      if existing is not None:
        return existing
      step = Step(name=name, started_at=self.clock(), info=dict(info or {}))
      conversion.steps.append(step)
      return step

  def _close_step(self, conversion: Conversion, step: Step, status: Status) -> None:
    step.ended_at = self.clock()
    step.duration_ms = _elapsed_ms(step.started_at, step.ended_at)
    step.snapshot = self._snapshot()
    step.status = status
    conversion.observe(step.snapshot)

  def complete_step(self, conversion_id: str, name: str, result: Optional[Dict[str, Any]] = None) -> Optional[Step]:
    with self._lock:
      conversion = self._conversions.get(conversion_id)
      step = conversion.active_step(name) if conversion else None
      if step is None:
        logger.warning('Cannot complete step %s: no active step on conversion %s', name, conversion_id)
        return None
      step.result.update(result or {})
      self._close_step(conversion, step, Status.COMPLETED)
      return step

  def fail_step(
    self,
    conversion_id: str,
    name: str,
    error: BaseException,
    context: Optional[Dict[str, Any]] = None
  ) -> Optional[Step]:
    context = dict(context or {})
    with self._lock:
      conversion = self._conversions.get(conversion_id)
      if conversion is None:
        logger.warning('Cannot fail step %s: conversion %s is not active', name, conversion_id)
        return None
      step = conversion.active_step(name)
      if step is None:
        step = Step(name=name, started_at=self.clock())
        conversion.steps.append(step)
      categorization = self.categorizer.categorize(error, context)
      stack = None
      if error.__traceback__ is not None:
        stack = ''.join(traceback.format_exception(type(error), error, error.__traceback__))
      record = ErrorRecord(
        error_id=generate_error_id(self.clock),
        category=categorization.category,
        severity=categorization.severity,
        recoverable=categorization.recoverable,
        message=str(error),
        error_name=type(error).__name__,
        stack=stack,
        step=name,
        conversion_id=conversion_id,
        artifact_id=conversion.info.artifact_id,
        context=json_safe(context),
        exception=error
      )
      step.error = record
      conversion.errors.append(record)
      self._close_step(conversion, step, Status.FAILED)
      return step

  def record_error(self, conversion_id: str, record: ErrorRecord) -> bool:
    with self._lock:
      conversion = self._conversions.get(conversion_id)
      if conversion is None:
        return False
      if any(existing.error_id == record.error_id for existing in conversion.errors):
        return False
      conversion.errors.append(record)
      return True

  def complete_conversion(
    self,
    conversion_id: str,
    success: bool = True,
    result: Optional[Dict[str, Any]] = None
  ) -> Optional[Conversion]:
    with self._lock:
      conversion = self._conversions.pop(conversion_id, None)
      if conversion is None:
        logger.warning('Cannot complete conversion %s: not active', conversion_id)
        return None
      status = Status.COMPLETED if success else Status.FAILED
      for step in conversion.steps:
        if step.is_active:
          self._close_step(conversion, step, Status.FAILED)
      conversion.end_snapshot = self._snapshot()
      conversion.observe(conversion.end_snapshot)
      conversion.ended_at = self.clock()
      conversion.duration_ms = _elapsed_ms(conversion.started_at, conversion.ended_at)
      conversion.status = status
      conversion.result = dict(result or {})
      session = self._sessions.get(conversion.session_id)
      if session is not None and conversion.peak_snapshot.rss > session.peak_snapshot.rss:
        session.peak_snapshot = conversion.peak_snapshot
      self._history.append(conversion)
      return conversion

  def complete_session(
    self,
    session_id: str,
    success: bool = True,
    result: Optional[Dict[str, Any]] = None
  ) -> Session:
    with self._lock:
      session = self._sessions.get(session_id)
      if session is None:
        raise SessionNotFoundError(f'Session {session_id} not found')
      active = [conversion_id for conversion_id, item in session.conversions.items() if item.status == Status.ACTIVE]
      if active:
        raise ConversionStateError(f'Session {session_id} still has active conversions: {", ".join(active)}')
      session.end_snapshot = self._snapshot()
      if session.end_snapshot.rss > session.peak_snapshot.rss:
        session.peak_snapshot = session.end_snapshot
      session.ended_at = self.clock()
      session.duration_ms = _elapsed_ms(session.started_at, session.ended_at)
      session.status = Status.COMPLETED if success else Status.FAILED
      session.result = dict(result or {})
      session.statistics = self.summarize(session)
      del self._sessions[session_id]
      self._session_history.append(session)
      return session

  def summarize(self, session: Session) -> Dict[str, Any]:
    conversions = list(session.conversions.values())
    finished = [item for item in conversions if item.duration_ms is not None]
    successful = sum(1 for item in conversions if item.status == Status.COMPLETED)
    failed = sum(1 for item in conversions if item.status == Status.FAILED)
    total_duration = sum(item.duration_ms for item in finished)
    return {
      'total_conversions': len(conversions),
      'successful_conversions': successful,
      'failed_conversions': failed,
      'success_rate': (successful / len(conversions)) * 100 if conversions else 0.0,
      'total_duration_ms': total_duration,
      'average_duration_ms': total_duration / len(finished) if finished else 0.0,
      'peak_memory_bytes': session.peak_snapshot.rss,
      'total_errors': sum(len(item.errors) for item in conversions),
      'total_warnings': sum(len(item.warnings) for item in conversions)
    }

  def sweep_stale(self, max_age_seconds: float) -> List[Conversion]:
    now = self.clock()
    with self._lock:
      stale = [
        conversion_id
        for conversion_id, conversion in self._conversions.items()
        if now - conversion.started_at > max_age_seconds
      ]
      swept = []
      for conversion_id in stale:
        conversion = self.complete_conversion(conversion_id, success=False, result={'reason': ABANDONED_REASON})
        if conversion is not None:
          swept.append(conversion)
    if swept:
      logger.warning('Marked %s stale conversions as abandoned', len(swept))
    return swept

  def get_session(self, session_id: str) -> Optional[Session]:
    with self._lock:
      session = self._sessions.get(session_id)
      if session is not None:
        return session
      return next((item for item in self._session_history if item.session_id == session_id), None)

  def get_conversion(self, conversion_id: str) -> Optional[Conversion]:
    with self._lock:
      conversion = self._conversions.get(conversion_id)
      if conversion is not None:
        return conversion
      return next((item for item in reversed(self._history) if item.conversion_id == conversion_id), None)

  def active_conversions(self) -> List[Conversion]:
    with self._lock:
      return list(self._conversions.values())

  def active_sessions(self) -> List[Session]:
    with self._lock:
      return list(self._sessions.values())

  def history(self, limit: Optional[int] = None) -> List[Conversion]:
    with self._lock:
      items = list(self._history)
    return items[-limit:] if limit else items

  def session_history(self, limit: Optional[int] = None) -> List[Session]:
    with self._lock:
      items = list(self._session_history)
    return items[-limit:] if limit else items

  def active_counts(self) -> Dict[str, int]:
    with self._lock:
      return {'conversions': len(self._conversions), 'sessions': len(self._sessions)}

  def clear_history(self) -> None:
    with self._lock:
      self._history.clear()
      self._session_history.clear()
