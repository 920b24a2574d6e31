from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


class ErrorCategory(Enum):
  FILE_NOT_FOUND = 'file-not-found'
  INVALID_SYNTAX = 'invalid-syntax'
  MISSING_DEPENDENCY = 'missing-dependency'
  PERMISSION_DENIED = 'permission-denied'
  WRITE_FAILED = 'write-failed'
  VALIDATION_FAILED = 'validation-failed'
  TRANSFORMATION_FAILED = 'transformation-failed'
  NETWORK_ERROR = 'network-error'
  UNKNOWN = 'unknown'


class Severity(Enum):
  LOW = 'low'
  MEDIUM = 'medium'
  HIGH = 'high'


class Status(Enum):
  ACTIVE = 'active'
  COMPLETED = 'completed'
  FAILED = 'failed'


CIRCULAR = '<circular>'


def isoformat(timestamp: Optional[float]) -> Optional[str]:
  if timestamp is None:
    return None
  return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def utc_now() -> str:
  return datetime.now(timezone.utc).isoformat()


def json_safe(value: Any, _parents: Optional[frozenset] = None) -> Any:
  """Returns a copy of ``value`` that ``json.dumps`` accepts.

  Containers that refer back to one of their ancestors render as ``'<circular>'``.
  """
  if value is None or isinstance(value, (bool, int, float, str)):
    return value
  if isinstance(value, Enum):
    return value.value
  if isinstance(value, Path):
    return str(value)
  if isinstance(value, BaseException):
    return {'name': type(value).__name__, 'message': str(value)}
  if isinstance(value, (dict, list, tuple, set, frozenset)):
    parents = _parents or frozenset()
    if id(value) in parents:
      return CIRCULAR
    parents = parents | {id(value)}
    if isinstance(value, dict):
      return {str(key): json_safe(item, parents) for key, item in value.items()}
    return [json_safe(item, parents) for item in value]
  if hasattr(value, 'to_dict'):
    return value.to_dict()
  return str(value)


@dataclass
class ResourceSnapshot:
  rss: int = 0
  vms: int = 0
  percent: float = 0.0
  timestamp: float = 0.0

  def to_dict(self) -> Dict[str, Any]:
    return {
      'rss': self.rss,
      'vms': self.vms,
      'percent': self.percent,
      'timestamp': isoformat(self.timestamp)
    }


@dataclass
class Categorization:
  category: ErrorCategory
  severity: Severity
  recoverable: bool


@dataclass
class ErrorRecord:
  error_id: str
  category: ErrorCategory
  severity: Severity
  recoverable: bool
  message: str
  error_name: str = 'Exception'
  stack: Optional[str] = None
  step: Optional[str] = None
  conversion_id: Optional[str] = None
  artifact_id: Optional[str] = None
  context: Dict[str, Any] = field(default_factory=dict)
  recovery_attempts: int = 0
  recovered: bool = False
  diagnostics: Optional[Dict[str, Any]] = None
  timestamp: str = field(default_factory=utc_now)
  exception: Optional[BaseException] = field(default=None, repr=False, compare=False)

  def to_dict(self) -> Dict[str, Any]:
    return {
      'id': self.error_id,
      'timestamp': self.timestamp,
      'category': self.category.value,
      'severity': self.severity.value,
      'recoverable': self.recoverable,
      'recovered': self.recovered,
      'recovery_attempts': self.recovery_attempts,
      'step': self.step,
      'conversion_id': self.conversion_id,
      'artifact_id': self.artifact_id,
      'error': {
        'name': self.error_name,
        'message': self.message,
        'stack': self.stack
      },
      'context': json_safe(self.context),
      'diagnostics': self.diagnostics
    }


@dataclass
class RecoveryResult:
  success: bool
  reason: str
  action: Optional[str] = None
  details: Dict[str, Any] = field(default_factory=dict)
  error: Optional[str] = None

  def to_dict(self) -> Dict[str, Any]:
    payload = {
      'success': self.success,
      'reason': self.reason,
      'action': self.action,
      'details': json_safe(self.details)
    }
    if self.error is not None:
      payload['error'] = self.error
    return payload


@dataclass
class HandlingResult:
  error_id: str
  category: ErrorCategory
  severity: Severity
  recoverable: bool
  recovered: bool
  recovery_attempts: int = 0
  recovery_details: Optional[RecoveryResult] = None
  diagnostics: Optional[Dict[str, Any]] = None

  def to_dict(self) -> Dict[str, Any]:
    return {
      'error_id': self.error_id,
      'category': self.category.value,
      'severity': self.severity.value,
      'recoverable': self.recoverable,
      'recovered': self.recovered,
      'recovery_attempts': self.recovery_attempts,
      'recovery_details': self.recovery_details.to_dict() if self.recovery_details else None,
      'diagnostics': self.diagnostics
    }


@dataclass
class PerformanceIssue:
  type: str
  message: str
  value: float
  threshold: float
  severity: str = 'warning'

  def to_dict(self) -> Dict[str, Any]:
    return {
      'type': self.type,
      'message': self.message,
      'severity': self.severity,
      'value': self.value,
      'threshold': self.threshold
    }


@dataclass
class Step:
  name: str
  started_at: float
  info: Dict[str, Any] = field(default_factory=dict)
  status: Status = Status.ACTIVE
  ended_at: Optional[float] = None
  duration_ms: Optional[float] = None
  result: Dict[str, Any] = field(default_factory=dict)
  snapshot: Optional[ResourceSnapshot] = None
  error: Optional[ErrorRecord] = None

  @property
  def is_active(self) -> bool:
    return self.status == Status.ACTIVE

  def to_dict(self) -> Dict[str, Any]:
    return {
      'name': self.name,
      'status': self.status.value,
      'started_at': isoformat(self.started_at),
      'ended_at': isoformat(self.ended_at),
      'duration_ms': self.duration_ms,
      'info': json_safe(self.info),
      'result': json_safe(self.result),
      'snapshot': self.snapshot.to_dict() if self.snapshot else None,
      'error': self.error.to_dict() if self.error else None
    }


@dataclass
class ConversionInfo:
  artifact_id: str = 'unknown'
  type: str = 'artifact'
  source: str = 'unknown'
  grouping: Optional[str] = None
  input_path: Optional[str] = None
  output_path: Optional[str] = None
  extra: Dict[str, Any] = field(default_factory=dict)

  def to_dict(self) -> Dict[str, Any]:
    return {
      'artifact_id': self.artifact_id,
      'type': self.type,
      'source': self.source,
      'grouping': self.grouping,
      'input_path': self.input_path,
      'output_path': self.output_path,
      **json_safe(self.extra)
    }


@dataclass
class Conversion:
  conversion_id: str
  session_id: str
  info: ConversionInfo
  started_at: float
  status: Status = Status.ACTIVE
  steps: List[Step] = field(default_factory=list)
  errors: List[ErrorRecord] = field(default_factory=list)
  warnings: List[PerformanceIssue] = field(default_factory=list)
  start_snapshot: ResourceSnapshot = field(default_factory=ResourceSnapshot)
  peak_snapshot: ResourceSnapshot = field(default_factory=ResourceSnapshot)
  end_snapshot: Optional[ResourceSnapshot] = None
  ended_at: Optional[float] = None
  duration_ms: Optional[float] = None
  result: Dict[str, Any] = field(default_factory=dict)

  @property
  def peak_memory(self) -> int:
    return self.peak_snapshot.rss

  def active_step(self, name: str) -> Optional[Step]:
    for step in self.steps:
      if step.name == name and step.is_active:
        return step
    return None

  def observe(self, snapshot: ResourceSnapshot) -> None:
    if snapshot.rss > self.peak_snapshot.rss:
      self.peak_snapshot = snapshot

  def to_dict(self) -> Dict[str, Any]:
    return {
      'id': self.conversion_id,
      'session_id': self.session_id,
      'status': self.status.value,
      'info': self.info.to_dict(),
      'started_at': isoformat(self.started_at),
      'ended_at': isoformat(self.ended_at),
      'duration_ms': self.duration_ms,
      'steps': [step.to_dict() for step in self.steps],
      'errors': [record.to_dict() for record in self.errors],
      'warnings': [issue.to_dict() for issue in self.warnings],
      'performance': {
        'start': self.start_snapshot.to_dict(),
        'peak': self.peak_snapshot.to_dict(),
        'end': self.end_snapshot.to_dict() if self.end_snapshot else None
      },
      'result': json_safe(self.result)
    }


@dataclass
class SessionInfo:
  type: str = 'unknown'
  source: str = 'unknown'
  expected_items: int = 0
  extra: Dict[str, Any] = field(default_factory=dict)

  def to_dict(self) -> Dict[str, Any]:
    return {
      'type': self.type,
      'source': self.source,
      'expected_items': self.expected_items,
      **json_safe(self.extra)
    }


@dataclass
class Session:
  session_id: str
  info: SessionInfo
  started_at: float
  status: Status = Status.ACTIVE
  conversions: Dict[str, Conversion] = field(default_factory=dict)
  start_snapshot: ResourceSnapshot = field(default_factory=ResourceSnapshot)
  peak_snapshot: ResourceSnapshot = field(default_factory=ResourceSnapshot)
  end_snapshot: Optional[ResourceSnapshot] = None
  errors: List[str] = field(default_factory=list)
  warnings: List[str] = field(default_factory=list)
  ended_at: Optional[float] = None
  duration_ms: Optional[float] = None
  result: Dict[str, Any] = field(default_factory=dict)
  statistics: Optional[Dict[str, Any]] = None

  def to_dict(self, include_conversions: bool = True) -> Dict[str, Any]:
    payload = {
      'id': self.session_id,
      'status': self.status.value,
      'info': self.info.to_dict(),
      'started_at': isoformat(self.started_at),
      'ended_at': isoformat(self.ended_at),
      'duration_ms': self.duration_ms,
      'performance': {
        'start': self.start_snapshot.to_dict(),
        'peak': self.peak_snapshot.to_dict(),
        'end': self.end_snapshot.to_dict() if self.end_snapshot else None
      },
      'errors': list(self.errors),
      'warnings': list(self.warnings),
      'result': json_safe(self.result),
      'statistics': self.statistics
    }
    if include_conversions:
      payload['conversions'] = [conversion.to_dict() for conversion in self.conversions.values()]
    else:
      payload['conversion_ids'] = list(self.conversions)
    return payload


@dataclass
class StatisticsSnapshot:
  total_conversions: int = 0
  successful_conversions: int = 0
  failed_conversions: int = 0
  total_duration_ms: float = 0.0
  average_duration_ms: float = 0.0
  peak_memory_bytes: int = 0
  conversions_by_type: Dict[str, int] = field(default_factory=dict)
  conversions_by_source: Dict[str, int] = field(default_factory=dict)
  errors_by_category: Dict[str, int] = field(default_factory=dict)
  performance_issues: int = 0

  def to_dict(self) -> Dict[str, Any]:
    return {
      'total_conversions': self.total_conversions,
      'successful_conversions': self.successful_conversions,
      'failed_conversions': self.failed_conversions,
      'total_duration_ms': self.total_duration_ms,
      'average_duration_ms': self.average_duration_ms,
      'peak_memory_bytes': self.peak_memory_bytes,
      'conversions_by_type': dict(self.conversions_by_type),
      'conversions_by_source': dict(self.conversions_by_source),
      'errors_by_category': dict(self.errors_by_category),
      'performance_issues': self.performance_issues
    }
