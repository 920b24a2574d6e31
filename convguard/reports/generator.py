from __future__ import annotations

import json
import logging
from pathlib import Path
from statistics import median
from typing import Any, Dict, Iterable, List, Optional, Union

from convguard.conversion.models import Conversion, Session, StatisticsSnapshot, Status, utc_now

logger = logging.getLogger(__name__)

ARTIFACT_FAILURE_THRESHOLD = 3
GROUPING_FAILURE_THRESHOLD = 2
CATEGORY_FAILURE_THRESHOLD = 2
MESSAGE_REPEAT_THRESHOLD = 2
PERFORMANCE_HISTORY_LIMIT = 100
CATEGORY_CONCENTRATION_THRESHOLD = 5

StatisticsLike = Union[StatisticsSnapshot, Dict[str, Any]]


def _as_dict(statistics: Optional[StatisticsLike]) -> Dict[str, Any]:
  if statistics is None:
    return StatisticsSnapshot().to_dict()
  if isinstance(statistics, StatisticsSnapshot):
    return statistics.to_dict()
  return dict(statistics)


def _increment(counter: Dict[str, int], key: Optional[str]) -> None:
  label = key or 'unknown'
  counter[label] = counter.get(label, 0) + 1


def analyze_errors(history: Iterable[Conversion]) -> Dict[str, Any]:
  by_artifact: Dict[str, int] = {}
  by_source: Dict[str, int] = {}
  by_grouping: Dict[str, int] = {}
  by_step: Dict[str, int] = {}
  by_category: Dict[str, int] = {}
  by_message: Dict[str, int] = {}
  total = 0
  for conversion in history:
    for record in conversion.errors:
      total += 1
      _increment(by_artifact, record.artifact_id or conversion.info.artifact_id)
      _increment(by_source, conversion.info.source)
      if conversion.info.grouping:
        _increment(by_grouping, conversion.info.grouping)
      _increment(by_step, record.step)
      _increment(by_category, record.category.value)
      _increment(by_message, record.message)

  recommendations: List[Dict[str, Any]] = []
  for artifact, count in by_artifact.items():
    if count > ARTIFACT_FAILURE_THRESHOLD:
      recommendations.append({
        'type': 'artifact',
        'severity': 'high',
        'subject': artifact,
        'count': count,
        'message': f'Artifact {artifact} failed {count} times; review its source definition'
      })
  for grouping, count in by_grouping.items():
    if count > GROUPING_FAILURE_THRESHOLD:
      recommendations.append({
        'type': 'grouping',
        'severity': 'medium',
        'subject': grouping,
        'count': count,
        'message': f'Grouping {grouping} produced {count} errors; check its shared configuration'
      })
  for category, count in by_category.items():
    if count > CATEGORY_FAILURE_THRESHOLD:
      recommendations.append({
        'type': 'category',
        'severity': 'medium',
        'subject': category,
        'count': count,
        'message': f'{count} {category} errors; address this failure class'
      })
  for message, count in by_message.items():
    if count > MESSAGE_REPEAT_THRESHOLD:
      recommendations.append({
        'type': 'message',
        'severity': 'high',
        'subject': message,
        'count': count,
        'message': f'Same error repeated {count} times: {message}'
      })

  return {
    'total_errors': total,
    'errors_by_artifact': by_artifact,
    'errors_by_source': by_source,
    'errors_by_grouping': by_grouping,
    'errors_by_step': by_step,
    'errors_by_category': by_category,
    'errors_by_message': by_message,
    'recommendations': recommendations
  }


def analyze_patterns(history: Iterable[Conversion]) -> Dict[str, Any]:
  by_type: Dict[str, Dict[str, float]] = {}
  by_source: Dict[str, Dict[str, float]] = {}
  for conversion in history:
    for bucket, key in ((by_type, conversion.info.type), (by_source, conversion.info.source)):
      entry = bucket.setdefault(key, {'count': 0, 'successful': 0, 'total_duration_ms': 0.0, 'total_peak_memory': 0})
      entry['count'] += 1
      entry['total_duration_ms'] += conversion.duration_ms or 0.0
      entry['total_peak_memory'] += conversion.peak_memory
      if conversion.status == Status.COMPLETED:
        entry['successful'] += 1

  def summarize(bucket: Dict[str, Dict[str, float]], include_memory: bool) -> Dict[str, Dict[str, float]]:
    summary = {}
    for key, entry in bucket.items():
      count = entry['count']
      summary[key] = {
        'count': count,
        'average_duration_ms': entry['total_duration_ms'] / count,
        'success_rate': (entry['successful'] / count) * 100
      }
      if include_memory:
        summary[key]['average_peak_memory_bytes'] = entry['total_peak_memory'] / count
    return summary

  return {
    'by_type': summarize(by_type, include_memory=True),
    'by_source': summarize(by_source, include_memory=False)
  }


def _distribution(values: List[float]) -> Dict[str, float]:
  return {
    'average': sum(values) / len(values),
    'min': min(values),
    'max': max(values),
    'median': median(values)
  }


def analyze_performance(
  history: Iterable[Conversion],
  time_threshold_ms: float = 30000,
  memory_threshold_bytes: int = 500 * 1024 * 1024,
  limit: int = PERFORMANCE_HISTORY_LIMIT
) -> Dict[str, Any]:
  """Duration and peak-memory distributions over the newest ``limit`` conversions."""
  recent = list(history)[-limit:]
  analysis: Dict[str, Any] = {
    'sample_size': len(recent),
    'conversion_times': {},
    'memory_usage': {},
    'issues': []
  }
  if not recent:
    analysis['no_data'] = True
    return analysis

  durations = [conversion.duration_ms for conversion in recent if conversion.duration_ms]
  if durations:
    analysis['conversion_times'] = _distribution(durations)
    slow = sum(1 for duration in durations if duration > time_threshold_ms)
    if slow:
      analysis['issues'].append({
        'type': 'slow_conversions',
        'severity': 'medium',
        'count': slow,
        'message': f'{slow} conversions took longer than {time_threshold_ms / 1000:.0f} seconds',
        'recommendation': 'Investigate slow conversion patterns and optimize processing'
      })

  peaks = [conversion.peak_memory for conversion in recent if conversion.peak_memory]
  if peaks:
    analysis['memory_usage'] = _distribution(peaks)
    heavy = sum(1 for peak in peaks if peak > memory_threshold_bytes)
    if heavy:
      analysis['issues'].append({
        'type': 'high_memory_usage',
        'severity': 'medium',
        'count': heavy,
        'message': f'{heavy} conversions used more than {memory_threshold_bytes / (1024 ** 2):.0f}MB memory',
        'recommendation': 'Review memory usage patterns and optimize memory-intensive operations'
      })
  return analysis


def assess_health(statistics: Optional[StatisticsLike], error_stats: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
  stats = _as_dict(statistics)
  issues: List[Dict[str, Any]] = []
  warnings: List[Dict[str, Any]] = []

  total = stats.get('total_conversions', 0)
  success_rate = (stats.get('successful_conversions', 0) / total) * 100 if total else None
  if success_rate is not None:
    if success_rate < 50:
      issues.append({
        'type': 'low_success_rate',
        'severity': 'high',
        'message': f'Low conversion success rate: {success_rate:.1f}%',
        'recommendation': 'Review error logs and fix common conversion issues'
      })
    elif success_rate < 80:
      warnings.append({
        'type': 'moderate_success_rate',
        'severity': 'medium',
        'message': f'Moderate conversion success rate: {success_rate:.1f}%',
        'recommendation': 'Investigate frequent conversion failures'
      })

  recovery_rate = None
  if error_stats and error_stats.get('total_errors', 0) > 0:
    recovery_rate = error_stats.get('recovery_rate', 0.0) * 100
    if recovery_rate < 30:
      issues.append({
        'type': 'low_recovery_rate',
        'severity': 'high',
        'message': f'Low error recovery rate: {recovery_rate:.1f}%',
        'recommendation': 'Review recovery strategies for the dominant error categories'
      })
    for category, count in error_stats.get('errors_by_category', {}).items():
      if count > CATEGORY_CONCENTRATION_THRESHOLD:
        warnings.append({
          'type': 'error_concentration',
          'severity': 'medium',
          'message': f'High number of {category} errors: {count}',
          'recommendation': f'Focus on resolving {category} error patterns'
        })

  performance_issues = stats.get('performance_issues', 0)
  if performance_issues > 0:
    warnings.append({
      'type': 'performance_issues',
      'severity': 'medium',
      'message': f'{performance_issues} performance issues detected',
      'recommendation': 'Review performance samples and optimize slow conversions'
    })

  if issues:
    status = 'unhealthy'
  elif warnings:
    status = 'warning'
  else:
    status = 'healthy'
  return {
    'status': status,
    'success_rate': success_rate,
    'recovery_rate': recovery_rate,
    'issues': issues,
    'warnings': warnings
  }


def build_diagnostic_report(
  statistics: Optional[StatisticsLike],
  active_sessions: Iterable[Session] = (),
  active_conversions: Iterable[Conversion] = (),
  history: Iterable[Conversion] = (),
  system: Optional[Dict[str, Any]] = None,
  samples: Optional[List[Dict[str, Any]]] = None,
  include_detailed_errors: bool = True,
  include_patterns: bool = True,
  include_health: bool = True,
  include_performance: bool = True,
  error_stats: Optional[Dict[str, Any]] = None,
  history_limit: int = 50,
  sample_limit: int = 20,
  time_threshold_ms: float = 30000,
  memory_threshold_bytes: int = 500 * 1024 * 1024
) -> Dict[str, Any]:
  """Assembles the point-in-time diagnostic report.

  ``history`` is expected oldest first; only the newest ``history_limit``
  conversions are embedded, while error and pattern analysis use all of it
  and performance analysis uses the newest hundred.
  """
  history = list(history)
  report: Dict[str, Any] = {
    'generated_at': utc_now(),
    'statistics': _as_dict(statistics),
    'active_sessions': [session.to_dict(include_conversions=False) for session in active_sessions],
    'active_conversions': [conversion.to_dict() for conversion in active_conversions],
    'recent_conversions': [conversion.to_dict() for conversion in history[-history_limit:]],
    'system': system or {}
  }
  if samples:
    report['performance_samples'] = samples[-sample_limit:]
  if include_detailed_errors:
    report['error_analysis'] = analyze_errors(history)
  if include_patterns:
    report['patterns'] = analyze_patterns(history)
  if include_performance:
    report['performance'] = analyze_performance(
      history,
      time_threshold_ms=time_threshold_ms,
      memory_threshold_bytes=memory_threshold_bytes
    )
  if include_health:
    report['health'] = assess_health(statistics, error_stats)
  if error_stats is not None:
    report['error_statistics'] = error_stats
  return report


def build_session_report(session: Session) -> Dict[str, Any]:
  conversions = list(session.conversions.values())
  return {
    'generated_at': utc_now(),
    'session': session.to_dict(),
    'summary': session.statistics or {},
    'error_analysis': analyze_errors(conversions)
  }


def write_report(path: Path, report: Dict[str, Any]) -> Path:
  path = Path(path)
  path.parent.mkdir(parents=True, exist_ok=True)
  path.write_text(json.dumps(report, indent=2, default=str), encoding='utf-8')
  logger.info('Wrote report to %s', path)
  return path
