from __future__ import annotations

import threading
from dataclasses import replace

from convguard.conversion.models import Conversion, StatisticsSnapshot, Status


class StatisticsAggregator:
  """Running counters over every completed conversion."""

  def __init__(self) -> None:
    self._stats = StatisticsSnapshot()
    self._lock = threading.RLock()

  def record_conversion(self, conversion: Conversion) -> None:
    with self._lock:
      stats = self._stats
      stats.total_conversions += 1
      if conversion.status == Status.COMPLETED:
        stats.successful_conversions += 1
      else:
        stats.failed_conversions += 1
      stats.total_duration_ms += conversion.duration_ms or 0.0
      stats.average_duration_ms = stats.total_duration_ms / stats.total_conversions
      stats.peak_memory_bytes = max(stats.peak_memory_bytes, conversion.peak_memory)

      artifact_type = conversion.info.type
      stats.conversions_by_type[artifact_type] = stats.conversions_by_type.get(artifact_type, 0) + 1
      source = conversion.info.source
      stats.conversions_by_source[source] = stats.conversions_by_source.get(source, 0) + 1
      for record in conversion.errors:
        category = record.category.value
        stats.errors_by_category[category] = stats.errors_by_category.get(category, 0) + 1

  def record_performance_issues(self, count: int) -> None:
    if count <= 0:
      return
    with self._lock:
      self._stats.performance_issues += count

  def snapshot(self) -> StatisticsSnapshot:
    with self._lock:
      stats = self._stats
      return replace(
        stats,
        conversions_by_type=dict(stats.conversions_by_type),
        conversions_by_source=dict(stats.conversions_by_source),
        errors_by_category=dict(stats.errors_by_category)
      )

  def clear(self) -> None:
    with self._lock:
      self._stats = StatisticsSnapshot()
