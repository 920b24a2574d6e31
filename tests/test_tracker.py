"""Tests for session and conversion lifecycle tracking."""

import pytest

from convguard.conversion.models import ErrorCategory, Status
from convguard.conversion.statistics import StatisticsAggregator
from convguard.conversion.tracker import (
  ConversionStateError,
  ConversionTracker,
  SessionNotFoundError
)


@pytest.fixture
def tracker(resources, clock):
  return ConversionTracker(resource_monitor=resources, clock=clock)


def test_start_conversion_requires_session(tracker):
  with pytest.raises(SessionNotFoundError):
    tracker.start_conversion('missing', 'c1')


def test_step_lifecycle(tracker, clock):
  tracker.start_session('s1')
  tracker.start_conversion('s1', 'c1', artifact_id='writer', artifact_type='agent', source='core')

  step = tracker.log_step('c1', 'parse', {'bytes': 10})
  assert tracker.log_step('c1', 'parse') is step

  clock.advance(0.25)
  completed = tracker.complete_step('c1', 'parse', {'ok': True})
  assert completed.status == Status.COMPLETED
  assert completed.duration_ms == 250.0
  assert completed.result == {'ok': True}
  assert tracker.complete_step('c1', 'parse') is None


def test_log_step_unknown_conversion_returns_none(tracker):
  assert tracker.log_step('ghost', 'parse') is None


def test_fail_step_categorizes_error(tracker):
  tracker.start_session('s1')
  tracker.start_conversion('s1', 'c1', artifact_id='writer')
  tracker.log_step('c1', 'write')

  step = tracker.fail_step('c1', 'write', OSError('EACCES: permission denied'))

  assert step.status == Status.FAILED
  assert step.error.category == ErrorCategory.PERMISSION_DENIED
  conversion = tracker.get_conversion('c1')
  assert conversion.errors[0].artifact_id == 'writer'


def test_complete_conversion_moves_to_history(tracker, resources, clock):
  tracker.start_session('s1')
  tracker.start_conversion('s1', 'c1')
  resources.rss = 300 * 1024 * 1024
  clock.advance(1.5)

  conversion = tracker.complete_conversion('c1', success=True, result={'files': 1})

  assert conversion.status == Status.COMPLETED
  assert conversion.duration_ms == 1500.0
  assert conversion.peak_memory == 300 * 1024 * 1024
  assert tracker.active_conversions() == []
  assert tracker.history() == [conversion]
  assert tracker.get_session('s1').peak_snapshot.rss == 300 * 1024 * 1024


def test_complete_session_rejects_active_children(tracker):
  tracker.start_session('s1')
  tracker.start_conversion('s1', 'c1')

  with pytest.raises(ConversionStateError):
    tracker.complete_session('s1')

  tracker.complete_conversion('c1', success=False)
  session = tracker.complete_session('s1')
  assert session.status == Status.COMPLETED
  assert session.statistics['failed_conversions'] == 1
  assert tracker.active_sessions() == []
  assert tracker.session_history() == [session]


def test_complete_unknown_session_raises(tracker):
  with pytest.raises(SessionNotFoundError):
    tracker.complete_session('ghost')


def test_active_counts(tracker):
  tracker.start_session('s1')
  tracker.start_conversion('s1', 'c1')
  tracker.start_conversion('s1', 'c2')
  assert tracker.active_counts() == {'conversions': 2, 'sessions': 1}


def test_sweep_stale_marks_abandoned(tracker, clock):
  tracker.start_session('s1')
  tracker.start_conversion('s1', 'old')
  clock.advance(120)
  tracker.start_conversion('s1', 'fresh')

  swept = tracker.sweep_stale(60)

  assert [item.conversion_id for item in swept] == ['old']
  assert swept[0].status == Status.FAILED
  assert swept[0].result == {'reason': 'abandoned'}
  assert [item.conversion_id for item in tracker.active_conversions()] == ['fresh']


def test_statistics_average_duration(tracker, clock):
  stats = StatisticsAggregator()
  tracker.start_session('s1')
  for index, seconds in enumerate([0.1, 0.2, 0.3]):
    tracker.start_conversion('s1', f'c{index}', artifact_type='agent', source='core')
    clock.advance(seconds)
    stats.record_conversion(tracker.complete_conversion(f'c{index}', success=index != 2))

  snapshot = stats.snapshot()
  assert snapshot.total_conversions == 3
  assert snapshot.successful_conversions == 2
  assert snapshot.failed_conversions == 1
  assert snapshot.average_duration_ms == pytest.approx(200.0)
  assert snapshot.conversions_by_type == {'agent': 3}
  assert snapshot.conversions_by_source == {'core': 3}

  stats.clear()
  assert stats.snapshot().total_conversions == 0


def test_statistics_count_error_categories(tracker):
  stats = StatisticsAggregator()
  tracker.start_session('s1')
  tracker.start_conversion('s1', 'c1')
  tracker.fail_step('c1', 'load', FileNotFoundError('no such file'))
  stats.record_conversion(tracker.complete_conversion('c1', success=False))

  assert stats.snapshot().errors_by_category == {'file-not-found': 1}
