"""Shared fixtures: deterministic clocks, memory probes and isolated settings."""

import pytest

from convguard.config import Settings
from convguard.conversion.models import ResourceSnapshot
from convguard.logging.event_logger import LogSink


class FakeClock:
  def __init__(self, start: float = 1_700_000_000.0) -> None:
    self.now = start

  def __call__(self) -> float:
    return self.now

  def advance(self, seconds: float) -> None:
    self.now += seconds


class StubResources:
  """Stands in for ResourceMonitor with a settable resident memory figure."""

  def __init__(self, clock: FakeClock, rss: int = 100 * 1024 * 1024) -> None:
    self.clock = clock
    self.rss = rss

  def memory_snapshot(self) -> ResourceSnapshot:
    return ResourceSnapshot(rss=self.rss, vms=self.rss * 2, percent=1.0, timestamp=self.clock())

  def snapshot(self, minimal: bool = False):
    return {'process': self.memory_snapshot().to_dict()}


@pytest.fixture
def clock():
  return FakeClock()


@pytest.fixture
def resources(clock):
  return StubResources(clock)


@pytest.fixture
def settings(tmp_path):
  return Settings(
    data_dir=tmp_path / 'data',
    log_dir=tmp_path / 'logs',
    report_dir=tmp_path / 'reports',
    retry_base_delay=0.0,
    retry_max_delay=0.0,
    sample_interval_seconds=0.01,
    sample_capacity=5,
    conversion_time_threshold_ms=30000,
    memory_threshold_bytes=500 * 1024 * 1024
  )


@pytest.fixture
def log_sink(settings):
  sink = LogSink(settings.log_dir, settings.max_log_file_size, settings.max_log_files)
  yield sink
  sink.close()
