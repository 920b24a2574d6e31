from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import psutil

from convguard.conversion.models import ResourceSnapshot


@dataclass
class Thresholds:
  cpu_percent: float = 80.0
  memory_percent: float = 90.0
  disk_free_gb: float = 5.0


class ResourceMonitor:
  def __init__(
    self,
    thresholds: Optional[Thresholds] = None,
    clock: Callable[[], float] = time.time,
    pid: Optional[int] = None
  ) -> None:
    self.thresholds = thresholds or Thresholds()
    self.clock = clock
    self.process = psutil.Process(pid or os.getpid())

  def memory_snapshot(self) -> ResourceSnapshot:
    info = self.process.memory_info()
    return ResourceSnapshot(
      rss=info.rss,
      vms=info.vms,
      percent=round(self.process.memory_percent(), 2),
      timestamp=self.clock()
    )

  def snapshot(self, minimal: bool = False) -> Dict[str, Any]:
    cpu_percent = psutil.cpu_percent(interval=None)
    virtual_mem = psutil.virtual_memory()
    disk_usage = psutil.disk_usage('.')
    process = self.memory_snapshot()

    payload = {
      'cpu': {'percent': round(cpu_percent, 1)},
      'memory': {
        'percent': round(virtual_mem.percent, 1),
        'used_gb': round(virtual_mem.used / (1024**3), 2),
        'total_gb': round(virtual_mem.total / (1024**3), 2)
      },
      'disk': {
        'percent': round(disk_usage.percent, 1),
        'free_gb': round(disk_usage.free / (1024**3), 2),
        'total_gb': round(disk_usage.total / (1024**3), 2)
      },
      'process': process.to_dict(),
      'flags': {
        'cpu_high': cpu_percent >= self.thresholds.cpu_percent,
        'memory_high': virtual_mem.percent >= self.thresholds.memory_percent,
        'disk_low': (disk_usage.free / (1024**3)) <= self.thresholds.disk_free_gb
      }
    }
    return payload if not minimal else {'memory': payload['memory'], 'process': payload['process'], 'flags': payload['flags']}
