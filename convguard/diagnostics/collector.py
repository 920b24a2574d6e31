from __future__ import annotations

import logging
import os
import platform
import sys
import time
import traceback
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from convguard.conversion.models import isoformat, json_safe
from convguard.logging.event_logger import DIAGNOSTICS, LogSink
from convguard.resources.monitor import ResourceMonitor

logger = logging.getLogger(__name__)

PATH_KEYS = ('path', 'file_path', 'output_path', 'input_path')


def probe_path(raw_path: str) -> Dict[str, Any]:
  path = Path(raw_path)
  info: Dict[str, Any] = {
    'path': str(path),
    'exists': path.exists(),
    'parent': str(path.parent),
    'parent_exists': path.parent.exists()
  }
  if info['exists']:
    stat = path.stat()
    info.update({
      'is_file': path.is_file(),
      'is_directory': path.is_dir(),
      'size': stat.st_size,
      'modified': isoformat(stat.st_mtime),
      'readable': os.access(path, os.R_OK),
      'writable': os.access(path, os.W_OK)
    })
  elif info['parent_exists']:
    info['parent_writable'] = os.access(path.parent, os.W_OK)
  return info


class DiagnosticsCollector:
  """Gathers a best-effort snapshot of the environment around a failure."""

  def __init__(
    self,
    resource_monitor: Optional[ResourceMonitor] = None,
    log_sink: Optional[LogSink] = None,
    clock: Callable[[], float] = time.time
  ) -> None:
    self.resource_monitor = resource_monitor
    self.log_sink = log_sink
    self.clock = clock

  def collect(self, error: BaseException, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    context = context or {}
    diagnostics: Dict[str, Any] = {
      'timestamp': isoformat(self.clock()),
      'system': self._guard(self._system_info),
      'context': self._guard(lambda: json_safe(context)),
      'error': self._guard(lambda: self._error_info(error))
    }

    files = {}
    for key in PATH_KEYS:
      value = context.get(key)
      if value:
        files[key] = self._guard(lambda value=value: probe_path(str(value)))
    if files:
      diagnostics['files'] = files

    if context.get('artifact_id') or context.get('artifact'):
      diagnostics['artifact'] = self._guard(lambda: {
        'id': context.get('artifact_id') or context.get('artifact'),
        'type': context.get('artifact_type'),
        'grouping': context.get('grouping')
      })
    if context.get('operation'):
      diagnostics['operation'] = {
        'name': context.get('operation'),
        'phase': context.get('phase'),
        'step': context.get('step')
      }

    if self.log_sink is not None:
      try:
        self.log_sink.log_event(DIAGNOSTICS, 'Diagnostics collected', diagnostics)
      except Exception:
        logger.warning('Unable to append diagnostics snapshot', exc_info=True)
    return diagnostics

  def _guard(self, probe: Callable[[], Any]) -> Any:
    try:
      return probe()
    except Exception as exc:
      return {'error': str(exc)}

  def _system_info(self) -> Dict[str, Any]:
    info: Dict[str, Any] = {
      'platform': platform.platform(),
      'python_version': sys.version.split()[0],
      'pid': os.getpid(),
      'cwd': os.getcwd()
    }
    if self.resource_monitor is not None:
      info['memory'] = self._guard(lambda: self.resource_monitor.memory_snapshot().to_dict())
    return info

  def _error_info(self, error: BaseException) -> Dict[str, Any]:
    stack = None
    if error.__traceback__ is not None:
      stack = ''.join(traceback.format_exception(type(error), error, error.__traceback__))
    return {
      'name': type(error).__name__,
      'message': str(error),
      'stack': stack
    }
