from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

from convguard.conversion.models import json_safe

logger = logging.getLogger(__name__)

CONVERSION = 'conversion'
PERFORMANCE = 'performance'
ERRORS = 'errors'
DIAGNOSTICS = 'diagnostics'
STREAMS = (CONVERSION, PERFORMANCE, ERRORS, DIAGNOSTICS)

_RESERVED_FIELDS = ('timestamp', 'level', 'message', 'stream')


def configure_logging(level: str = 'info') -> None:
  logging.basicConfig(
    level=getattr(logging, level.upper(), logging.INFO),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s'
  )


class JsonLineFormatter(logging.Formatter):
  """Renders a record as one JSON object per line."""

  def __init__(self, stream_name: str) -> None:
    super().__init__()
    self.stream_name = stream_name

  def format(self, record: logging.LogRecord) -> str:
    entry: Dict[str, Any] = {
      'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
      'level': record.levelname.lower(),
      'stream': self.stream_name,
      'message': record.getMessage()
    }
    payload = getattr(record, 'payload', None) or {}
    for key, value in json_safe(payload).items():
      if key not in _RESERVED_FIELDS:
        entry[key] = value
    return json.dumps(entry, default=str)


class StreamFileHandler(RotatingFileHandler):
  """Size-rotating handler that reports its first write failure and stays quiet after."""

  def __init__(self, stream_name: str, filename: Path, max_bytes: int, backup_count: int) -> None:
    super().__init__(
      filename,
      maxBytes=max_bytes,
      backupCount=backup_count,
      encoding='utf-8',
      delay=True
    )
    self.stream_name = stream_name
    self.write_failed = False
    self.setFormatter(JsonLineFormatter(stream_name))

  def handleError(self, record: logging.LogRecord) -> None:
    if self.write_failed:
      return
    self.write_failed = True
    logger.warning('Failed to write %s log stream to %s; further failures suppressed', self.stream_name, self.baseFilename)


class LogSink:
  """Four independent NDJSON log streams living under one directory."""

  def __init__(self, log_dir: Path, max_file_size: int = 10 * 1024 * 1024, max_files: int = 5) -> None:
    self.log_dir = Path(log_dir)
    self.max_file_size = max_file_size
    # RotatingFileHandler never rolls over without at least one backup.
    self.max_files = max(1, max_files)
    self.enabled = True
    self._loggers: Dict[str, logging.Logger] = {}
    self._handlers: Dict[str, StreamFileHandler] = {}
    try:
      self.log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
      self.enabled = False
      logger.warning('Cannot create log directory %s (%s); file logging disabled', self.log_dir, exc)
      return
    for stream in STREAMS:
      handler = StreamFileHandler(stream, self.path_for(stream), max_file_size, self.max_files)
      # Standalone loggers keep sinks with different directories apart.
      stream_logger = logging.Logger(f'convguard.streams.{stream}', logging.DEBUG)
      stream_logger.propagate = False
      stream_logger.addHandler(handler)
      self._loggers[stream] = stream_logger
      self._handlers[stream] = handler

  def path_for(self, stream: str) -> Path:
    return self.log_dir / f'{stream}.log'

  def log_event(self, stream: str, message: str, payload: Optional[Dict[str, Any]] = None, level: int = logging.INFO) -> None:
    if stream not in STREAMS:
      raise ValueError(f'Unknown log stream: {stream}')
    if not self.enabled:
      return
    self._loggers[stream].log(level, message, extra={'payload': payload or {}})

  def log_error(self, message: str, payload: Optional[Dict[str, Any]] = None) -> None:
    self.log_event(ERRORS, message, payload, level=logging.ERROR)

  def write_failed(self, stream: str) -> bool:
    handler = self._handlers.get(stream)
    return bool(handler and handler.write_failed)

  def recent(self, stream: str, limit: int = 200) -> List[Dict[str, Any]]:
    """Returns up to ``limit`` newest records of ``stream``, oldest first."""
    if stream not in STREAMS:
      raise ValueError(f'Unknown log stream: {stream}')
    if not self.enabled or limit <= 0:
      return []
    base = self.path_for(stream)
    files = [base] + [base.with_name(f'{base.name}.{index}') for index in range(1, self.max_files + 1)]
    handler = self._handlers[stream]
    lines: List[str] = []
    handler.acquire()
    try:
      for path in files:
        if len(lines) >= limit:
          break
        if not path.exists():
          continue
        try:
          lines = path.read_text(encoding='utf-8').splitlines() + lines
        except OSError as exc:
          logger.warning('Unable to read %s: %s', path, exc)
    finally:
      handler.release()

    entries = []
    for line in lines[-limit:]:
      if not line.strip():
        continue
      try:
        entries.append(json.loads(line))
      except json.JSONDecodeError:
        logger.warning('Malformed log line in %s stream: %s', stream, line)
    return entries

  def close(self) -> None:
    for stream, handler in self._handlers.items():
      self._loggers[stream].removeHandler(handler)
      handler.close()
    self._handlers.clear()
    self._loggers.clear()
    self.enabled = False
