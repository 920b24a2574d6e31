from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List


def _env_list(name: str, default: str) -> List[str]:
  raw = os.getenv(name, default)
  return [item.strip() for item in raw.split(os.pathsep) if item.strip()]


@dataclass
class Settings:
  """Engine configuration derived from environment variables."""

  backend_host: str = os.getenv('CONVGUARD_HOST', '127.0.0.1')
  backend_port: int = int(os.getenv('CONVGUARD_PORT', '6120'))
  log_level: str = os.getenv('CONVGUARD_LOG_LEVEL', 'info')
  data_dir: Path = Path(os.getenv('CONVGUARD_DATA_DIR', './.convguard')).resolve()
  log_dir: Path = Path(os.getenv('CONVGUARD_LOG_DIR', './.convguard/logs')).resolve()
  report_dir: Path = Path(os.getenv('CONVGUARD_REPORT_DIR', './.convguard/reports')).resolve()
  max_log_file_size: int = int(os.getenv('CONVGUARD_MAX_LOG_FILE_SIZE', str(10 * 1024 * 1024)))
  max_log_files: int = int(os.getenv('CONVGUARD_MAX_LOG_FILES', '5'))
  max_retry_attempts: int = int(os.getenv('CONVGUARD_MAX_RETRY_ATTEMPTS', '3'))
  retry_base_delay: float = float(os.getenv('CONVGUARD_RETRY_BASE_DELAY', '1.0'))
  retry_multiplier: float = float(os.getenv('CONVGUARD_RETRY_MULTIPLIER', '2.0'))
  retry_max_delay: float = float(os.getenv('CONVGUARD_RETRY_MAX_DELAY', '30.0'))
  enable_recovery: bool = os.getenv('CONVGUARD_ENABLE_RECOVERY', 'true').lower() == 'true'
  enable_diagnostics: bool = os.getenv('CONVGUARD_ENABLE_DIAGNOSTICS', 'true').lower() == 'true'
  diagnostic_mode: bool = os.getenv('CONVGUARD_DIAGNOSTIC_MODE', 'false').lower() == 'true'
  enable_detailed_logging: bool = os.getenv('CONVGUARD_DETAILED_LOGGING', 'true').lower() == 'true'
  enable_performance_monitoring: bool = os.getenv('CONVGUARD_PERFORMANCE_MONITORING', 'true').lower() == 'true'
  sample_interval_seconds: float = float(os.getenv('CONVGUARD_SAMPLE_INTERVAL', '5'))
  sample_capacity: int = int(os.getenv('CONVGUARD_SAMPLE_CAPACITY', '1000'))
  conversion_time_threshold_ms: float = float(os.getenv('CONVGUARD_TIME_THRESHOLD_MS', '30000'))
  memory_threshold_bytes: int = int(os.getenv('CONVGUARD_MEMORY_THRESHOLD', str(500 * 1024 * 1024)))
  report_history_limit: int = int(os.getenv('CONVGUARD_REPORT_HISTORY', '50'))
  report_sample_limit: int = int(os.getenv('CONVGUARD_REPORT_SAMPLES', '20'))
  search_roots: List[str] = field(default_factory=lambda: _env_list('CONVGUARD_SEARCH_ROOTS', 'common' + os.pathsep + 'shared'))
  dependency_roots: List[str] = field(default_factory=lambda: _env_list('CONVGUARD_DEPENDENCY_ROOTS', 'core' + os.pathsep + 'common' + os.pathsep + 'shared'))
  dependency_subdirs: List[str] = field(default_factory=lambda: _env_list(
    'CONVGUARD_DEPENDENCY_SUBDIRS',
    os.pathsep.join(['tasks', 'templates', 'checklists', 'data', 'utils'])
  ))
  namespace_root: str = os.getenv('CONVGUARD_NAMESPACE_ROOT', 'namespaces')
  fallback_output_dirname: str = os.getenv('CONVGUARD_FALLBACK_OUTPUT_DIR', 'convguard-conversion')

  def ensure_directories(self) -> None:
    self.data_dir.mkdir(parents=True, exist_ok=True)
    self.log_dir.mkdir(parents=True, exist_ok=True)
    self.report_dir.mkdir(parents=True, exist_ok=True)


settings = Settings()
