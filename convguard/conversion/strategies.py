from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import yaml

from convguard.config import Settings, settings as default_settings
from convguard.conversion.models import ErrorCategory, ErrorRecord, RecoveryResult

logger = logging.getLogger(__name__)

Strategy = Callable[[ErrorRecord, Dict[str, Any]], RecoveryResult]

ALTERNATE_EXTENSIONS = ('.md', '.yaml', '.yml', '.txt', '.json')
PATH_KEYS = ('path', 'file_path', 'input_path')
OUTPUT_KEYS = ('output_path', 'path', 'file_path')

_KEY_WITHOUT_SPACE = re.compile(r'^(\s*(?:-\s+)?[\w.-]+):(?=[^\s/:])', re.MULTILINE)
_KEY_VALUE = re.compile(r'^(\s*(?:-\s+)?[\w.-]+:[ ]+)(\S.*)$', re.MULTILINE)
_TRAILING_SEPARATOR = re.compile(r',(\s*[\]}])')
_UNQUOTABLE_PREFIXES = ('"', "'", '[', '{', '|', '>', '&', '*', '!', '#')


class UnboundStrategyError(LookupError):
  """Raised when a recoverable category has no recovery strategy bound."""


def _first_path(context: Dict[str, Any], keys: Iterable[str]) -> Optional[str]:
  for key in keys:
    value = context.get(key)
    if value:
      return str(value)
  return None


def _quote_scalar(match: re.Match) -> str:
  prefix, value = match.group(1), match.group(2)
  if value.startswith(_UNQUOTABLE_PREFIXES):
    return match.group(0)
  if ': ' not in value and ' #' not in value and not value.endswith(':'):
    return match.group(0)
  escaped = value.replace('\\', '\\\\').replace('"', '\\"')
  return f'{prefix}"{escaped}"'


def repair_structured_text(content: str) -> str:
  """Applies idempotent repairs for common structured-data syntax mistakes."""
  lines = [line.replace('\t', '  ').rstrip() for line in content.splitlines()]
  fixed = '\n'.join(lines)
  if content.endswith('\n'):
    fixed += '\n'
  fixed = _TRAILING_SEPARATOR.sub(r'\1', fixed)
  fixed = _KEY_WITHOUT_SPACE.sub(r'\1: ', fixed)
  fixed = _KEY_VALUE.sub(_quote_scalar, fixed)
  return fixed


class RecoveryStrategyRegistry:
  """Binds every recoverable category to exactly one remediation routine."""

  def __init__(
    self,
    settings: Optional[Settings] = None,
    parser: Callable[[str], Any] = yaml.safe_load,
    base_dir: Optional[Path] = None,
    temp_dir: Optional[Path] = None
  ) -> None:
    self.settings = settings or default_settings
    self.parser = parser
    self.base_dir = Path(base_dir) if base_dir else Path.cwd()
    self.temp_dir = Path(temp_dir) if temp_dir else Path(tempfile.gettempdir())
    self._strategies: Dict[ErrorCategory, Strategy] = {
      ErrorCategory.FILE_NOT_FOUND: self.recover_missing_file,
      ErrorCategory.INVALID_SYNTAX: self.recover_invalid_syntax,
      ErrorCategory.MISSING_DEPENDENCY: self.recover_missing_dependencies,
      ErrorCategory.PERMISSION_DENIED: self.recover_permission_denied,
      ErrorCategory.WRITE_FAILED: self.recover_write_failure,
      ErrorCategory.VALIDATION_FAILED: self.recover_validation_failure,
      ErrorCategory.TRANSFORMATION_FAILED: self.recover_transformation_failure,
      ErrorCategory.NETWORK_ERROR: self.recover_network_error
    }

  def verify(self, recoverable: Iterable[ErrorCategory]) -> None:
    missing = [category.value for category in recoverable if category not in self._strategies]
    if missing:
      raise UnboundStrategyError(f'No recovery strategy bound for: {", ".join(missing)}')

  def strategy_for(self, category: ErrorCategory) -> Strategy:
    strategy = self._strategies.get(category)
    if strategy is None:
      raise UnboundStrategyError(f'No recovery strategy bound for {category.value}')
    return strategy

  def recover(self, category: ErrorCategory, record: ErrorRecord, context: Dict[str, Any]) -> RecoveryResult:
    return self.strategy_for(category)(record, context)

  def _resolve_root(self, root: str) -> Path:
    path = Path(root)
    return path if path.is_absolute() else self.base_dir / path

  def _namespace_dirs(self, grouping: Optional[str]) -> List[Path]:
    namespace_root = self._resolve_root(self.settings.namespace_root)
    if grouping:
      return [namespace_root / grouping]
    try:
      return sorted(path for path in namespace_root.iterdir() if path.is_dir())
    except OSError:
      return []

  def alternative_file_paths(self, original: Path, context: Dict[str, Any]) -> List[Path]:
    directory = original.parent
    roots = [directory.parent, directory.parent.parent]
    roots.extend(self._resolve_root(root) for root in self.settings.search_roots)
    roots.extend(self._namespace_dirs(context.get('grouping')))

    candidates: List[Path] = []
    for root in roots:
      candidates.append(root / directory.name / original.name)
      candidates.append(root / original.name)
    for extension in ALTERNATE_EXTENSIONS:
      if extension != original.suffix:
        candidates.append(directory / f'{original.stem}{extension}')

    unique: List[Path] = []
    for candidate in candidates:
      if candidate != original and candidate not in unique:
        unique.append(candidate)
    return unique

  def alternative_dependency_paths(self, dependency: str, context: Dict[str, Any]) -> List[Path]:
    bases = [self._resolve_root(root) for root in self.settings.dependency_roots]
    bases.extend(self._namespace_dirs(context.get('grouping')))
    candidates: List[Path] = []
    for base in bases:
      candidates.append(base / dependency)
      for subdir in self.settings.dependency_subdirs:
        candidates.append(base / subdir / dependency)
    return candidates

  def alternative_output_path(self, original: Path) -> Path:
    return self.temp_dir / self.settings.fallback_output_dirname / original.name

  def recover_missing_file(self, record: ErrorRecord, context: Dict[str, Any]) -> RecoveryResult:
    raw_path = _first_path(context, PATH_KEYS)
    if not raw_path:
      return RecoveryResult(False, 'No file path provided in context')
    original = Path(raw_path)
    try:
      for candidate in self.alternative_file_paths(original, context):
        if candidate.is_file():
          logger.info('Found alternative file for %s at %s', original, candidate)
          context['path'] = str(candidate)
          context['recovered_path'] = str(candidate)
          return RecoveryResult(
            True,
            'Found alternative file path',
            action='alternate-path',
            details={'new_path': str(candidate)}
          )
      if not original.parent.exists():
        original.parent.mkdir(parents=True, exist_ok=True)
        logger.info('Created missing directory %s', original.parent)
        return RecoveryResult(
          True,
          'Created missing directory',
          action='directory-created',
          details={'directory': str(original.parent)}
        )
    except OSError as exc:
      return RecoveryResult(False, f'Recovery failed: {exc}')
    return RecoveryResult(False, 'File not found in any alternative location')

  def recover_invalid_syntax(self, record: ErrorRecord, context: Dict[str, Any]) -> RecoveryResult:
    raw_path = _first_path(context, PATH_KEYS)
    if not raw_path or not Path(raw_path).is_file():
      return RecoveryResult(False, 'File not accessible for syntax recovery')
    path = Path(raw_path)
    try:
      content = path.read_text(encoding='utf-8')
      fixed = repair_structured_text(content)
      if fixed == content:
        return RecoveryResult(False, 'No fixable syntax issues found')
      try:
        self.parser(fixed)
      except Exception as exc:
        return RecoveryResult(False, 'Unable to fix syntax issues', details={'parse_error': str(exc)})
      backup_path = path.with_name(f'{path.name}.syntax-backup')
      backup_path.write_text(content, encoding='utf-8')
      path.write_text(fixed, encoding='utf-8')
    except UnicodeDecodeError:
      return RecoveryResult(False, 'File is not valid UTF-8 text')
    except OSError as exc:
      return RecoveryResult(False, f'Syntax recovery failed: {exc}')
    logger.info('Repaired syntax issues in %s', path)
    return RecoveryResult(
      True,
      'Fixed common syntax issues',
      action='content-repaired',
      details={'backup_path': str(backup_path)}
    )

  def recover_missing_dependencies(self, record: ErrorRecord, context: Dict[str, Any]) -> RecoveryResult:
    missing = list(context.get('missing_dependencies') or [])
    if not missing:
      return RecoveryResult(False, 'No missing dependencies listed in context')
    resolved: List[Dict[str, str]] = []
    unresolved: List[str] = []
    for dependency in missing:
      found = next(
        (candidate for candidate in self.alternative_dependency_paths(str(dependency), context) if candidate.exists()),
        None
      )
      if found is None:
        unresolved.append(str(dependency))
      else:
        resolved.append({'dependency': str(dependency), 'path': str(found)})
    if not resolved:
      return RecoveryResult(False, 'No missing dependencies could be located')
    context['resolved_dependencies'] = resolved
    context['unresolved_dependencies'] = unresolved
    return RecoveryResult(
      True,
      f'Found {len(resolved)} missing dependencies',
      action='dependencies-resolved',
      details={'resolved_dependencies': resolved, 'unresolved_dependencies': unresolved}
    )

  def recover_transformation_failure(self, record: ErrorRecord, context: Dict[str, Any]) -> RecoveryResult:
    mode = context.get('transformation_mode', 'full')
    if mode == 'full':
      context['transformation_mode'] = 'minimal'
      return RecoveryResult(
        True,
        'Switched to minimal transformation mode',
        action='degrade',
        details={'fallback_mode': 'minimal'}
      )
    if not context.get('skip_optional_features'):
      context['skip_optional_features'] = True
      return RecoveryResult(
        True,
        'Disabled optional transformation features',
        action='degrade',
        details={'fallback_mode': 'basic'}
      )
    return RecoveryResult(False, 'No fallback transformation options available')

  def _redirect_output(self, context: Dict[str, Any], reason: str) -> RecoveryResult:
    raw_path = _first_path(context, OUTPUT_KEYS)
    if not raw_path:
      return RecoveryResult(False, 'No output path provided')
    alternative = self.alternative_output_path(Path(raw_path))
    try:
      alternative.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
      return RecoveryResult(False, f'Alternative path also failed: {exc}')
    if not os.access(alternative.parent, os.W_OK):
      return RecoveryResult(False, 'No writable location available')
    context['original_output_path'] = raw_path
    context['output_path'] = str(alternative)
    return RecoveryResult(True, reason, action='output-redirected', details={'new_path': str(alternative)})

  def recover_write_failure(self, record: ErrorRecord, context: Dict[str, Any]) -> RecoveryResult:
    return self._redirect_output(context, 'Switched to alternative output location')

  def recover_permission_denied(self, record: ErrorRecord, context: Dict[str, Any]) -> RecoveryResult:
    return self._redirect_output(context, 'Switched to writable location')

  def recover_validation_failure(self, record: ErrorRecord, context: Dict[str, Any]) -> RecoveryResult:
    if context.get('lenient_validation'):
      return RecoveryResult(False, 'Already using lenient validation')
    context['lenient_validation'] = True
    context['skip_strict_checks'] = True
    return RecoveryResult(
      True,
      'Switched to lenient validation mode',
      action='degrade',
      details={'validation_mode': 'lenient'}
    )

  def recover_network_error(self, record: ErrorRecord, context: Dict[str, Any]) -> RecoveryResult:
    context['network_retries'] = int(context.get('network_retries', 0)) + 1
    return RecoveryResult(
      True,
      'Transient network failure; retry the step',
      action='retry',
      details={'network_retries': context['network_retries']}
    )
