from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

from convguard.conversion.models import Categorization, ErrorCategory, Severity


@dataclass(frozen=True)
class CategoryRule:
  category: ErrorCategory
  severity: Severity
  recoverable: bool
  patterns: Tuple[str, ...] = ()
  operations: Tuple[str, ...] = ()

  def matches(self, message: str, operation: Optional[str]) -> bool:
    if operation and operation in self.operations:
      return True
    return any(pattern in message for pattern in self.patterns)


# First matching rule wins.
DEFAULT_RULES: Tuple[CategoryRule, ...] = (
  CategoryRule(
    ErrorCategory.FILE_NOT_FOUND, Severity.MEDIUM, True,
    patterns=('enoent', 'file not found', 'no such file')
  ),
  CategoryRule(
    ErrorCategory.INVALID_SYNTAX, Severity.MEDIUM, True,
    patterns=(
      'yaml',
      'parsing',
      'parse error',
      'syntax',
      'while scanning',
      'mapping values are not allowed',
      'expecting value',
      'expecting property name'
    )
  ),
  CategoryRule(
    ErrorCategory.MISSING_DEPENDENCY, Severity.MEDIUM, True,
    patterns=('dependency', 'missing', 'not found')
  ),
  CategoryRule(
    ErrorCategory.PERMISSION_DENIED, Severity.HIGH, True,
    patterns=('eacces', 'eperm', 'permission', 'access denied')
  ),
  CategoryRule(
    ErrorCategory.WRITE_FAILED, Severity.HIGH, True,
    patterns=('write', 'enospc', 'no space left', 'disk')
  ),
  CategoryRule(
    ErrorCategory.VALIDATION_FAILED, Severity.MEDIUM, True,
    patterns=('validation', 'invalid'),
    operations=('validation',)
  ),
  CategoryRule(
    ErrorCategory.TRANSFORMATION_FAILED, Severity.MEDIUM, True,
    patterns=('transform',),
    operations=('transformation',)
  ),
  CategoryRule(
    ErrorCategory.NETWORK_ERROR, Severity.LOW, True,
    patterns=('network', 'timeout', 'timed out', 'connection', 'econnrefused', 'econnreset')
  ),
)

FALLBACK = Categorization(ErrorCategory.UNKNOWN, Severity.HIGH, False)


class ErrorCategorizer:
  """Maps an error and its context onto the closed category taxonomy."""

  def __init__(self, rules: Sequence[CategoryRule] = DEFAULT_RULES) -> None:
    self.rules = tuple(rules)

  def categorize(self, error: BaseException, context: Optional[Dict[str, Any]] = None) -> Categorization:
    operation = (context or {}).get('operation')
    return self.categorize_message(str(error), operation)

  def categorize_message(self, message: str, operation: Optional[str] = None) -> Categorization:
    normalized = (message or '').lower()
    normalized_operation = operation.lower() if isinstance(operation, str) else None
    for rule in self.rules:
      if rule.matches(normalized, normalized_operation):
        return Categorization(rule.category, rule.severity, rule.recoverable)
    return FALLBACK

  def recoverable_categories(self) -> Tuple[ErrorCategory, ...]:
    seen = []
    for rule in self.rules:
      if rule.recoverable and rule.category not in seen:
        seen.append(rule.category)
    if FALLBACK.recoverable and FALLBACK.category not in seen:
      seen.append(FALLBACK.category)
    return tuple(seen)
