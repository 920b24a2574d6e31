"""Tests for error categorization rules."""

import pytest

from convguard.conversion.categorizer import ErrorCategorizer
from convguard.conversion.models import ErrorCategory, Severity


@pytest.fixture
def categorizer():
  return ErrorCategorizer()


def test_missing_file_with_operation(categorizer):
  """ENOENT messages map to file-not-found regardless of operation."""
  result = categorizer.categorize(
    FileNotFoundError('ENOENT: no such file or directory'),
    {'operation': 'file-access'}
  )
  assert result.category == ErrorCategory.FILE_NOT_FOUND
  assert result.severity == Severity.MEDIUM
  assert result.recoverable is True


@pytest.mark.parametrize('message, expected', [
  ('YAML parse error at line 3', ErrorCategory.INVALID_SYNTAX),
  ('mapping values are not allowed here', ErrorCategory.INVALID_SYNTAX),
  ('Missing dependency: tasks/setup.md', ErrorCategory.MISSING_DEPENDENCY),
  ('EACCES: permission denied', ErrorCategory.PERMISSION_DENIED),
  ('ENOSPC: no space left on device', ErrorCategory.WRITE_FAILED),
  ('Schema validation rejected output', ErrorCategory.VALIDATION_FAILED),
  ('Could not transform header block', ErrorCategory.TRANSFORMATION_FAILED),
  ('Connection reset by peer', ErrorCategory.NETWORK_ERROR),
])
def test_message_rules(categorizer, message, expected):
  assert categorizer.categorize_message(message).category == expected


def test_rule_order_first_match_wins(categorizer):
  """A message matching several rules takes the earliest one."""
  result = categorizer.categorize_message('No such file: missing dependency')
  assert result.category == ErrorCategory.FILE_NOT_FOUND


def test_operation_selects_category(categorizer):
  result = categorizer.categorize(RuntimeError('bad header'), {'operation': 'transformation'})
  assert result.category == ErrorCategory.TRANSFORMATION_FAILED

  result = categorizer.categorize(RuntimeError('bad header'), {'operation': 'validation'})
  assert result.category == ErrorCategory.VALIDATION_FAILED


def test_unmatched_is_unknown(categorizer):
  result = categorizer.categorize(RuntimeError('something odd happened'))
  assert result.category == ErrorCategory.UNKNOWN
  assert result.severity == Severity.HIGH
  assert result.recoverable is False


def test_unknown_is_only_unrecoverable_category(categorizer):
  recoverable = set(categorizer.recoverable_categories())
  assert recoverable == set(ErrorCategory) - {ErrorCategory.UNKNOWN}
