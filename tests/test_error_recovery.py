"""Tests for the error handling façade."""

import asyncio
import json

import pytest

from convguard.conversion import events
from convguard.conversion.error_recovery import BackoffPolicy, ConversionErrorHandler
from convguard.conversion.models import ErrorCategory, RecoveryResult
from convguard.conversion.strategies import RecoveryStrategyRegistry


class RecordingSleep:
  def __init__(self):
    self.delays = []

  async def __call__(self, delay):
    self.delays.append(delay)


@pytest.fixture
def sleeper():
  return RecordingSleep()


@pytest.fixture
def handler(settings, log_sink, sleeper, tmp_path, clock):
  registry = RecoveryStrategyRegistry(settings, base_dir=tmp_path, temp_dir=tmp_path / 'tmp')
  return ConversionErrorHandler(
    settings=settings,
    log_sink=log_sink,
    registry=registry,
    backoff=BackoffPolicy(base_delay=1.0, multiplier=2.0, max_delay=3.0, max_attempts=3),
    sleep=sleeper,
    clock=clock
  )


def test_backoff_delays_are_capped():
  policy = BackoffPolicy(base_delay=1.0, multiplier=2.0, max_delay=5.0)
  assert [policy.delay_for(n) for n in range(1, 5)] == [1.0, 2.0, 4.0, 5.0]
  with pytest.raises(ValueError):
    policy.delay_for(0)


@pytest.mark.asyncio
async def test_recoverable_error_is_recovered(handler, sleeper):
  context = {'operation': 'transformation', 'artifact_id': 'writer'}
  result = await handler.handle_error(RuntimeError('transform blew up'), context)

  assert result.category == ErrorCategory.TRANSFORMATION_FAILED
  assert result.recovered is True
  assert result.recovery_attempts == 1
  assert result.recovery_details.details['fallback_mode'] == 'minimal'
  assert context['transformation_mode'] == 'minimal'
  assert sleeper.delays == [1.0]


@pytest.mark.asyncio
async def test_unknown_error_is_not_recovered(handler, sleeper):
  result = await handler.handle_error(RuntimeError('something odd'), {})

  assert result.category == ErrorCategory.UNKNOWN
  assert result.recoverable is False
  assert result.recovered is False
  assert result.recovery_details is None
  assert sleeper.delays == []


@pytest.mark.asyncio
async def test_attempts_never_exceed_budget(handler, sleeper):
  error = RuntimeError('validation failed on schema')
  context = {'operation': 'validation'}

  results = [await handler.handle_error(error, context) for _ in range(5)]

  assert [item.recovery_attempts for item in results] == [1, 2, 3, 3, 3]
  assert results[-1].recovery_details.reason == 'Max retry attempts exceeded'
  assert results[-1].recovered is False
  assert sleeper.delays == [1.0, 2.0, 3.0]
  assert len(handler.get_errors()) == 1


@pytest.mark.asyncio
async def test_overlapping_calls_share_the_budget(handler):
  async def yielding_sleep(delay):
    await asyncio.sleep(0)

  handler._sleep = yielding_sleep
  error = ConnectionError('connection reset')
  context = {'operation': 'fetch'}

  results = await asyncio.gather(*[handler.handle_error(error, context) for _ in range(5)])

  record = handler.get_error(results[0].error_id)
  assert record.recovery_attempts == 3
  assert sum(1 for item in results if item.recovered) == 3
  exhausted = [item for item in results if not item.recovered]
  assert [item.recovery_details.reason for item in exhausted] == ['Max retry attempts exceeded'] * 2


@pytest.mark.asyncio
async def test_error_id_in_context_reuses_record(handler):
  context = {'operation': 'transformation'}
  first = await handler.handle_error(RuntimeError('transform failed'), context)
  second = await handler.handle_error(RuntimeError('transform failed again'), context)

  assert context['error_id'] == first.error_id
  assert second.error_id == first.error_id
  assert second.recovery_attempts == 2


@pytest.mark.asyncio
async def test_strategy_exception_becomes_failed_result(handler):
  def explode(record, context):
    raise OSError('disk vanished')

  handler.registry._strategies[ErrorCategory.NETWORK_ERROR] = explode
  result = await handler.handle_error(ConnectionError('connection refused'), {})

  assert result.recovered is False
  assert result.recovery_details.reason == 'Recovery strategy failed'
  assert result.recovery_details.error == 'disk vanished'


@pytest.mark.asyncio
async def test_events_published(handler):
  seen = []
  handler.event_bus.subscribe('*', lambda name, payload: seen.append(name))

  await handler.handle_error(RuntimeError('network timeout'), {})

  assert seen == [events.ERROR_RECORDED, events.ERROR_RECOVERED]


@pytest.mark.asyncio
async def test_recovery_disabled_skips_strategies(handler, sleeper):
  handler.enable_recovery = False
  result = await handler.handle_error(RuntimeError('network timeout'), {})
  assert result.recoverable is True
  assert result.recovered is False
  assert sleeper.delays == []


@pytest.mark.asyncio
async def test_diagnostics_collected_for_path(handler, tmp_path):
  target = tmp_path / 'present.md'
  target.write_text('x')
  result = await handler.handle_error(FileNotFoundError('no such file'), {'path': str(target)})

  assert result.diagnostics['files']['path']['exists'] is True
  assert result.diagnostics['error']['name'] == 'FileNotFoundError'


@pytest.mark.asyncio
async def test_error_stats_and_queries(handler):
  await handler.handle_error(RuntimeError('network timeout'), {'artifact_id': 'a'})
  await handler.handle_error(RuntimeError('something odd'), {'artifact_id': 'b'})

  stats = handler.get_error_stats()
  assert stats['total_errors'] == 2
  assert stats['errors_by_category'] == {'network-error': 1, 'unknown': 1}
  assert stats['errors_by_artifact'] == {'a': 1, 'b': 1}
  assert stats['recovered_errors'] == 1
  assert stats['unrecoverable_errors'] == 1
  assert stats['recovery_rate'] == 0.5
  assert set(handler.get_errors_by_category()) == {'network-error', 'unknown'}

  handler.clear_errors()
  assert handler.get_error_stats()['total_errors'] == 0


@pytest.mark.asyncio
async def test_error_stream_and_export(handler, log_sink, tmp_path):
  await handler.handle_error(RuntimeError('network timeout'), {})

  lines = log_sink.recent('errors')
  assert lines[0]['level'] == 'error'
  assert lines[0]['category'] == 'network-error'
  assert lines[0]['diagnostics'] == {'collected': True}

  exported = handler.export_error_report(tmp_path / 'out' / 'errors.json')
  report = json.loads(exported.read_text())
  assert report['statistics']['total_errors'] == 1


@pytest.mark.asyncio
async def test_diagnostic_mode_embeds_diagnostics(handler, log_sink):
  handler.enable_diagnostic_mode()
  await handler.handle_error(RuntimeError('something odd'), {})
  line = log_sink.recent('errors')[-1]
  assert 'system' in line['diagnostics']


def test_unbound_recoverable_category_rejected_at_construction(settings, tmp_path):
  registry = RecoveryStrategyRegistry(settings, base_dir=tmp_path)
  registry._strategies.pop(ErrorCategory.WRITE_FAILED)
  with pytest.raises(LookupError):
    ConversionErrorHandler(settings=settings, registry=registry)


def test_recovery_result_serializes_error():
  payload = RecoveryResult(False, 'Recovery strategy failed', error='boom').to_dict()
  assert payload['error'] == 'boom'


@pytest.mark.asyncio
async def test_self_referencing_context_is_recorded(handler):
  context = {'operation': 'transformation'}
  context['parent'] = context

  result = await handler.handle_error(RuntimeError('transform failed'), context)

  record = handler.get_error(result.error_id)
  assert record.context['parent'] == '<circular>'
  assert result.diagnostics['context']['parent'] == '<circular>'
  assert result.recovered is True


@pytest.mark.asyncio
async def test_default_diagnostics_include_memory(settings, sleeper):
  handler = ConversionErrorHandler(settings=settings, sleep=sleeper)

  result = await handler.handle_error(RuntimeError('something odd'), {})

  memory = result.diagnostics['system']['memory']
  assert memory['rss'] > 0
