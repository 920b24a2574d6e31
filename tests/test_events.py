"""Tests for the event bus."""

from convguard.conversion.events import EventBus


def test_publish_reaches_named_and_wildcard_subscribers():
  bus = EventBus()
  seen = []
  bus.subscribe('conversion.completed', lambda name, payload: seen.append(('named', name)))
  bus.subscribe('*', lambda name, payload: seen.append(('any', name)))

  delivered = bus.publish('Conversion.Completed', {'conversion_id': 'c1'})

  assert delivered == 2
  assert seen == [('named', 'conversion.completed'), ('any', 'conversion.completed')]


def test_unsubscribe_stops_delivery():
  bus = EventBus()
  seen = []
  unsubscribe = bus.subscribe('session.started', lambda name, payload: seen.append(payload))
  unsubscribe()

  assert bus.publish('session.started', {}) == 0
  assert bus.subscriber_count('session.started') == 0
  assert seen == []


def test_failing_subscriber_does_not_block_others(caplog):
  bus = EventBus()
  seen = []

  def broken(name, payload):
    raise RuntimeError('subscriber bug')

  bus.subscribe('error.recorded', broken)
  bus.subscribe('error.recorded', lambda name, payload: seen.append(payload['id']))

  assert bus.publish('error.recorded', {'id': 'err_1'}) == 1
  assert seen == ['err_1']
  assert any('raised' in record.getMessage() for record in caplog.records)
