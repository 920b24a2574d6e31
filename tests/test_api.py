"""Tests for the HTTP query surface."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from convguard.api.app import create_app
from convguard.conversion.error_recovery import BackoffPolicy, ConversionErrorHandler
from convguard.conversion.monitor import ConversionMonitor


async def no_sleep(delay):
  return None


@pytest.fixture
def monitor(settings, log_sink, resources, clock):
  return ConversionMonitor(settings=settings, log_sink=log_sink, resource_monitor=resources, clock=clock)


@pytest.fixture
def error_handler(settings, log_sink, monitor):
  return ConversionErrorHandler(
    settings=settings,
    log_sink=log_sink,
    event_bus=monitor.event_bus,
    backoff=BackoffPolicy(base_delay=0.0, max_delay=0.0),
    sleep=no_sleep
  )


@pytest.fixture
def client(monitor, error_handler, settings):
  return TestClient(create_app(monitor, error_handler, settings))


def run_conversion(monitor, conversion_id, success=True):
  monitor.start_conversion('s1', conversion_id, artifact_id=conversion_id)
  monitor.complete_conversion(conversion_id, success=success)


def test_health(client):
  response = client.get('/health')
  assert response.status_code == 200
  body = response.json()
  assert body['status'] == 'ok'
  assert body['health'] == 'healthy'
  assert body['active'] == {'conversions': 0, 'sessions': 0}


def test_statistics_and_history(client, monitor):
  monitor.start_session('s1')
  run_conversion(monitor, 'c1')
  run_conversion(monitor, 'c2', success=False)

  stats = client.get('/statistics').json()
  assert stats['total_conversions'] == 2
  assert stats['failed_conversions'] == 1

  history = client.get('/history', params={'limit': 1}).json()
  assert [item['id'] for item in history] == ['c2']

  sessions = client.get('/sessions/active').json()
  assert sessions[0]['id'] == 's1'
  assert client.get('/conversions/active').json() == []


def test_history_limit_validated(client):
  assert client.get('/history', params={'limit': 0}).status_code == 422


def test_errors_endpoints(client, error_handler):
  asyncio.run(error_handler.handle_error(RuntimeError('network timeout'), {'artifact_id': 'writer'}))
  asyncio.run(error_handler.handle_error(RuntimeError('something odd'), {'artifact_id': 'reader'}))

  all_errors = client.get('/errors').json()
  assert len(all_errors) == 2
  assert 'context' not in all_errors[0]

  network = client.get('/errors', params={'category': 'network-error'}).json()
  assert [item['artifact_id'] for item in network] == ['writer']

  assert client.get('/errors', params={'category': 'bogus'}).status_code == 400

  stats = client.get('/errors/stats').json()
  assert stats['total_errors'] == 2
  assert stats['recovered_errors'] == 1

  detail = client.get(f"/errors/{all_errors[0]['id']}").json()
  assert detail['id'] == all_errors[0]['id']
  assert client.get('/errors/err_missing').status_code == 404


def test_diagnostic_report_and_export(client, settings, tmp_path):
  report = client.get('/diagnostics/report').json()
  assert report['health']['status'] == 'healthy'
  assert report['error_statistics']['total_errors'] == 0
  assert report['performance']['no_data'] is True
  assert 'performance' not in client.get('/diagnostics/report', params={'include_performance': False}).json()

  target = tmp_path / 'exports' / 'diag.json'
  exported = client.post('/diagnostics/export', json={'path': str(target), 'include_patterns': False}).json()
  assert exported['exported'] is True
  assert target.exists()

  default_export = client.post('/diagnostics/export', json={}).json()
  assert default_export['path'].startswith(str(settings.report_dir))


def test_admin_clear(client, monitor, error_handler):
  monitor.start_session('s1')
  run_conversion(monitor, 'c1')
  asyncio.run(error_handler.handle_error(RuntimeError('something odd'), {}))

  response = client.post('/admin/clear', json={'errors': True})

  assert response.json()['status'] == 'cleared'
  assert monitor.get_statistics().total_conversions == 0
  assert monitor.get_history() == []
  assert error_handler.get_errors() == []


def test_unexpected_errors_become_json_500(monitor, error_handler, settings):
  def broken():
    raise RuntimeError('statistics offline')

  monitor.get_statistics = broken
  client = TestClient(create_app(monitor, error_handler, settings), raise_server_exceptions=False)

  response = client.get('/statistics')
  assert response.status_code == 500
  assert response.json()['detail'] == 'statistics offline'
