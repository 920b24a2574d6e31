"""Tests for failure diagnostics collection."""

import os

from convguard.diagnostics.collector import DiagnosticsCollector


class BrokenResources:
  def memory_snapshot(self):
    raise RuntimeError('probe offline')


class Unprintable:
  def __str__(self):
    raise RuntimeError('cannot render')


def test_collects_context_and_paths(tmp_path, resources, log_sink):
  existing = tmp_path / 'input.md'
  existing.write_text('hello')
  collector = DiagnosticsCollector(resources, log_sink)

  diagnostics = collector.collect(
    FileNotFoundError('no such file'),
    {
      'path': str(existing),
      'output_path': str(tmp_path / 'out' / 'result.md'),
      'artifact_id': 'writer',
      'operation': 'file-access',
      'phase': 'load'
    }
  )

  assert diagnostics['system']['pid'] == os.getpid()
  assert diagnostics['system']['memory']['rss'] == resources.rss
  assert diagnostics['files']['path']['size'] == 5
  assert diagnostics['files']['path']['readable'] is True
  assert diagnostics['files']['output_path']['exists'] is False
  assert diagnostics['files']['output_path']['parent_exists'] is False
  assert diagnostics['artifact']['id'] == 'writer'
  assert diagnostics['operation'] == {'name': 'file-access', 'phase': 'load', 'step': None}
  assert diagnostics['error']['message'] == 'no such file'
  assert log_sink.recent('diagnostics')[-1]['message'] == 'Diagnostics collected'


def test_failed_probes_degrade_to_error_fields():
  collector = DiagnosticsCollector(BrokenResources())
  diagnostics = collector.collect(RuntimeError('x'), {'path': Unprintable()})

  assert diagnostics['system']['memory'] == {'error': 'probe offline'}
  assert diagnostics['files']['path'] == {'error': 'cannot render'}
  assert diagnostics['context'] == {'error': 'cannot render'}


def test_context_is_json_safe(tmp_path):
  collector = DiagnosticsCollector()
  diagnostics = collector.collect(RuntimeError('x'), {'path_obj': tmp_path, 'items': {1, 2}})
  assert diagnostics['context']['path_obj'] == str(tmp_path)
  assert sorted(diagnostics['context']['items']) == [1, 2]
