from typing import Any, Dict, Optional

from fastapi import Request

from convguard.conversion.error_recovery import ConversionErrorHandler
from convguard.conversion.monitor import ConversionMonitor
from convguard.resources.monitor import ResourceMonitor


def get_monitor(request: Request) -> ConversionMonitor:
  return request.app.state.monitor


def get_error_handler(request: Request) -> ConversionErrorHandler:
  return request.app.state.error_handler


def get_resources(request: Request) -> Optional[ResourceMonitor]:
  return getattr(request.app.state, 'resources', None)


def serialize_error(record: Any, include_context: bool = True) -> Dict[str, Any]:
  payload = record.to_dict()
  if not include_context:
    payload.pop('context', None)
    payload.pop('diagnostics', None)
  return payload
