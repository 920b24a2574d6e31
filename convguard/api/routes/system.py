from typing import Dict, Any
import platform
import sys

from fastapi import APIRouter, Depends

from convguard.api.utils import get_error_handler, get_monitor, get_resources
from convguard.reports.generator import assess_health

router = APIRouter()

@router.get('/health')
async def health(
  monitor=Depends(get_monitor),
  error_handler=Depends(get_error_handler),
  resources=Depends(get_resources)
) -> Dict[str, Any]:
  summary = assess_health(monitor.get_statistics(), error_handler.get_error_stats())
  return {
    'status': 'ok',
    'health': summary['status'],
    'active': monitor.tracker.active_counts(),
    'sampling': monitor.performance.running,
    'resources': resources.snapshot(minimal=True) if resources else None
  }

@router.get('/system/info')
async def system_info(monitor=Depends(get_monitor)) -> Dict[str, Any]:
  return {
    'os': platform.system(),
    'os_release': platform.release(),
    'machine': platform.machine(),
    'python_version': sys.version,
    **monitor.system_info()
  }
