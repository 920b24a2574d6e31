from typing import Dict, Any, Optional
from pathlib import Path
import time

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from convguard.api.utils import get_error_handler, get_monitor

router = APIRouter()

class ExportPayload(BaseModel):
  path: Optional[str] = Field(default=None, description='Destination file; defaults to the report directory.')
  include_detailed_errors: bool = Field(default=True)
  include_patterns: bool = Field(default=True)
  include_health: bool = Field(default=True)
  include_performance: bool = Field(default=True)

class ClearPayload(BaseModel):
  history: bool = Field(default=True)
  statistics: bool = Field(default=True)
  performance: bool = Field(default=True)
  errors: bool = Field(default=False)

@router.get('/diagnostics/report')
async def diagnostic_report(
  include_detailed_errors: bool = True,
  include_patterns: bool = True,
  include_health: bool = True,
  include_performance: bool = True,
  monitor=Depends(get_monitor),
  error_handler=Depends(get_error_handler)
) -> Dict[str, Any]:
  return monitor.generate_diagnostic_report(
    include_detailed_errors=include_detailed_errors,
    include_patterns=include_patterns,
    include_health=include_health,
    include_performance=include_performance,
    error_stats=error_handler.get_error_stats()
  )

@router.post('/diagnostics/export')
async def export_report(
  payload: ExportPayload,
  monitor=Depends(get_monitor),
  error_handler=Depends(get_error_handler)
) -> Dict[str, Any]:
  if payload.path:
    export_path = Path(payload.path).expanduser()
  else:
    export_path = monitor.settings.report_dir / f'diagnostic-report-{int(time.time() * 1000)}.json'
  report = monitor.generate_diagnostic_report(
    include_detailed_errors=payload.include_detailed_errors,
    include_patterns=payload.include_patterns,
    include_health=payload.include_health,
    include_performance=payload.include_performance,
    export_path=export_path,
    error_stats=error_handler.get_error_stats()
  )
  return {
    'exported': 'export_path' in report,
    'path': str(export_path),
    'generated_at': report['generated_at']
  }

@router.post('/admin/clear')
async def clear(
  payload: ClearPayload,
  monitor=Depends(get_monitor),
  error_handler=Depends(get_error_handler)
) -> Dict[str, Any]:
  monitor.clear(history=payload.history, statistics=payload.statistics, performance=payload.performance)
  if payload.errors:
    error_handler.clear_errors()
  return {'status': 'cleared', **payload.model_dump()}
