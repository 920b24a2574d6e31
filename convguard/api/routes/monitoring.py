from typing import Dict, Any, List

from fastapi import APIRouter, Depends, Query

from convguard.api.utils import get_monitor

router = APIRouter()

@router.get('/statistics')
async def statistics(monitor=Depends(get_monitor)) -> Dict[str, Any]:
  return monitor.get_statistics().to_dict()

@router.get('/conversions/active')
async def active_conversions(monitor=Depends(get_monitor)) -> List[Dict[str, Any]]:
  return [conversion.to_dict() for conversion in monitor.get_active_conversions()]

@router.get('/sessions/active')
async def active_sessions(monitor=Depends(get_monitor)) -> List[Dict[str, Any]]:
  return [session.to_dict(include_conversions=False) for session in monitor.get_active_sessions()]

@router.get('/history')
async def history(
  limit: int = Query(default=50, ge=1, le=1000),
  monitor=Depends(get_monitor)
) -> List[Dict[str, Any]]:
  return [conversion.to_dict() for conversion in reversed(monitor.get_history(limit))]
