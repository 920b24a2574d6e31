from typing import Dict, Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from convguard.api.utils import get_error_handler, serialize_error
from convguard.conversion.models import ErrorCategory

router = APIRouter()

@router.get('/errors')
async def list_errors(
  category: Optional[str] = Query(default=None),
  artifact_id: Optional[str] = Query(default=None),
  limit: int = Query(default=100, ge=1, le=1000),
  include_context: bool = Query(default=False),
  error_handler=Depends(get_error_handler)
) -> List[Dict[str, Any]]:
  if category is not None and category not in {item.value for item in ErrorCategory}:
    raise HTTPException(status_code=400, detail=f'Unknown error category: {category}')
  records = error_handler.get_errors()
  if category is not None:
    records = [record for record in records if record.category.value == category]
  if artifact_id is not None:
    records = [record for record in records if record.artifact_id == artifact_id]
  return [serialize_error(record, include_context) for record in records[-limit:]]

@router.get('/errors/stats')
async def error_stats(error_handler=Depends(get_error_handler)) -> Dict[str, Any]:
  return error_handler.get_error_stats()

@router.get('/errors/{error_id}')
async def get_error(error_id: str, error_handler=Depends(get_error_handler)) -> Dict[str, Any]:
  record = error_handler.get_error(error_id)
  if record is None:
    raise HTTPException(status_code=404, detail='Error not found')
  return serialize_error(record)
