"""
Audit Log API Routes
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional

from orderledger.core.database import get_db
from orderledger.core.security import PermissionChecker
from orderledger.schemas import AuditLogResponse
from orderledger.services.audit_service import AuditService

router = APIRouter(prefix="/audit-logs", tags=["Audit"], dependencies=[Depends(PermissionChecker(["audit:read"]))])


@router.get("", response_model=List[AuditLogResponse])
async def list_audit_logs(
    entity_table: Optional[str] = None,
    entity_id: Optional[int] = None,
    limit: int = 100,
    offset: int = 0,
    db: Session = Depends(get_db)
):
    audit_service = AuditService(db)
    if entity_table and entity_id is not None:
        return audit_service.get_by_entity(entity_table, entity_id, limit=limit)
    return audit_service.get_recent(limit=limit, offset=offset)
