"""
Audit Logging Service
Activity trail for ledger mutations. Writing to it never fails the caller.
"""
from sqlalchemy.orm import Session
from sqlalchemy import desc
from typing import Optional, List, Dict, Any
import json
import logging

from orderledger.models import AuditLog

logger = logging.getLogger(__name__)


class AuditAction:
    """Constants for audit actions"""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class AuditService:
    """Service for recording and retrieving audit logs"""

    def __init__(self, db: Session):
        self.db = db

    def log(
        self,
        entity_table: str,
        entity_id: Optional[int],
        action: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[int] = None
    ) -> Optional[AuditLog]:
        """
        Create an audit log entry.

        The insert runs in a savepoint so a failed write is rolled back on its
        own, leaving the surrounding ledger mutation intact.

        Args:
            entity_table: Table of the affected entity ('orders', 'payments', 'banks', ...)
            entity_id: ID of the affected entity
            action: One of AuditAction
            message: Human-readable description
            metadata: Extra values, stored as JSON
            user_id: ID of the user performing the action

        Returns:
            The created AuditLog, or None when it could not be written
        """
        try:
            with self.db.begin_nested():
                audit_log = AuditLog(
                    entity_table=entity_table,
                    entity_id=entity_id,
                    action=action,
                    message=message,
                    metadata_json=json.dumps(metadata, default=str) if metadata else None,
                    user_id=user_id
                )
                self.db.add(audit_log)
                self.db.flush()

            logger.info(f"Audit: {action} {entity_table}(id={entity_id}) by user={user_id}: {message}")
            return audit_log

        except Exception as e:
            logger.warning(f"Failed to create audit log: {e}")
            return None

    def get_by_entity(self, entity_table: str, entity_id: int, limit: int = 50) -> List[AuditLog]:
        """Audit history of one entity, newest first"""
        return self.db.query(AuditLog).filter(
            AuditLog.entity_table == entity_table,
            AuditLog.entity_id == entity_id
        ).order_by(desc(AuditLog.created_at), desc(AuditLog.id)).limit(limit).all()

    def get_recent(self, limit: int = 100, offset: int = 0) -> List[AuditLog]:
        return self.db.query(AuditLog).order_by(
            desc(AuditLog.created_at), desc(AuditLog.id)
        ).offset(offset).limit(limit).all()
