"""
Audit trail: record and query audited actions through the table proxy.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from .client import RemoteDataClient
from .errors import WorklogError
from .schema import AuditEvent, AuditEventType

logger = logging.getLogger(__name__)


@dataclass
class AuditQuery:
    user_email: Optional[str] = None
    event_type: Optional[AuditEventType] = None
    table_name: Optional[str] = None
    success: Optional[bool] = None
    start_date: Optional[str] = None     # ISO timestamp, inclusive
    end_date: Optional[str] = None       # ISO timestamp, inclusive
    limit: int = 100
    offset: int = 0

    def filters(self) -> Dict[str, Any]:
        filters: Dict[str, Any] = {}
        if self.user_email:
            filters["user_email"] = self.user_email
        if self.event_type:
            filters["event_type"] = self.event_type.value
        if self.table_name:
            filters["table_name"] = self.table_name
        if self.success is not None:
            filters["success"] = self.success
        if self.start_date:
            filters["created_at_gte"] = self.start_date
        if self.end_date:
            filters["created_at_lte"] = self.end_date
        return filters


class AuditTrail:
    """Reads and writes audit_trail rows."""

    def __init__(self, client: RemoteDataClient):
        self.client = client

    def log_event(self, event: AuditEvent) -> bool:
        """Store one event. Failures are logged; the caller's action is never failed by auditing."""
        row = {k: v for k, v in event.to_dict().items() if k not in ("id", "created_at") and v is not None}
        try:
            self.client.insert("audit_trail", row)
            return True
        except WorklogError as e:
            logger.error(f"Failed to log audit event {event.event_type.value}: {e}")
            return False

    def query(self, query: Optional[AuditQuery] = None) -> List[AuditEvent]:
        """Matching events, newest first."""
        query = query or AuditQuery()
        result = self.client.select(
            "audit_trail",
            filters=query.filters(),
            order={"column": "created_at", "ascending": False},
            limit=query.limit,
            offset=query.offset,
        )
        return [AuditEvent.from_dict(row) for row in result.data or []]

    def count(self, query: Optional[AuditQuery] = None) -> int:
        query = query or AuditQuery()
        result = self.client.select("audit_trail", filters=query.filters(), select="id", limit=1)
        return result.count or 0

    def get_event(self, event_id: str) -> Optional[AuditEvent]:
        rows = self.client.select("audit_trail", filters={"id": event_id}).data or []
        return AuditEvent.from_dict(rows[0]) if rows else None

    def delete_old_events(self, cutoff: Union[datetime, str]) -> int:
        """Delete events created before cutoff. Returns how many were removed."""
        cutoff = cutoff.isoformat() if isinstance(cutoff, datetime) else cutoff
        rows = self.client.select("audit_trail", filters={"created_at": {"lt": cutoff}}, select="id").data or []
        deleted = 0
        for row in rows:
            try:
                self.client.delete("audit_trail", row["id"])
                deleted += 1
            except WorklogError as e:
                logger.error(f"Failed to delete audit event {row['id']}: {e}")
        logger.info(f"Deleted {deleted} audit events older than {cutoff}")
        return deleted

    # ── Shortcuts ────────────────────────────────────────────────────────────

    def log_user_action(self, user_email: str, action: str, metadata: Optional[Dict[str, Any]] = None) -> bool:
        metadata = dict(metadata or {}, action=action)
        return self.log_event(AuditEvent(
            user_email=user_email,
            event_type=AuditEventType.API_CALL,
            table_name="user_action",
            endpoint=metadata.get("endpoint", "/unknown"),
            method=metadata.get("method", "GET"),
            metadata=metadata,
        ))

    def log_security_event(self, user_email: str, event_type: AuditEventType, description: str,
                           metadata: Optional[Dict[str, Any]] = None) -> bool:
        metadata = dict(metadata or {}, description=description)
        return self.log_event(AuditEvent(
            user_email=user_email,
            event_type=event_type,
            table_name="security",
            endpoint=metadata.get("endpoint", "/security"),
            method=metadata.get("method", "POST"),
            metadata=metadata,
        ))

    def log_data_access(self, user_email: str, table_name: str, record_id: str,
                        metadata: Optional[Dict[str, Any]] = None) -> bool:
        return self.log_event(AuditEvent(
            user_email=user_email,
            event_type=AuditEventType.READ,
            table_name=table_name,
            record_id=record_id,
            metadata=metadata or {},
        ))
