"""
Audit service for recording and querying ticket actions.

Every mutation of a ticket (creation, reply, status change,
reassignment) and every upload batch is written to the ``audit_logs``
table.  Auditing never blocks the action it records: a failure to
write the audit row is logged and swallowed by :meth:`record`.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from support_desk.app.core.db import get_connection, utcnow

logger = logging.getLogger(__name__)


class AuditService:
    """Service class for writing and retrieving audit logs."""

    @classmethod
    async def log(
        cls,
        user_id: Optional[str],
        action: str,
        object_type: str,
        object_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        """Insert a new audit record.

        Parameters
        ----------
        user_id : Optional[str]
            Account performing the action, ``None`` for system actions.
        action : str
            Short verb such as ``"create"``, ``"reply"``, ``"status"`` or
            ``"assign"``.
        object_type : str
            Kind of object affected (``"support_ticket"``,
            ``"support_attachment"``).
        object_id : Optional[str]
            Identifier of the affected object.
        details : Optional[dict]
            Extra structured data, stored as JSON.
        """
        conn = get_connection()
        try:
            conn.execute(
                """
                INSERT INTO audit_logs (user_id, action, object_type, object_id, timestamp, details)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (user_id, action, object_type, object_id, utcnow(), json.dumps(details) if details else None),
            )
            conn.commit()
        finally:
            conn.close()

    @classmethod
    async def record(cls, *args: Any, **kwargs: Any) -> None:
        """Like :meth:`log`, but never raises."""
        try:
            await cls.log(*args, **kwargs)
        except Exception:
            logger.exception("Failed to write audit record %s %s", args, kwargs)

    @classmethod
    async def list_logs(
        cls,
        object_type: Optional[str] = None,
        object_id: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """Retrieve audit records, newest first, with optional filters."""
        conn = get_connection()
        try:
            where_clauses: List[str] = []
            params: List[Any] = []
            if object_type:
                where_clauses.append("object_type = ?")
                params.append(object_type)
            if object_id:
                where_clauses.append("object_id = ?")
                params.append(object_id)
            if action:
                where_clauses.append("action = ?")
                params.append(action)
            query = "SELECT id, user_id, action, object_type, object_id, timestamp, details FROM audit_logs"
            if where_clauses:
                query += " WHERE " + " AND ".join(where_clauses)
            query += " ORDER BY id DESC LIMIT ? OFFSET ?"
            params.extend([limit, offset])
            rows = conn.execute(query, tuple(params)).fetchall()
            return [
                {
                    "id": row["id"],
                    "user_id": row["user_id"],
                    "action": row["action"],
                    "object_type": row["object_type"],
                    "object_id": row["object_id"],
                    "timestamp": row["timestamp"],
                    "details": json.loads(row["details"]) if row["details"] else None,
                }
                for row in rows
            ]
        finally:
            conn.close()
