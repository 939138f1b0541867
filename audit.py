"""
Audit logging for Ham Radio Cloud.

Records ADIF imports, dry runs and exports so a user's log history can be traced.
"""

from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from database import get_db


def log_action(
    user_id: Optional[int],
    action: str,
    details: Optional[str] = None,
    ip_address: Optional[str] = None
) -> None:
    """
    Log an audit action.

    Args:
        user_id: The user performing the action
        action: The type of action (e.g., 'adif_import', 'adif_export')
        details: Additional details about the action
        ip_address: The IP address of the actor
    """
    timestamp = datetime.now(timezone.utc).isoformat()

    with get_db() as conn:
        conn.execute("""
            INSERT INTO audit_log (timestamp, user_id, action, details, ip_address)
            VALUES (?, ?, ?, ?, ?)
        """, (timestamp, user_id, action, details, ip_address))


def get_audit_logs(
    limit: int = 100,
    offset: int = 0,
    action: Optional[str] = None,
    user_id: Optional[int] = None
) -> List[Dict[str, Any]]:
    """
    Retrieve audit log entries, newest first.

    Args:
        limit: Maximum number of entries to return
        offset: Number of entries to skip
        action: Filter by action type
        user_id: Filter by user

    Returns:
        List of audit log entries as dictionaries
    """
    query = "SELECT * FROM audit_log WHERE 1=1"
    params = []

    if action:
        query += " AND action = ?"
        params.append(action)

    if user_id is not None:
        query += " AND user_id = ?"
        params.append(user_id)

    query += " ORDER BY timestamp DESC, id DESC LIMIT ? OFFSET ?"
    params.extend([limit, offset])

    with get_db() as conn:
        cursor = conn.execute(query, params)
        return [dict(row) for row in cursor.fetchall()]
