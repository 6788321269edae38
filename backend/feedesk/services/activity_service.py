# feedesk/services/activity_service.py
# Writes to activity_logs. Called after every collection and gateway event.

from typing import Optional, Any
from datetime import datetime, timezone
import logging

from feedesk.core.database import get_admin_client

logger = logging.getLogger(__name__)


async def log_activity(
    action: str,
    branch_id: Optional[str] = None,
    session_id: Optional[str] = None,
    user_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[Any] = None,
    metadata: Optional[dict] = None,
):
    """
    Append-only audit log. Never raises - logging must never
    block or break the main operation.

    Action format: 'entity.verb'
    Examples:
        'payment.collected', 'payment.gateway_verified',
        'payment.gateway_failed', 'payment_link.generated'
    """
    try:
        get_admin_client().table("activity_logs").insert({
            "branch_id": str(branch_id) if branch_id else None,
            "session_id": str(session_id) if session_id else None,
            "user_id": str(user_id) if user_id else None,
            "action": action,
            "entity_type": entity_type,
            "entity_id": str(entity_id) if entity_id else None,
            "metadata": metadata or {},
            "created_at": datetime.now(timezone.utc).isoformat(),
        }).execute()
    except Exception as e:
        # Audit logging must NEVER cause a user-facing error
        logger.error(f"Failed to write activity log [{action}]: {e}")
