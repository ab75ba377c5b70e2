"""
Admin Authorization
Verify the caller's profile role before allowing access
"""
from fastapi import Depends
from datetime import datetime
import logging

from signaldesk.database.connection import get_database
from signaldesk.auth.jwt_handler import get_current_user_id
from signaldesk.errors import Forbidden, Unauthenticated
from signaldesk.utils.serializers import to_object_id

logger = logging.getLogger(__name__)


async def require_admin(
    user_id: str = Depends(get_current_user_id),
    db = Depends(get_database)
) -> str:
    """
    Verify user is admin
    Returns user_id if admin, raises Forbidden otherwise
    """
    profile = await db.profiles.find_one({"_id": to_object_id(user_id)}, {"role": 1})

    if not profile:
        raise Unauthenticated("Profile not found")

    if profile.get("role") != "admin":
        raise Forbidden("Admin access required")

    return user_id


async def log_admin_action(admin_id: str, action: str, details: dict = None, db = None) -> bool:
    """
    Append an admin action to the audit trail

    Returns:
        True if logged successfully
    """
    try:
        await db.admin_actions.insert_one({
            "admin_id": admin_id,
            "action": action,
            "details": details or {},
            "timestamp": datetime.utcnow()
        })
        logger.info(f"Admin action logged: {action} by {admin_id}")
        return True

    except Exception as e:
        logger.error(f"Error logging admin action: {str(e)}")
        return False
