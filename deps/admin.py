# deps/admin.py
import logging

from fastapi import Depends, HTTPException, status

from deps.auth import CurrentUser, get_current_user
from security import ROLE_ADMIN

logger = logging.getLogger("payouts.auth")


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Operator-only routes: payout actions, program settings, earning review."""
    if user.role != ROLE_ADMIN:
        logger.warning("admin route refused user=%s role=%s", user.user_id, user.role)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="ADMIN_REQUIRED")
    return user
