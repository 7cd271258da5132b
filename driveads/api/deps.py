"""Request identity.

Authentication happens upstream; the gateway forwards the verified
subject and role in headers.
"""
import hmac
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from ..config import config
from ..db import get_db
from ..errors import NotFoundError, PermissionDenied
from ..models import Driver
from ..persistence import get_driver_by_user

DRIVER_ROLE = "driver"
ADMIN_ROLE = "admin"


@dataclass
class CurrentUser:
    user_id: str
    role: str


def get_current_user(
    x_user_id: str = Header(..., description="Authenticated subject"),
    x_user_role: str = Header(..., description="Authenticated role")
) -> CurrentUser:
    return CurrentUser(user_id=x_user_id, role=x_user_role.lower())


def _require_driver_role(user: CurrentUser):
    if user.role != DRIVER_ROLE:
        raise PermissionDenied("Only drivers can perform this action")


def get_optional_driver(
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Optional[Driver]:
    """Driver profile of the caller, or None when it was never created."""
    _require_driver_role(user)
    return get_driver_by_user(db, user.user_id)


def get_current_driver(
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Driver:
    _require_driver_role(user)
    driver = get_driver_by_user(db, user.user_id)
    if driver is None:
        raise NotFoundError("Driver profile not found")
    return driver


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if user.role != ADMIN_ROLE:
        raise PermissionDenied("Admin role required")
    return user


def require_webhook_secret(
    x_webhook_secret: str = Header(..., description="Shared secret configured on the payment gateway")
):
    expected = config.payment_webhook_secret
    if not expected or not hmac.compare_digest(x_webhook_secret.encode(), expected.encode()):
        raise PermissionDenied("Invalid webhook secret")
