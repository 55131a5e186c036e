"""
Device Registry

Push subscriptions per host and physical device:
- register/refresh via upsert on (user_id, device_id)
- heartbeat, list and remove
- inactivity cleanup sweep
"""

import uuid
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.device import PushSubscription
from ..utils.db_helpers import upsert

logger = logging.getLogger(__name__)


class DeviceRegistry:
    def __init__(self, db: Session):
        self.db = db

    def get_device(self, user_id: str, device_id: str) -> Optional[PushSubscription]:
        return self.db.query(PushSubscription).filter(
            PushSubscription.user_id == user_id,
            PushSubscription.device_id == device_id
        ).first()

    def register_device(
        self,
        user_id: str,
        device_id: str,
        token: str,
        platform: str = "web",
        device_name: Optional[str] = None
    ) -> PushSubscription:
        """Insert or refresh the registration; a refreshed token reactivates it."""
        now = datetime.utcnow()
        upsert(
            self.db,
            PushSubscription,
            {
                "id": str(uuid.uuid4()),
                "user_id": user_id,
                "device_id": device_id,
                "device_name": device_name,
                "platform": platform,
                "token": token,
                "is_active": True,
                "last_active": now,
                "created_at": now,
                "updated_at": now,
            },
            conflict_columns=["user_id", "device_id"],
            update_columns=["token", "device_name", "platform", "is_active", "last_active", "updated_at"],
        )
        self.db.commit()
        self.db.expire_all()
        logger.info(f"Registered device {device_id} ({platform}) for {user_id}")
        return self.get_device(user_id, device_id)

    def list_devices(self, user_id: str) -> List[PushSubscription]:
        return self.db.query(PushSubscription).filter(
            PushSubscription.user_id == user_id
        ).order_by(PushSubscription.last_active.desc()).all()

    def touch_device(self, user_id: str, device_id: str) -> bool:
        device = self.get_device(user_id, device_id)
        if device is None:
            return False
        device.last_active = datetime.utcnow()
        self.db.commit()
        return True

    def remove_device(self, user_id: str, device_id: str) -> bool:
        deleted = self.db.query(PushSubscription).filter(
            PushSubscription.user_id == user_id,
            PushSubscription.device_id == device_id
        ).delete(synchronize_session=False)
        self.db.commit()
        if deleted:
            logger.info(f"Removed device {device_id} for {user_id}")
        return deleted > 0

    def mark_inactive(self, registration_id: str) -> bool:
        """Stop sending to a registration whose token FCM rejected. Flushes, caller commits."""
        device = self.db.get(PushSubscription, registration_id)
        if device is None or not device.is_active:
            return False
        device.is_active = False
        self.db.flush()
        logger.info(f"Deactivated device {device.device_id} for {device.user_id}: invalid token")
        return True

    def deactivate_token(self, token: str) -> int:
        """Deactivate every active registration carrying token. Returns the count."""
        deactivated = self.db.query(PushSubscription).filter(
            PushSubscription.token == token,
            PushSubscription.is_active == True  # noqa: E712
        ).update({"is_active": False}, synchronize_session=False)
        self.db.commit()
        return deactivated


def cleanup_inactive_devices(db: Session, inactive_days: Optional[int] = None) -> int:
    """Delete registrations with no activity for inactive_days. Returns the count."""
    days = inactive_days or settings.device_inactive_days
    cutoff = datetime.utcnow() - timedelta(days=days)

    deleted = db.query(PushSubscription).filter(
        PushSubscription.last_active < cutoff
    ).delete(synchronize_session=False)
    db.commit()

    if deleted:
        logger.info(f"Device cleanup: removed {deleted} registrations inactive for {days}+ days")
    return deleted
