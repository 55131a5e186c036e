"""
Notification Fan-out

Sends one push per registered device of a host, concurrently, and waits
for all of them up to a bounded timeout. One device failing never stops
the others. Database updates are applied afterwards on the calling thread
(the session is not shared with the worker threads):

- invalid/unregistered token -> registration marked inactive
- success -> last_used_at refreshed
- anything else -> left untouched for the next attempt

No retries here; the notification queue owns retry.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.device import PushSubscription
from ..utils.metrics import record_push
from .device_registry import DeviceRegistry
from .fcm_client import PushResult

logger = logging.getLogger(__name__)


@dataclass
class DeviceOutcome:
    registration_id: str
    device_id: str
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    deactivated: bool = False


@dataclass
class FanoutResult:
    outcomes: List[DeviceOutcome] = field(default_factory=list)

    @property
    def delivered(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.delivered

    @property
    def any_success(self) -> bool:
        return self.delivered > 0

    def summary(self) -> str:
        return f"{self.delivered}/{len(self.outcomes)} devices"


class NotificationFanout:
    def __init__(
        self,
        db: Session,
        push_client,
        source: str = "webhook",
        timeout: Optional[float] = None,
        max_workers: Optional[int] = None
    ):
        self.db = db
        self.push_client = push_client
        self.source = source
        self.timeout = timeout if timeout is not None else settings.push_fanout_timeout_seconds
        self.max_workers = max_workers or settings.push_fanout_max_workers

    def load_devices(self, host_id: str, active_only: bool = False) -> List[PushSubscription]:
        query = self.db.query(PushSubscription).filter(PushSubscription.user_id == host_id)
        if active_only:
            query = query.filter(PushSubscription.is_active == True)  # noqa: E712
        return query.order_by(PushSubscription.created_at).all()

    def notify(
        self,
        host_id: str,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None
    ) -> FanoutResult:
        """Push to every known device of the host, regardless of activity."""
        devices = self.load_devices(host_id)
        if not devices:
            logger.info(f"No registered devices for host {host_id}, skipping push")
            return FanoutResult()

        result = self.deliver(devices, title, body, data)
        logger.info(f"Push fan-out for host {host_id}: {result.summary()}")
        return result

    def deliver(
        self,
        devices: List[PushSubscription],
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None
    ) -> FanoutResult:
        # Copy what the workers need so they never touch ORM objects
        targets = [(d.id, d.device_id, d.token) for d in devices]
        results: Dict[str, PushResult] = {}

        executor = ThreadPoolExecutor(
            max_workers=max(1, min(len(targets), self.max_workers)),
            thread_name_prefix="push-fanout"
        )
        try:
            futures = {
                executor.submit(self.push_client.send, token, title, body, data): registration_id
                for registration_id, _device_id, token in targets
            }
            done, not_done = wait(futures, timeout=self.timeout)

            for future in done:
                registration_id = futures[future]
                error = future.exception()
                if error is not None:
                    logger.error(f"Push to registration {registration_id} raised: {error}")
                    results[registration_id] = PushResult(success=False, error=str(error), error_code="exception")
                else:
                    results[registration_id] = future.result()

            for future in not_done:
                future.cancel()
                results[futures[future]] = PushResult(
                    success=False,
                    error=f"Timed out after {self.timeout}s",
                    error_code="timeout"
                )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return self._apply(devices, results)

    def _apply(self, devices: List[PushSubscription], results: Dict[str, PushResult]) -> FanoutResult:
        registry = DeviceRegistry(self.db)
        now = datetime.utcnow()
        fanout = FanoutResult()

        for device in devices:
            push = results.get(device.id) or PushResult(success=False, error="No result", error_code="unknown")
            outcome = DeviceOutcome(
                registration_id=device.id,
                device_id=device.device_id,
                success=push.success,
                message_id=push.message_id,
                error=push.error,
                error_code=push.error_code,
            )

            if push.success:
                device.last_used_at = now
            elif push.token_invalid:
                outcome.deactivated = registry.mark_inactive(device.id)

            record_push(self.source, push.success, invalid_token=push.token_invalid)
            fanout.outcomes.append(outcome)

        self.db.flush()
        return fanout
