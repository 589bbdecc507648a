from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from ...domain.errors import ConflictError, NotFoundError
from ...domain.models import PaymentStatus, SubscriptionStatus
from ...domain.models.audit import make_entry
from ...domain.ports.persistence import SubscriptionQuery, SubscriptionRepository
from ...domain.status import compute_status
from .subscription_update_service import Clock, utc_now

logger = logging.getLogger(__name__)

RECONCILIATION_ACTOR = "system:reconciliation"


@dataclass(slots=True)
class ReconciliationReport:
    processed: int = 0
    updated: int = 0
    expired: int = 0
    expiresoon: int = 0
    active: int = 0
    conflicts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


class ReconciliationService:
    """Writes the real-time status back to completed subscriptions whose stored status drifted."""

    def __init__(self, repository: SubscriptionRepository) -> None:
        self._repository = repository

    def reconcile(self, now: datetime, user_id: Optional[int] = None) -> ReconciliationReport:
        report = ReconciliationReport()
        query = SubscriptionQuery(user_id=user_id, payment_status=PaymentStatus.COMPLETED, sort_order="asc")
        for subscription in self._repository.list_subscriptions(query):
            report.processed += 1
            snapshot = compute_status(subscription, now)
            if not snapshot.needs_status_update:
                continue

            target = snapshot.real_time_status
            updated = dataclasses.replace(
                subscription,
                status=target,
                last_status_check=now,
                updated_at=now,
            )
            entry = make_entry("status", subscription.status, target, now, RECONCILIATION_ACTOR)
            try:
                self._repository.save_subscription(updated, subscription.version, [entry])
            except (ConflictError, NotFoundError) as exc:
                # The concurrent operator write wins; the next sweep re-evaluates the record.
                report.conflicts += 1
                logger.warning("Skipping reconciliation of subscription %s: %s", subscription.id, exc)
                continue

            report.updated += 1
            if target == SubscriptionStatus.EXPIRED:
                report.expired += 1
            elif target == SubscriptionStatus.EXPIRESOON:
                report.expiresoon += 1
            else:
                report.active += 1
            logger.info(
                "Subscription %s status reconciled: %s -> %s",
                subscription.id,
                subscription.status.value,
                target.value,
            )

        logger.info(
            "Reconciliation finished: processed=%s updated=%s conflicts=%s",
            report.processed,
            report.updated,
            report.conflicts,
        )
        return report


class ReconciliationWorker:
    """Background task that runs the reconciliation sweep on a fixed interval."""

    def __init__(
        self,
        service: ReconciliationService,
        *,
        interval_seconds: int = 3600,
        clock: Clock = utc_now,
    ) -> None:
        self._service = service
        self._interval = interval_seconds
        self._clock = clock
        self._task: Optional[asyncio.Task[None]] = None
        self._shutdown = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self._task is not None or self._interval <= 0:
            return
        logger.info("Starting reconciliation worker every %s seconds.", self._interval)
        self._shutdown.clear()
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(), name="subscription-reconciliation")

    async def stop(self) -> None:
        if self._task is None:
            return
        logger.info("Stopping reconciliation worker.")
        self._shutdown.set()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    async def _run(self) -> None:
        while not self._shutdown.is_set():
            try:
                await asyncio.to_thread(self._service.reconcile, self._clock())
            except Exception:  # pragma: no cover - keep the loop alive
                logger.exception("Unexpected error during reconciliation sweep.")
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                continue
